import pytest

from flowstate import Workflow, get_config


@pytest.fixture(autouse=True)
def config():
    # settings are cached per process; tests that patch the environment reload them
    get_config.cache_clear()
    yield get_config()
    get_config.cache_clear()


@pytest.fixture(
    params=[
        pytest.param(("asyncio", {}), id="asyncio"),
        pytest.param(
            ("trio", {"restrict_keyboard_interrupt_to_checkpoints": True}), id="trio"
        ),
    ],
    scope="session",
)
def anyio_backend(request):
    return request.param


class Calls:
    """Counts invocations per operation id."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}

    def hit(self, name: str) -> None:
        self.counts[name] = self.counts.get(name, 0) + 1

    def __getitem__(self, name: str) -> int:
        return self.counts.get(name, 0)


@pytest.fixture
def calls():
    return Calls()


@pytest.fixture
def chain(calls):
    """
    a -> b -> c, where a returns "x", b appends "y" and c appends "z".
    """

    async def a(ctx, input):
        calls.hit("a")
        return "x"

    async def b(ctx, input):
        calls.hit("b")
        return input["a"] + "y"

    async def c(ctx, input):
        calls.hit("c")
        return input["b"] + "z"

    workflow = Workflow()
    op_a = workflow.first("a", a)
    op_b = workflow.link([op_a], "b", b)
    workflow.last([op_b], "c", c)
    return workflow
