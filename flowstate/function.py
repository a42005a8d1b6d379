"""
Function references: a caller-chosen stable id plus a content hash for a callable, so
that a snapshot can name the function it needs and a changed function can be told
apart from an unchanged one.
"""

import ast
import inspect
import marshal
import textwrap
import warnings
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from functools import partial
from types import CodeType, FunctionType
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .config import get_config
from .exceptions import (
    FunctionDriftWarning,
    failed_function_action,
    serialization_failed,
)
from .serialization import digest
from .snapshot import FunctionSnapshot

if TYPE_CHECKING:  # pragma: no cover
    from typing import TypeAlias

ContextT = TypeVar("ContextT")
InputT = TypeVar("InputT")
OutputT = TypeVar("OutputT")

OperationFn: "TypeAlias" = Callable[
    [ContextT, InputT], Awaitable[OutputT] | OutputT
]
FunctionRegistry: "TypeAlias" = Mapping[str, Callable[..., Any]]


def _code_fingerprint(code: CodeType) -> bytes:
    return marshal.dumps((code.co_code, code.co_consts, code.co_names))


def _closest_lambda(
    candidates: list[ast.Lambda], code: CodeType, indent: int
) -> ast.Lambda | None:
    """
    Pick the lambda on its line whose span covers the most of `code`'s instruction
    columns, preferring the narrowest on a tie.
    """
    if len(candidates) == 1:
        return candidates[0]

    positions = getattr(code, "co_positions", None)
    if positions is None:
        return None

    columns = [
        column - indent
        for line, _, column, _ in positions()
        if line == code.co_firstlineno and column is not None
    ]

    def covered(node: ast.Lambda) -> int:
        end = node.end_col_offset if node.end_lineno == node.lineno else None
        return sum(
            1
            for column in columns
            if node.col_offset <= column and (end is None or column < end)
        )

    scored = [(covered(node), node) for node in candidates]
    best = max(score for score, _ in scored)
    if best == 0:
        return None

    return min(
        (node for score, node in scored if score == best),
        key=lambda node: (node.end_col_offset or 0) - node.col_offset,
    )


def _lambda_fingerprint(fn: Callable[..., Any]) -> bytes:
    # the source of a lambda is its whole statement, so only its own node is hashed
    code: CodeType = fn.__code__
    try:
        lines, start = inspect.getsourcelines(fn)
    except (OSError, TypeError):
        return _code_fingerprint(code)

    source = textwrap.dedent("".join(lines))
    indent = len(lines[0]) - len(source.splitlines(keepends=True)[0])
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return _code_fingerprint(code)

    lineno = code.co_firstlineno - max(start, 1) + 1
    candidates = [
        node
        for node in ast.walk(tree)
        if isinstance(node, ast.Lambda) and node.lineno == lineno
    ]

    node = _closest_lambda(candidates, code, indent)
    if node is None:
        return _code_fingerprint(code)

    return ast.dump(node).encode()


def _source_fingerprint(fn: Callable[..., Any]) -> bytes:
    if isinstance(fn, partial):
        bound = repr((fn.args, sorted(fn.keywords.items())))
        return _source_fingerprint(fn.func) + b"|" + bound.encode()

    if isinstance(fn, FunctionType) and fn.__name__ == "<lambda>":
        return _lambda_fingerprint(fn)

    # callable instances are fingerprinted by their class
    target = fn if inspect.isroutine(fn) or inspect.isclass(fn) else type(fn)

    try:
        source = textwrap.dedent(inspect.getsource(target))
    except (OSError, TypeError):
        code = getattr(target, "__code__", None)
        if code is None:
            name = getattr(target, "__qualname__", type(target).__qualname__)
            return f"{getattr(target, '__module__', None)}.{name}".encode()

        return _code_fingerprint(code)

    try:
        # the AST drops comments, blank lines and formatting but keeps all logic
        return ast.dump(ast.parse(source)).encode()
    except SyntaxError:
        # source that is only a fragment of a larger expression
        lines = (line.strip() for line in source.splitlines())
        return "\n".join(line for line in lines if line).encode()


def compute_function_hash(fn: Callable[..., Any]) -> str:
    """Compute a content hash that only changes when the function's logic changes."""
    if not callable(fn):
        raise failed_function_action(f"{fn!r} is not callable.")

    return digest(_source_fingerprint(fn))


@dataclass(frozen=True)
class FunctionRef(Generic[ContextT, InputT, OutputT]):
    id: str
    fn: "OperationFn[ContextT, InputT, OutputT]"
    hash: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", compute_function_hash(self.fn))

    @classmethod
    def unmarshal(
        cls, data: "FunctionSnapshot | dict[str, Any]", registry: FunctionRegistry
    ) -> "FunctionRef[Any, Any, Any]":
        """
        Restore a reference from its snapshot, looking the callable up by id. The hash
        is recomputed from the registry's callable rather than trusted.
        """
        snapshot = FunctionSnapshot.check(data)

        fn = registry.get(snapshot.id)
        if fn is None:
            raise serialization_failed(f"function not found in registry: {snapshot.id}")

        ref = cls(snapshot.id, fn)
        if ref.hash != snapshot.hash:
            if get_config().strict_function_hash:
                raise serialization_failed(
                    f"function '{snapshot.id}' does not match its snapshot hash"
                )

            warnings.warn(
                f"Function '{snapshot.id}' has changed since it was snapshotted. Its"
                " cached results may be stale; sync the workflow to invalidate them.",
                FunctionDriftWarning,
                stacklevel=3,
            )

        return ref

    def marshal(self) -> FunctionSnapshot:
        return FunctionSnapshot(id=self.id, hash=self.hash)

    async def invoke(self, context: ContextT, input: InputT) -> OutputT:
        result = self.fn(context, input)
        if inspect.isawaitable(result):
            result = await result

        return result
