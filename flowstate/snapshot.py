from typing import TYPE_CHECKING, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from .exceptions import value_validation_failed

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any

M = TypeVar("M", bound="Snapshot")


class Snapshot(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    @classmethod
    def check(cls: type[M], data: "M | dict[str, Any]") -> M:
        """
        Validate `data` against this snapshot's shape, failing with the granular
        validation errors when it does not conform.
        """
        if isinstance(data, cls):
            return data

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise value_validation_failed(
                f"invalid {cls.__name__.removesuffix('Snapshot').lower()} data",
                e.errors(include_url=False),
            ) from e

    def dump(self) -> dict[str, "Any"]:
        return self.model_dump(exclude_none=True)

    def model_dump_json(self, *, exclude_none: bool = True, **kwargs: "Any") -> str:
        # an absent cache is omitted rather than written as null
        return super().model_dump_json(exclude_none=exclude_none, **kwargs)


class FunctionSnapshot(Snapshot):
    id: str
    hash: str


class CacheSnapshot(Snapshot):
    hash: str
    value: str
    """Base64 of the JSON-encoded cached output."""


class OperationSnapshot(Snapshot):
    id: str
    func: FunctionSnapshot
    cache: CacheSnapshot | None = None


class WorkflowSnapshot(Snapshot):
    graph: str
    """Base64 of the JSON-encoded node-link graph."""
    operations: list[OperationSnapshot]
