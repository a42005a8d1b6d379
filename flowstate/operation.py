import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic

import anyio

from .exceptions import value_not_computed
from .function import ContextT, FunctionRef, InputT, OutputT
from .serialization import hash_value, serializer
from .snapshot import CacheSnapshot, OperationSnapshot

if TYPE_CHECKING:  # pragma: no cover
    from .function import FunctionRegistry, OperationFn

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CachedValue(Generic[OutputT]):
    hash: str
    """Hash of the input the value was computed from."""
    value: OutputT


class Operation(Generic[ContextT, InputT, OutputT]):
    """
    A named unit of computation whose output is cached against a hash of its input
    value. Evaluating the same input twice only invokes the function once.
    """

    def __init__(
        self,
        id: str,
        func: "FunctionRef[ContextT, InputT, OutputT] | OperationFn[Any, Any, Any]",
        cache: CachedValue[OutputT] | None = None,
    ) -> None:
        self._id = id
        self.func: FunctionRef[ContextT, InputT, OutputT] = (
            func if isinstance(func, FunctionRef) else FunctionRef(id, func)
        )
        self._cache = cache
        self._cache_lock = anyio.Lock()

    def __repr__(self) -> str:
        return f"Operation(id={self._id!r}, done={self.done})"

    @property
    def id(self) -> str:
        return self._id

    @property
    def cache(self) -> CachedValue[OutputT] | None:
        return self._cache

    @property
    def done(self) -> bool:
        return self._cache is not None

    @property
    def value(self) -> OutputT:
        if self._cache is None:
            raise value_not_computed(self._id)

        return self._cache.value

    def clear(self) -> None:
        self._cache = None

    def test(self, context: ContextT, input: InputT) -> bool:
        """Whether evaluating `input` would be answered from the cache."""
        return self._cache is not None and self._cache.hash == hash_value(input)

    async def eval(self, context: ContextT, input: InputT) -> OutputT:
        input_hash = hash_value(input)

        async with self._cache_lock:
            if self._cache is not None and self._cache.hash == input_hash:
                logger.debug("Operation '%s' answered from cache.", self._id)
                return self._cache.value

            logger.debug("Evaluating operation '%s'.", self._id)
            value = await self.func.invoke(context, input)
            self._cache = CachedValue(hash=input_hash, value=value)

            return value

    @classmethod
    def unmarshal(
        cls, data: "OperationSnapshot | dict[str, Any]", registry: "FunctionRegistry"
    ) -> "Operation[Any, Any, Any]":
        snapshot = OperationSnapshot.check(data)

        func = FunctionRef.unmarshal(snapshot.func, registry)
        cache = (
            CachedValue(
                hash=snapshot.cache.hash, value=serializer.load(snapshot.cache.value)
            )
            if snapshot.cache is not None
            else None
        )

        return cls(snapshot.id, func, cache=cache)

    def marshal(self) -> OperationSnapshot:
        return OperationSnapshot(
            id=self._id,
            func=self.func.marshal(),
            cache=(
                CacheSnapshot(
                    hash=self._cache.hash, value=serializer.dump(self._cache.value)
                )
                if self._cache is not None
                else None
            ),
        )

    def _copy(self) -> "Operation[ContextT, InputT, OutputT]":
        # the function reference and cache entry are immutable, so they can be shared
        return type(self)(self._id, self.func, cache=self._cache)
