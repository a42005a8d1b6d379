import base64
import binascii
import hashlib
import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, final

from pydantic_core import (
    PydanticSerializationError,
    from_json,
    to_json,
    to_jsonable_python,
)

from .config import get_config
from .exceptions import failed_operation_action

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any


def digest(data: bytes) -> str:
    """Hex digest of `data` using the configured hash algorithm."""
    return hashlib.new(get_config().hash_algorithm, data).hexdigest()


def hash_value(value: "Any") -> str:
    """
    Stable content hash of a JSON-compatible value. `None` hashes as the empty object
    so that operations taking no input hash consistently.
    """
    if value is None:
        value = {}

    try:
        encoded = json.dumps(
            to_jsonable_python(value),
            sort_keys=get_config().json_sort_keys,
            separators=(",", ":"),
        )
    except (PydanticSerializationError, TypeError, ValueError) as e:
        raise failed_operation_action(f"{value!r} is not a hashable value.") from e

    return digest(encoded.encode())


class Serializer(ABC):
    @abstractmethod
    def serialize(self, value: "Any") -> bytes:
        """Serialize a value to a bytestream."""
        raise NotImplementedError()

    @abstractmethod
    def deserialize(self, data: bytes) -> "Any":
        """Deserialize a bytestream."""
        raise NotImplementedError()

    @abstractmethod
    def encode(self, data: bytes) -> str:
        """Encode a bytestream as text for embedding in a snapshot."""
        raise NotImplementedError()

    @abstractmethod
    def decode(self, data: str) -> bytes:
        """Decode snapshot text back into a bytestream."""
        raise NotImplementedError()

    @final
    def dump(self, value: "Any") -> str:
        """Serialize and encode a value for a snapshot."""
        try:
            return self.encode(self.serialize(value))
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise failed_operation_action(
                f"{value!r} is not a serializable value."
            ) from e

    @final
    def load(self, data: str) -> "Any":
        """Decode and deserialize a snapshot value."""
        try:
            return self.deserialize(self.decode(data))
        except (binascii.Error, ValueError) as e:
            raise failed_operation_action("Snapshot value could not be decoded.") from e


class Base64JsonSerializer(Serializer):
    """
    JSON bytes wrapped in base64. `None` is written as the empty object, so it reads
    back as `{}`.
    """

    def serialize(self, value: "Any") -> bytes:
        if value is None:
            return b"{}"

        return to_json(value)

    def deserialize(self, data: bytes) -> "Any":
        return from_json(data)

    def encode(self, data: bytes) -> str:
        return base64.b64encode(data).decode("ascii")

    def decode(self, data: str) -> bytes:
        return base64.b64decode(data.encode("ascii"), validate=True)


serializer: Serializer = Base64JsonSerializer()
