from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    hash_algorithm: Literal["sha256", "sha512", "blake2b"] = "sha256"
    """Digest used for both function hashes and operation input hashes."""

    strict_function_hash: bool = False
    """
    Fail, rather than warn, when a restored function hashes differently than its
    snapshot recorded.
    """

    json_sort_keys: bool = True
    """Sort mapping keys when encoding operation inputs for hashing."""

    model_config = SettingsConfigDict(env_prefix="FLOWSTATE_")


@lru_cache(maxsize=1)
def get_config() -> Config:
    """Get the process-wide Config. Call `get_config.cache_clear()` to reload."""
    return Config()
