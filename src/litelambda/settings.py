"""Environment-driven defaults for litelambda connections.

Explicit arguments to ``litelambda.open`` always win; these settings only
supply what the caller leaves out.

Fields
──────
timeout            : Seconds the engine waits on a locked database before SQLITE_BUSY
null_policy        : ``raise`` or ``zero`` for NULL read into a non-nullable type
foreign_keys       : Enable ``PRAGMA foreign_keys`` on every new connection
cached_statements  : Size of the engine's compiled-statement cache
log_level          : Default level for ``configure_logging``

Examples:
    >>> import os
    >>> os.environ["LITELAMBDA_NULL_POLICY"] = "zero"
    >>> LiteSettings().null_policy
    <NullPolicy.ZERO: 'zero'>
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from litelambda.codec import NullPolicy


class LiteSettings(BaseSettings):
    """Connection defaults read from ``LITELAMBDA_*`` variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_prefix="LITELAMBDA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Engine ───────────────────────────────────────────────────
    timeout: float = Field(default=5.0, ge=0.0)
    foreign_keys: bool = True
    cached_statements: int = Field(default=128, ge=0)

    # ── Codec ────────────────────────────────────────────────────
    null_policy: NullPolicy = NullPolicy.RAISE

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> LiteSettings:
    """Process-wide settings, read once."""
    return LiteSettings()
