"""Pydantic configuration models for snapshot runs."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Self

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator


class LogFormat(StrEnum):
    """Supported log renderers."""

    CONSOLE = "console"
    JSON = "json"


class ServerConfig(BaseModel):
    """CouchDB / Cloudant server connection settings."""

    url: str = "http://localhost:5984"
    username: str | None = None
    password: SecretStr | None = None
    # Bearer token, e.g. an IAM access token for Cloudant.
    auth_token: SecretStr | None = None
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            msg = f"Server url '{v}' must start with http:// or https://"
            raise ValueError(msg)
        return v.rstrip("/")

    @model_validator(mode="after")
    def check_auth_requirements(self) -> Self:
        """Basic auth needs both halves; it cannot be combined with a token."""
        if (self.username is None) != (self.password is None):
            msg = "username and password must be provided together"
            raise ValueError(msg)
        if self.username is not None and self.auth_token is not None:
            msg = "use either username/password or auth_token, not both"
            raise ValueError(msg)
        return self


class RetryConfig(BaseModel):
    """Retry / backoff configuration for changes feed requests."""

    max_attempts: int = Field(default=3, ge=1)
    initial_wait_seconds: float = Field(default=0.5, ge=0)
    max_wait_seconds: float = Field(default=5.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)


class FeedConfig(BaseModel):
    """Paging of the one-off changes traversal."""

    batch_size: int = Field(default=1000, ge=1)


class SnapshotConfig(BaseModel):
    """Per-run settings: which database, where to write, what to keep."""

    database: str | None = None
    include_deletions: bool = False
    output_dir: Path = Path(".")

    @field_validator("database")
    @classmethod
    def blank_is_missing(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


class PlatformConfig(BaseModel, extra="forbid"):
    """Top-level configuration: server, retries, paging, run and logging."""

    server: ServerConfig = ServerConfig()
    retry: RetryConfig = RetryConfig()
    feed: FeedConfig = FeedConfig()
    snapshot: SnapshotConfig = SnapshotConfig()
    log_level: str = "INFO"
    log_format: LogFormat = LogFormat.CONSOLE

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            msg = f"Unknown log level '{v}'"
            raise ValueError(msg)
        return level
