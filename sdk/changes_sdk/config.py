"""
Configuration for the changes SDK.

Two layers:
- ReaderConfig: defaults a ChangesReader resets to after every run
- ClientSettings: connection and logging settings (pydantic-settings)

Invariants:
    - All settings have sensible defaults for local development
    - ReaderConfig is immutable; overrides produce a new validated instance
    - Invalid values raise ConfigurationError, never a bare ValueError

How to change safely:
    - Add new settings with defaults that keep existing behavior
    - Keep environment variable names under the CHANGES_ prefix
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import ConfigurationError
from .types import NOW, FeedPosition, normalize_position

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_TIMEOUT_MS = 60000
DEFAULT_HEARTBEAT_MS = 5000


def _require_int(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(
            f"{name} must be an integer, got {type(value).__name__}", option=name
        )
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}", option=name)
    return value


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid integer in {name}: {raw!r}", option=name)


@dataclass(frozen=True)
class ReaderConfig:
    """Changes reader defaults.

    Attributes:
        batch_size: Changes requested per long-poll (also sent as seq_interval)
        since: Starting position ("now" for the tail, "0" for the beginning)
        include_docs: Whether records carry document bodies
        max_changes: Ceiling on changes delivered per run (None = unbounded)
        timeout_ms: Server-side long-poll timeout
        heartbeat_ms: Server-side heartbeat interval
    """

    batch_size: int = DEFAULT_BATCH_SIZE
    since: FeedPosition = NOW
    include_docs: bool = False
    max_changes: Optional[int] = None
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    heartbeat_ms: int = DEFAULT_HEARTBEAT_MS

    @classmethod
    def from_env(cls) -> ReaderConfig:
        """Load defaults from environment variables.

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        config = cls(
            batch_size=_env_int("CHANGES_BATCH_SIZE", DEFAULT_BATCH_SIZE),
            since=os.getenv("CHANGES_SINCE", NOW),
            include_docs=os.getenv("CHANGES_INCLUDE_DOCS", "false").lower() == "true",
            max_changes=_env_int("CHANGES_MAX_CHANGES", None),
            timeout_ms=_env_int("CHANGES_TIMEOUT_MS", DEFAULT_TIMEOUT_MS),
            heartbeat_ms=_env_int("CHANGES_HEARTBEAT_MS", DEFAULT_HEARTBEAT_MS),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate option types and ranges.

        Raises:
            ConfigurationError: If any option is invalid
        """
        _require_int("batch_size", self.batch_size, 1)
        _require_int("timeout_ms", self.timeout_ms, 0)
        _require_int("heartbeat_ms", self.heartbeat_ms, 0)
        if self.max_changes is not None:
            _require_int("max_changes", self.max_changes, 1)
        if not isinstance(self.include_docs, bool):
            raise ConfigurationError(
                f"include_docs must be a bool, got {type(self.include_docs).__name__}",
                option="include_docs",
            )
        if not isinstance(self.since, str) or not self.since:
            raise ConfigurationError(
                f"since must be a non-empty string, got {self.since!r}", option="since"
            )

    def with_overrides(
        self,
        batch_size: Optional[int] = None,
        since: Optional[Union[FeedPosition, int]] = None,
        include_docs: Optional[bool] = None,
        max_changes: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        heartbeat_ms: Optional[int] = None,
    ) -> ReaderConfig:
        """Return a validated copy with the given options replaced.

        Options left as None keep their current value.

        Raises:
            ConfigurationError: If an override is invalid
        """
        changes: dict[str, Any] = {}
        if batch_size is not None:
            changes["batch_size"] = batch_size
        if since is not None:
            try:
                changes["since"] = normalize_position(since)
            except TypeError as e:
                raise ConfigurationError(str(e), option="since") from e
        if include_docs is not None:
            changes["include_docs"] = include_docs
        if max_changes is not None:
            changes["max_changes"] = max_changes
        if timeout_ms is not None:
            changes["timeout_ms"] = timeout_ms
        if heartbeat_ms is not None:
            changes["heartbeat_ms"] = heartbeat_ms

        config = dataclasses.replace(self, **changes)
        config.validate()
        return config


class ClientSettings(BaseSettings):
    """Connection and logging settings loaded from the environment."""

    url: str = Field(default="http://localhost:5984", description="Database server base URL")
    request_timeout: float = Field(
        default=90.0,
        description="HTTP read timeout in seconds; must exceed the long-poll timeout",
    )
    connect_timeout: float = Field(default=10.0, description="HTTP connect timeout in seconds")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format (json, text)")

    model_config = {"env_prefix": "CHANGES_"}

    def check_timeouts(self, reader: ReaderConfig) -> None:
        """Warn when the HTTP timeout would cut long-polls short."""
        if self.request_timeout * 1000 <= reader.timeout_ms:
            logger.warning(
                "HTTP request timeout is shorter than the long-poll timeout",
                extra={
                    "request_timeout_s": self.request_timeout,
                    "longpoll_timeout_ms": reader.timeout_ms,
                },
            )
