"""Unified configuration schema for gitstore.

Defines Pydantic models for the config structure with dedicated sections
for the store (working copy and remote), the sync scheduler, and logging.

Usage:
    from gitstore.config_schema import build_config

    config = build_config({"store": {"instance": "laptop"}})
"""

from __future__ import annotations

import logging
import socket
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from gitstore.storage.mapper import validate_name

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


def _default_instance() -> str:
    return socket.gethostname() or "gitstore"


class StoreConfig(BaseModel):
    """Working copy and remote settings for one instance."""

    path: str = Field(
        default=".gitstore/data", description="Local working copy directory"
    )
    instance: str = Field(
        default_factory=_default_instance,
        description="Instance name recorded in commits",
    )
    remote_url: str | None = Field(
        default=None, description="URL or path of the shared remote"
    )
    remote_name: str = Field(default="origin", description="Git remote name")
    branch: str = Field(default="main", description="Shared branch name")
    git_binary: str = Field(default="git", description="git executable")
    author_email: str | None = Field(
        default=None,
        description="Commit author email (default: <instance>@gitstore)",
    )

    model_config = {"frozen": True}

    @field_validator("remote_name", "branch")
    @classmethod
    def _simple_name(cls, value: str) -> str:
        return validate_name(value, "git name")

    @property
    def email(self) -> str:
        return self.author_email or f"{self.instance}@gitstore"


class SyncConfig(BaseModel):
    """Sync scheduler settings.

    Attributes:
        mode: ``"auto"`` queues a sync after every local commit;
            ``"batched"`` only syncs on ``flush()``.
        max_retries: Push attempts retried on contention before giving up.
        backoff_base: First retry delay in seconds; doubles per retry.
        backoff_max: Upper bound for a single retry delay.
        git_timeout: Seconds allowed for a single git command.
    """

    mode: Literal["auto", "batched"] = "auto"
    max_retries: int = Field(default=5, ge=0, le=50)
    backoff_base: float = Field(default=0.2, ge=0)
    backoff_max: float = Field(default=5.0, ge=0)
    git_timeout: float = Field(default=60.0, gt=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_backoff(self) -> SyncConfig:
        if self.backoff_max < self.backoff_base:
            raise ValueError("backoff_max must be >= backoff_base")
        return self

    def backoff_delay(self, retry: int) -> float:
        """Delay before retry number *retry* (0-based)."""
        return min(self.backoff_max, self.backoff_base * (2**retry))


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``"text"`` or ``"json"``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = "text"

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` is always valid.
    """

    store: StoreConfig = Field(default_factory=StoreConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict | None) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the merged section dict returned by
    ``config_loader.load_config_data()``.

    Missing sections get defaults.  Unknown top-level keys are ignored with
    a warning.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    known = set(UnifiedConfig.model_fields)
    unknown = sorted(set(raw_data) - known)
    if unknown:
        logger.warning("Ignoring unknown config sections: %s", unknown)
    return UnifiedConfig(**{k: v for k, v in raw_data.items() if k in known})
