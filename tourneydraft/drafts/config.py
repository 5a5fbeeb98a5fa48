"""Draft engine settings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from tourneydraft.core.constants import (
    DEFAULT_CHECKPOINTS,
    DEFAULT_DEBOUNCE_SECONDS,
    LOCAL_DRAFTS_KEY,
    STORAGE_LOCAL,
    STORAGE_NONE,
    STORAGE_REMOTE,
)
from tourneydraft.errors import ValidationError


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ["true", "1", "t", "yes"]
    return bool(value)


def _as_names(value: Any) -> tuple[str, ...]:
    if value is None:
        return DEFAULT_CHECKPOINTS
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(part) for part in value)


@dataclass(frozen=True)
class DraftConfig:
    """How drafts are stored and autosaved."""

    primary_storage: str = STORAGE_REMOTE
    fallback_storage: str = STORAGE_LOCAL
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    checkpoints: tuple[str, ...] = DEFAULT_CHECKPOINTS
    local_key: str = LOCAL_DRAFTS_KEY
    sync_on_reconnect: bool = True
    audit_enabled: bool = True

    def __post_init__(self) -> None:
        if self.primary_storage not in (STORAGE_REMOTE, STORAGE_LOCAL):
            raise ValidationError(
                f"Unknown primary draft storage: {self.primary_storage}"
            )
        if self.fallback_storage not in (STORAGE_LOCAL, STORAGE_NONE):
            raise ValidationError(
                f"Unknown fallback draft storage: {self.fallback_storage}"
            )
        if self.debounce_seconds < 0:
            raise ValidationError("Debounce interval cannot be negative.")

    @property
    def uses_remote(self) -> bool:
        return self.primary_storage == STORAGE_REMOTE

    @property
    def uses_local(self) -> bool:
        """Whether the local cache is written at all."""
        return (
            self.primary_storage == STORAGE_LOCAL
            or self.fallback_storage == STORAGE_LOCAL
        )

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> DraftConfig:
        """Build settings from a Flask config (``DRAFT_*`` keys)."""
        return cls(
            primary_storage=str(
                config.get("DRAFT_PRIMARY_STORAGE") or STORAGE_REMOTE
            ).lower(),
            fallback_storage=str(
                config.get("DRAFT_FALLBACK_STORAGE") or STORAGE_LOCAL
            ).lower(),
            debounce_seconds=float(
                config.get("DRAFT_DEBOUNCE_SECONDS", DEFAULT_DEBOUNCE_SECONDS)
            ),
            checkpoints=_as_names(config.get("DRAFT_CHECKPOINTS")),
            local_key=config.get("DRAFT_LOCAL_KEY") or LOCAL_DRAFTS_KEY,
            sync_on_reconnect=_as_bool(config.get("DRAFT_SYNC_ON_RECONNECT", True)),
            audit_enabled=_as_bool(config.get("DRAFT_AUDIT_ENABLED", True)),
        )
