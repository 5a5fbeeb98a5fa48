"""Data models for the drafts blueprint."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from tourneydraft.core.types import FirestoreDocument


class Draft(FirestoreDocument, total=False):
    """A partially completed tournament-creation form."""

    owner: str
    document: dict[str, Any]
    name: str
    status: str  # draft/completed


class DraftState(enum.Enum):
    """Where a draft currently lives relative to the two storage tiers."""

    UNSAVED = "unsaved"
    LOCAL_ONLY = "local_only"
    SYNCED = "synced"
    LOCAL_AHEAD = "local_ahead"
    DELETED = "deleted"
    COMPLETED = "completed"


class StorageTier(enum.Enum):
    """A storage backend."""

    REMOTE = "remote"
    LOCAL = "local"


class OutcomeKind(enum.Enum):
    """Result of a persistence attempt."""

    OK = "ok"
    NETWORK_FAILED = "network_failed"
    FATAL = "fatal"


@dataclass(frozen=True)
class SaveOutcome:
    """Typed result of a repository write.

    ``OK`` carries the tier that ended up holding the write. ``NETWORK_FAILED``
    means the remote tier was unreachable and nothing else took the write.
    ``FATAL`` carries the error that stopped the operation; in-memory state is
    unchanged in that case.
    """

    kind: OutcomeKind
    tier: StorageTier | None = None
    error: Exception | None = None

    @classmethod
    def ok(cls, tier: StorageTier) -> SaveOutcome:
        return cls(OutcomeKind.OK, tier=tier)

    @classmethod
    def network_failed(cls, error: Exception) -> SaveOutcome:
        return cls(OutcomeKind.NETWORK_FAILED, error=error)

    @classmethod
    def fatal(cls, error: Exception) -> SaveOutcome:
        return cls(OutcomeKind.FATAL, error=error)

    @property
    def succeeded(self) -> bool:
        """Whether some tier durably holds the write."""
        return self.kind is OutcomeKind.OK

    @property
    def message(self) -> str | None:
        """User-facing error message, if any."""
        if self.error is None:
            return None
        return getattr(self.error, "message", None) or str(self.error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "tier": self.tier.value if self.tier else None,
            "error": self.message,
        }


@dataclass
class ReconcileReport:
    """Summary of one reconciliation pass."""

    uploaded: list[str] = field(default_factory=list)
    pushed: list[str] = field(default_factory=list)
    pulled: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: bool = False
    network_failed: bool = False
    local_rewritten: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return not self.skipped and not self.network_failed and self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploaded": list(self.uploaded),
            "pushed": list(self.pushed),
            "pulled": list(self.pulled),
            "dropped": list(self.dropped),
            "deleted": list(self.deleted),
            "failed": dict(self.failed),
            "skipped": self.skipped,
            "network_failed": self.network_failed,
            "error": self.error,
        }
