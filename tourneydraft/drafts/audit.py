"""Fire-and-forget audit trail for draft state transitions."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

from firebase_admin import firestore

from tourneydraft.core.constants import AUDIT_LOGS_COLLECTION

if TYPE_CHECKING:
    from google.cloud.firestore_v1.client import Client

audit_logger = logging.getLogger("tourneydraft.audit")


class AuditEmitter:
    """Receives ``{action, details}`` notifications.

    Implementations must never raise into the caller and must not block the
    operation that emitted the event.
    """

    def emit(self, action: str, details: dict[str, Any] | None = None) -> None:
        try:
            self._deliver(action, dict(details or {}))
        except Exception as e:
            audit_logger.error(f"Audit delivery failed for {action}: {e}")

    def _deliver(self, action: str, details: dict[str, Any]) -> None:
        raise NotImplementedError


class LoggingAuditEmitter(AuditEmitter):
    """Writes audit events to the ``tourneydraft.audit`` logger."""

    def _deliver(self, action: str, details: dict[str, Any]) -> None:
        audit_logger.info("%s %s", action, details)


class FirestoreAuditEmitter(AuditEmitter):
    """Appends audit events to the ``audit_logs`` collection.

    Writes happen on a background thread unless ``background`` is False.
    """

    def __init__(
        self,
        user_id: str | None,
        db: Client | None = None,
        background: bool = True,
    ) -> None:
        self.user_id = user_id
        self._db = db
        self.background = background

    @property
    def db(self) -> Client:
        if self._db is None:
            self._db = firestore.client()
        return self._db

    def _deliver(self, action: str, details: dict[str, Any]) -> None:
        entry = {
            "user_id": self.user_id,
            "action": action,
            "details": details,
            "timestamp": firestore.SERVER_TIMESTAMP,
        }

        def task() -> None:
            """Write the audit entry."""
            try:
                self.db.collection(AUDIT_LOGS_COLLECTION).add(entry)
            except Exception as e:
                audit_logger.error(f"Could not write audit entry {action}: {e}")

        if not self.background:
            task()
            return
        thread = threading.Thread(target=task, daemon=True)
        thread.start()
