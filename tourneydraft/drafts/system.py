"""The surface the wizard talks to: draft operations plus save status."""

from __future__ import annotations

import logging
import os
import threading
from typing import TYPE_CHECKING, Any, Mapping

from tourneydraft.errors import AppError

from .audit import FirestoreAuditEmitter, LoggingAuditEmitter
from .autosave import AutosaveScheduler, TimerFactory
from .config import DraftConfig
from .connectivity import WENT_ONLINE, ConnectivityMonitor
from .local_store import JsonKeyValueStore, LocalDraftStore
from .models import OutcomeKind
from .remote_store import FirestoreDraftStore
from .repository import DraftRepository
from .utils import format_timestamp, utc_now

if TYPE_CHECKING:
    import datetime

    from google.cloud.firestore_v1.client import Client

    from .models import Draft, ReconcileReport, SaveOutcome

logger = logging.getLogger(__name__)

OFFLINE_MESSAGE = "You are offline. Changes are kept until the connection returns."


class DraftSystem:
    """Draft operations for one signed-in user, with observable save status."""

    def __init__(
        self,
        repository: DraftRepository,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.repository = repository
        self.config = repository.config
        self.scheduler = AutosaveScheduler(
            self._commit,
            debounce_seconds=self.config.debounce_seconds,
            checkpoints=self.config.checkpoints,
            timer_factory=timer_factory,
        )
        self.current_draft_id: str | None = None
        self._saving = 0
        self._last_saved: datetime.datetime | None = None
        self._error: str | None = None
        self._outcomes = threading.local()
        self._status_lock = threading.Lock()
        self._reconnect_thread: threading.Thread | None = None
        self._unsubscribe = repository.connectivity.subscribe(self._on_connectivity)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_saving(self) -> bool:
        return self._saving > 0

    @property
    def last_saved(self) -> datetime.datetime | None:
        return self._last_saved

    @property
    def is_online(self) -> bool:
        return self.repository.connectivity.is_online

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def last_outcome(self) -> SaveOutcome | None:
        """The outcome of the calling thread's most recent write, if any."""
        return getattr(self._outcomes, "outcome", None)

    def status(self) -> dict[str, Any]:
        return {
            "is_saving": self.is_saving,
            "last_saved": format_timestamp(self._last_saved) if self._last_saved else None,
            "is_online": self.is_online,
            "error": self._error,
            "current_draft_id": self.current_draft_id,
            "has_pending_changes": self.scheduler.has_pending(),
        }

    def _set_error(self, message: str | None) -> None:
        with self._status_lock:
            self._error = message

    def _record(self, outcome: SaveOutcome | None) -> bool:
        self._outcomes.outcome = outcome
        if outcome is None:
            return True
        with self._status_lock:
            if outcome.succeeded:
                self._last_saved = utc_now()
                self._error = None
            elif outcome.kind is OutcomeKind.NETWORK_FAILED:
                self._error = OFFLINE_MESSAGE
            else:
                self._error = outcome.message
        return outcome.succeeded

    def _commit(self, draft_id: str, patch: dict[str, Any]) -> SaveOutcome:
        """Autosave commit: repository update wrapped in the saving flag."""
        with self._status_lock:
            self._saving += 1
        try:
            outcome = self.repository.update(draft_id, patch)
        finally:
            with self._status_lock:
                self._saving -= 1
        self._record(outcome)
        return outcome

    def _on_connectivity(self, event: str) -> None:
        if event != WENT_ONLINE or not self.config.sync_on_reconnect:
            return

        def task() -> None:
            """Reconcile after the connection came back."""
            try:
                self.sync()
            except Exception as e:
                logger.error(f"Sync after reconnect failed: {e}")

        self._reconnect_thread = threading.Thread(target=task, daemon=True)
        self._reconnect_thread.start()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, initial_document: dict[str, Any] | None = None) -> str:
        self._set_error(None)
        draft_id = self.repository.create(initial_document)
        self.current_draft_id = draft_id
        return draft_id

    def load(self, draft_id: str) -> Draft | None:
        self._set_error(None)
        try:
            draft = self.repository.load(draft_id)
        except AppError as e:
            self._set_error(e.message)
            return None
        self.current_draft_id = draft_id
        return draft

    def update(
        self, draft_id: str, patch: dict[str, Any], checkpoint: str | None = None
    ) -> SaveOutcome | None:
        """Queue an edit. Checkpoint edits are committed before returning."""
        return self.scheduler.edit(draft_id, patch, checkpoint)

    def save_now(self, draft_id: str) -> bool:
        """Force-flush pending edits for a draft."""
        return self._record(self.scheduler.flush(draft_id))

    def rename(self, draft_id: str, name: str) -> bool:
        if not self.save_now(draft_id):
            return False
        return self._record(self.repository.rename(draft_id, name))

    def complete(self, draft_id: str, tournament_id: str) -> bool:
        if not self.save_now(draft_id):
            return False
        self.scheduler.discard(draft_id)
        succeeded = self._record(self.repository.complete(draft_id, tournament_id))
        if succeeded and self.current_draft_id == draft_id:
            self.current_draft_id = None
        return succeeded

    def delete(self, draft_id: str) -> bool:
        self.scheduler.discard(draft_id)
        succeeded = self._record(self.repository.delete(draft_id))
        if self.current_draft_id == draft_id:
            self.current_draft_id = None
        return succeeded

    def list(self) -> list[Draft]:
        try:
            return self.repository.list()
        except AppError as e:
            self._set_error(e.message)
            return []

    def check_existing(self) -> list[Draft]:
        try:
            return self.repository.check_existing()
        except AppError as e:
            self._set_error(e.message)
            return []

    def sync(self) -> ReconcileReport:
        """Flush pending edits, then reconcile both tiers."""
        self.scheduler.flush_all()
        report = self.repository.reconcile()
        if report.succeeded:
            self._set_error(None)
        elif report.network_failed or not self.is_online:
            self._set_error(OFFLINE_MESSAGE)
        elif report.error:
            self._set_error(report.error)
        return report

    def close(self) -> None:
        self._unsubscribe()
        self.scheduler.shutdown()


def build_draft_system(
    config: Mapping[str, Any],
    owner: str | None,
    db: Client | None = None,
    connectivity: ConnectivityMonitor | None = None,
) -> DraftSystem:
    """Wire a ``DraftSystem`` from a Flask-style config mapping."""
    draft_config = DraftConfig.from_mapping(config)
    connectivity = connectivity or ConnectivityMonitor()

    store_dir = config.get("DRAFT_LOCAL_STORE_DIR") or "drafts"
    filename = f"{owner or 'anonymous'}.json"
    local = LocalDraftStore(
        JsonKeyValueStore(os.path.join(store_dir, filename)),
        key=draft_config.local_key,
    )
    remote = FirestoreDraftStore(db=db, connectivity=connectivity)
    if draft_config.audit_enabled:
        audit: Any = FirestoreAuditEmitter(owner, db=db)
    else:
        audit = LoggingAuditEmitter()

    repository = DraftRepository(
        local,
        remote,
        connectivity=connectivity,
        owner=owner,
        audit=audit,
        config=draft_config,
    )
    return DraftSystem(repository)


class DraftSystemRegistry:
    """One ``DraftSystem`` per signed-in user, created on first use."""

    def __init__(self, config: Mapping[str, Any]) -> None:
        self.config = config
        self._systems: dict[str, DraftSystem] = {}
        self._lock = threading.Lock()

    def get(self, owner: str, db: Client | None = None) -> DraftSystem:
        with self._lock:
            system = self._systems.get(owner)
            if system is None:
                system = self._systems[owner] = build_draft_system(
                    self.config, owner, db=db
                )
            return system

    def discard(self, owner: str) -> None:
        with self._lock:
            system = self._systems.pop(owner, None)
        if system is not None:
            system.close()

    def close_all(self) -> None:
        with self._lock:
            systems = list(self._systems.values())
            self._systems.clear()
        for system in systems:
            system.close()
