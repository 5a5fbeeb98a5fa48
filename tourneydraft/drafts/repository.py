"""Draft repository: owns the in-memory drafts and keeps both tiers convergent."""

from __future__ import annotations

import copy
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable

from tourneydraft.core.constants import (
    STATUS_COMPLETED,
    STATUS_DRAFT,
    TOURNAMENT_REFERENCE_FIELD,
)
from tourneydraft.errors import (
    AppError,
    LocalStorageError,
    NetworkError,
    NotFoundError,
    ValidationError,
)

from .audit import AuditEmitter, LoggingAuditEmitter
from .config import DraftConfig
from .connectivity import ConnectivityMonitor
from .models import (
    DraftState,
    OutcomeKind,
    ReconcileReport,
    SaveOutcome,
    StorageTier,
)
from .utils import (
    build_draft,
    display_name,
    is_newer,
    merge_document,
    newest_by_id,
    next_timestamp,
    sort_by_last_updated,
)

if TYPE_CHECKING:
    from .local_store import LocalDraftStore
    from .models import Draft
    from .remote_store import FirestoreDraftStore

logger = logging.getLogger(__name__)

_TERMINAL_STATES = (DraftState.DELETED, DraftState.COMPLETED)
_UNSYNCED_STATES = (DraftState.UNSAVED, DraftState.LOCAL_ONLY, DraftState.LOCAL_AHEAD)
_SYNC_FIELDS = ("document", "name", "status", "last_updated")


class DraftRepository:
    """Decides which tier is authoritative per operation and reconciles them.

    One instance per signed-in session. The remote tier is tried first while
    online; a ``NetworkError`` falls back to the local cache, while any other
    remote rejection is returned as a fatal outcome. Every write is computed on
    a copy and only swapped into memory once storage accepted it.
    """

    def __init__(
        self,
        local: LocalDraftStore | None,
        remote: FirestoreDraftStore | None,
        connectivity: ConnectivityMonitor | None = None,
        owner: str | None = None,
        audit: AuditEmitter | None = None,
        config: DraftConfig | None = None,
    ) -> None:
        self.local = local
        self.remote = remote
        self.connectivity = connectivity or ConnectivityMonitor()
        self.owner = owner
        self.audit = audit or LoggingAuditEmitter()
        self.config = config or DraftConfig()

        self._drafts: dict[str, Draft] = {}
        self._states: dict[str, DraftState] = {}
        self._pending_completions: dict[str, Draft] = {}
        self._pending_deletions: set[str] = set()
        self._lock = threading.RLock()
        self._local_lock = threading.Lock()
        self._id_locks: dict[str, threading.Lock] = {}
        self._sync_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def remote_available(self) -> bool:
        """Whether a remote call would be attempted right now."""
        return (
            self.config.uses_remote
            and self.remote is not None
            and bool(self.owner)
            and self.connectivity.is_online
        )

    @property
    def _remote_configured(self) -> bool:
        """Whether remote writes can be queued for a later reconcile."""
        return self.config.uses_remote and self.remote is not None and bool(self.owner)

    @property
    def local_enabled(self) -> bool:
        return self.local is not None and self.config.uses_local

    def get(self, draft_id: str) -> Draft | None:
        """The in-memory copy of a draft, if any."""
        with self._lock:
            draft = self._drafts.get(draft_id)
            return copy.deepcopy(draft) if draft is not None else None

    def state_of(self, draft_id: str) -> DraftState | None:
        with self._lock:
            return self._states.get(draft_id)

    @property
    def drafts(self) -> list[Draft]:
        with self._lock:
            return sort_by_last_updated(copy.deepcopy(list(self._drafts.values())))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _id_lock(self, draft_id: str) -> threading.Lock:
        with self._lock:
            lock = self._id_locks.get(draft_id)
            if lock is None:
                lock = self._id_locks[draft_id] = threading.Lock()
            return lock

    def _with_owner(self, draft: Draft) -> Draft:
        owned = copy.deepcopy(draft)
        if self.owner:
            owned["owner"] = self.owner
        return owned

    def _owns(self, draft: Draft) -> bool:
        """Local drafts without an owner belong to whoever is signed in."""
        owner = draft.get("owner")
        return not owner or owner == self.owner

    def _commit(self, draft: Draft, state: DraftState) -> None:
        with self._lock:
            self._drafts[draft["id"]] = copy.deepcopy(draft)
            self._states[draft["id"]] = state

    def _forget(self, draft_id: str, state: DraftState) -> None:
        with self._lock:
            self._drafts.pop(draft_id, None)
            self._states[draft_id] = state

    def _unsynced_state(self, draft_id: str) -> DraftState:
        prior = self._states.get(draft_id, DraftState.UNSAVED)
        if prior in (DraftState.SYNCED, DraftState.LOCAL_AHEAD):
            return DraftState.LOCAL_AHEAD
        return DraftState.LOCAL_ONLY

    def _upsert_local(self, draft: Draft) -> None:
        with self._local_lock:
            drafts = self.local.read()
            replaced = False
            for index, existing in enumerate(drafts):
                if existing.get("id") == draft["id"]:
                    drafts[index] = copy.deepcopy(draft)
                    replaced = True
                    break
            if not replaced:
                drafts.append(copy.deepcopy(draft))
            self.local.write(drafts)

    def _remove_local(self, draft_id: str) -> None:
        with self._local_lock:
            drafts = self.local.read()
            remaining = [d for d in drafts if d.get("id") != draft_id]
            if len(remaining) != len(drafts):
                self.local.write(remaining)

    def _find_local(self, draft_id: str) -> Draft | None:
        for draft in self.local.read():
            if draft.get("id") == draft_id:
                return draft
        return None

    def _write_remote(
        self, error_event: str, draft_id: str, operation: Callable[[], Any]
    ) -> SaveOutcome:
        """Run a remote write and classify the result.

        Offline short-circuits without touching the network.
        """
        if not self.remote_available:
            return SaveOutcome.network_failed(
                NetworkError("Offline: saved without contacting the remote store.")
            )
        try:
            operation()
        except NetworkError as e:
            logger.warning("Remote write for draft %s failed: %s", draft_id, e.message)
            self.audit.emit(
                f"{error_event}_remote", {"draft_id": draft_id, "error": e.message}
            )
            return SaveOutcome.network_failed(e)
        except AppError as e:
            logger.error(f"Remote store rejected draft {draft_id}: {e.message}")
            self.audit.emit(
                f"{error_event}_remote", {"draft_id": draft_id, "error": e.message}
            )
            return SaveOutcome.fatal(e)
        return SaveOutcome.ok(StorageTier.REMOTE)

    def _push(self, draft: Draft, fields: dict[str, Any]) -> None:
        """Update the remote row, uploading it if it was never inserted."""
        try:
            self.remote.update(draft["id"], self.owner, fields)
        except NotFoundError:
            self.remote.insert(self._with_owner(draft))

    def _persist(self, draft: Draft, event: str, error_event: str) -> SaveOutcome:
        """Write a mutated draft remote-first, mirror it locally, then commit."""
        draft_id = draft["id"]
        fields = {key: draft[key] for key in _SYNC_FIELDS if key in draft}
        remote = self._write_remote(
            error_event, draft_id, lambda: self._push(draft, fields)
        )
        if remote.kind is OutcomeKind.FATAL:
            self.audit.emit(error_event, {"draft_id": draft_id, "error": remote.message})
            return remote

        if remote.succeeded and self.owner:
            draft["owner"] = self.owner

        if self.local_enabled:
            try:
                self._upsert_local(draft)
            except LocalStorageError as e:
                logger.error(f"Local save of draft {draft_id} failed: {e.message}")
                self.audit.emit(error_event, {"draft_id": draft_id, "error": e.message})
                return SaveOutcome.fatal(e)
        elif not remote.succeeded:
            return remote

        if remote.succeeded:
            state, outcome = DraftState.SYNCED, remote
        else:
            state = self._unsynced_state(draft_id)
            outcome = SaveOutcome.ok(StorageTier.LOCAL)
        self._commit(draft, state)
        self.audit.emit(
            f"{event}_{outcome.tier.value}",
            {"draft_id": draft_id, "draft_name": draft.get("name")},
        )
        return outcome

    def _current(self, draft_id: str) -> Draft:
        with self._lock:
            draft = self._drafts.get(draft_id)
            if draft is not None:
                return copy.deepcopy(draft)
        return self.load(draft_id)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(self, initial_document: dict[str, Any] | None = None) -> str:
        """Start a new draft. Never fails; worst case it lives only in memory."""
        draft = build_draft(initial_document)
        draft_id = draft["id"]

        remote = self._write_remote(
            "draft_create_error",
            draft_id,
            lambda: self.remote.insert(self._with_owner(draft)),
        )
        if remote.succeeded:
            draft = self._with_owner(draft)
            state = DraftState.SYNCED
        else:
            state = DraftState.LOCAL_ONLY

        if self.local_enabled:
            try:
                self._upsert_local(draft)
            except LocalStorageError as e:
                logger.error(f"Could not cache new draft {draft_id} locally: {e.message}")
                if not remote.succeeded:
                    state = DraftState.UNSAVED
        elif not remote.succeeded:
            state = DraftState.UNSAVED

        self._commit(draft, state)
        tier = "remote" if remote.succeeded else "local"
        self.audit.emit(
            f"draft_created_{tier}",
            {"draft_id": draft_id, "draft_name": draft["name"], "state": state.value},
        )
        return draft_id

    def load(self, draft_id: str) -> Draft:
        """Find a draft, remote first, falling back to the local cache.

        A remote ``NotFound`` does not stop the local lookup: the draft may have
        been created offline and never uploaded. When both tiers hold it, the
        strictly newer copy wins.
        """
        remote_copy = None
        if self.remote_available:
            try:
                remote_copy = self.remote.get_one(draft_id, self.owner)
            except (NetworkError, NotFoundError) as e:
                self.audit.emit(
                    "draft_load_error_remote", {"draft_id": draft_id, "error": e.message}
                )

        local_copy = None
        if self.local_enabled:
            try:
                local_copy = self._find_local(draft_id)
            except LocalStorageError as e:
                if remote_copy is None:
                    raise
                logger.warning("Ignoring unreadable local cache: %s", e.message)

        with self._lock:
            memory_copy = copy.deepcopy(self._drafts.get(draft_id))
            prior = self._states.get(draft_id)

        candidates = [d for d in (remote_copy, local_copy, memory_copy) if d]
        if not candidates:
            raise NotFoundError("Draft not found.")
        chosen = newest_by_id(candidates)[draft_id]

        if remote_copy is not None and chosen is remote_copy:
            state = DraftState.SYNCED
            tier = "remote"
        elif remote_copy is not None:
            state = DraftState.LOCAL_AHEAD
            tier = "local"
        elif local_copy is not None and chosen is local_copy:
            if prior in (DraftState.SYNCED, DraftState.LOCAL_AHEAD):
                state = prior
            else:
                state = DraftState.LOCAL_ONLY
            tier = "local"
        else:
            state = prior or DraftState.UNSAVED
            tier = "memory"

        self._commit(chosen, state)
        self.audit.emit(
            f"draft_loaded_{tier}",
            {"draft_id": draft_id, "draft_name": chosen.get("name")},
        )
        return copy.deepcopy(chosen)

    def _mutate(
        self,
        draft_id: str,
        mutate: Callable[[Draft], None],
        event: str,
        error_event: str,
    ) -> SaveOutcome:
        with self._id_lock(draft_id):
            try:
                current = self._current(draft_id)
            except AppError as e:
                self.audit.emit(error_event, {"draft_id": draft_id, "error": e.message})
                return SaveOutcome.fatal(e)
            if current.get("status") == STATUS_COMPLETED:
                return SaveOutcome.fatal(
                    ValidationError("This draft has already been completed.")
                )

            updated = copy.deepcopy(current)
            mutate(updated)
            updated["last_updated"] = next_timestamp(current.get("last_updated"))
            return self._persist(updated, event, error_event)

    def update(self, draft_id: str, patch: dict[str, Any]) -> SaveOutcome:
        """Shallow-merge ``patch`` into the draft's document and persist it."""

        def apply(draft: Draft) -> None:
            draft["document"] = merge_document(draft.get("document", {}), patch)
            draft["name"] = display_name(draft["document"])

        return self._mutate(draft_id, apply, "draft_updated", "draft_update_error")

    def rename(self, draft_id: str, name: str) -> SaveOutcome:
        """Change a draft's display name (and the form's name field)."""
        if not name or not name.strip():
            return SaveOutcome.fatal(ValidationError("Draft name cannot be empty."))
        name = name.strip()

        def apply(draft: Draft) -> None:
            draft["document"] = merge_document(draft.get("document", {}), {"name": name})
            draft["name"] = name

        return self._mutate(draft_id, apply, "draft_renamed", "draft_rename_error")

    def complete(self, draft_id: str, external_reference_id: str) -> SaveOutcome:
        """Mark a draft completed and drop it from the local cache.

        Completing an already completed draft is a no-op success. When the
        remote tier is unreachable the completion is queued and pushed by the
        next ``reconcile()``.
        """
        with self._id_lock(draft_id):
            with self._lock:
                if self._states.get(draft_id) is DraftState.COMPLETED:
                    tier = (
                        StorageTier.LOCAL
                        if draft_id in self._pending_completions
                        else StorageTier.REMOTE
                    )
                    return SaveOutcome.ok(tier)

            try:
                current = self._current(draft_id)
            except AppError as e:
                self.audit.emit(
                    "draft_complete_error", {"draft_id": draft_id, "error": e.message}
                )
                return SaveOutcome.fatal(e)

            remote = SaveOutcome.ok(StorageTier.REMOTE)
            completed = copy.deepcopy(current)
            if current.get("status") != STATUS_COMPLETED:
                completed["document"] = merge_document(
                    current.get("document", {}),
                    {TOURNAMENT_REFERENCE_FIELD: external_reference_id},
                )
                completed["status"] = STATUS_COMPLETED
                completed["last_updated"] = next_timestamp(current.get("last_updated"))
                fields = {key: completed[key] for key in _SYNC_FIELDS}
                remote = self._write_remote(
                    "draft_complete_error",
                    draft_id,
                    lambda: self._push(completed, fields),
                )
                if remote.kind is OutcomeKind.FATAL:
                    return remote

            queue = not remote.succeeded and self._remote_configured

            if self.local_enabled:
                try:
                    self._remove_local(draft_id)
                except LocalStorageError as e:
                    logger.error(f"Could not drop completed draft {draft_id}: {e.message}")
                    return SaveOutcome.fatal(e)

            with self._lock:
                self._forget(draft_id, DraftState.COMPLETED)
                if queue:
                    self._pending_completions[draft_id] = completed

            self.audit.emit(
                "draft_completed",
                {
                    "draft_id": draft_id,
                    "tournament_id": external_reference_id,
                    "queued": queue,
                },
            )
            if remote.succeeded:
                return remote
            if self.local_enabled:
                return SaveOutcome.ok(StorageTier.LOCAL)
            return remote

    def delete(self, draft_id: str) -> SaveOutcome:
        """Remove a draft from every tier; the local removal always happens.

        An unreachable remote tier queues the remote delete for the next
        ``reconcile()``. A remote rejection is still returned as fatal once
        the local copy is gone.
        """
        with self._id_lock(draft_id):
            remote = self._write_remote(
                "draft_delete_error",
                draft_id,
                lambda: self.remote.delete(draft_id, self.owner),
            )
            queue = (
                remote.kind is OutcomeKind.NETWORK_FAILED and self._remote_configured
            )

            if self.local_enabled:
                try:
                    self._remove_local(draft_id)
                except LocalStorageError as e:
                    logger.error(f"Could not delete draft {draft_id} locally: {e.message}")
                    self.audit.emit(
                        "draft_delete_error", {"draft_id": draft_id, "error": e.message}
                    )
                    return SaveOutcome.fatal(e)

            with self._lock:
                self._forget(draft_id, DraftState.DELETED)
                self._pending_completions.pop(draft_id, None)
                if queue:
                    self._pending_deletions.add(draft_id)

            self.audit.emit(
                "draft_deleted",
                {"draft_id": draft_id, "remote": remote.succeeded, "queued": queue},
            )
            if remote.succeeded or remote.kind is OutcomeKind.FATAL:
                return remote
            if self.local_enabled:
                return SaveOutcome.ok(StorageTier.LOCAL)
            return remote

    def list(self, owner: str | None = None) -> list[Draft]:
        """Open drafts for ``owner``, newest first.

        Remote-first with local fallback; a draft present in both result sets
        keeps its strictly newer copy. Nothing is written back.
        """
        owner = owner or self.owner
        remote_rows: list[Draft] | None = None
        if self.remote_available and owner:
            try:
                remote_rows = self.remote.list(owner, status=STATUS_DRAFT)
                self.audit.emit("drafts_listed_remote", {"count": len(remote_rows)})
            except NetworkError as e:
                self.audit.emit("drafts_list_error_remote", {"error": e.message})

        local_rows: list[Draft] = []
        if self.local_enabled:
            try:
                local_rows = self.local.read()
            except LocalStorageError as e:
                if remote_rows is None:
                    raise
                logger.warning("Ignoring unreadable local cache: %s", e.message)
            if remote_rows is None:
                self.audit.emit("drafts_listed_local", {"count": len(local_rows)})

        with self._lock:
            memory_rows = copy.deepcopy(list(self._drafts.values()))
            hidden = {
                draft_id
                for draft_id, state in self._states.items()
                if state in _TERMINAL_STATES
            }
            hidden.update(self._pending_completions)

        def visible(draft: Draft) -> bool:
            draft_owner = draft.get("owner")
            return (
                draft.get("status", STATUS_DRAFT) == STATUS_DRAFT
                and draft.get("id") not in hidden
                and (not draft_owner or draft_owner == owner)
            )

        merged = newest_by_id(remote_rows or [], local_rows, memory_rows)
        return sort_by_last_updated(d for d in merged.values() if visible(d))

    def check_existing(self) -> list[Draft]:
        """The "resume" search: list open drafts and cache them in memory."""
        found = self.list()
        with self._lock:
            for draft in found:
                draft_id = draft["id"]
                current = self._drafts.get(draft_id)
                if current is None or is_newer(draft, current):
                    self._drafts[draft_id] = copy.deepcopy(draft)
                    self._states.setdefault(
                        draft_id,
                        DraftState.SYNCED if draft.get("owner") else DraftState.LOCAL_ONLY,
                    )
        self.audit.emit("drafts_checked", {"count": len(found)})
        return found

    def clear_local(self) -> None:
        """Drop the whole local cache."""
        if self.local is None:
            return
        with self._local_lock:
            self.local.clear()
        self.audit.emit("drafts_cleared_local", {})

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self) -> ReconcileReport:
        """Make both tiers agree on the newest version of every draft.

        Overlapping calls are not run; the second one returns a skipped report.
        """
        if not self.remote_available:
            return ReconcileReport(skipped=True)
        if not self._sync_lock.acquire(blocking=False):
            logger.info("Reconcile already in progress; skipping.")
            return ReconcileReport(skipped=True)
        try:
            return self._reconcile()
        finally:
            self._sync_lock.release()

    def _push_pending_completions(self, report: ReconcileReport) -> None:
        with self._lock:
            pending = copy.deepcopy(self._pending_completions)
        for draft_id, draft in pending.items():
            fields = {key: draft[key] for key in _SYNC_FIELDS}
            with self._id_lock(draft_id):
                try:
                    self._push(draft, fields)
                except NetworkError:
                    raise
                except AppError as e:
                    report.failed[draft_id] = e.message
                    self.audit.emit(
                        "draft_sync_error", {"draft_id": draft_id, "error": e.message}
                    )
                    continue
                with self._lock:
                    self._pending_completions.pop(draft_id, None)
            report.pushed.append(draft_id)

    def _push_pending_deletions(self, report: ReconcileReport) -> None:
        with self._lock:
            pending = sorted(self._pending_deletions)
        for draft_id in pending:
            with self._id_lock(draft_id):
                try:
                    self.remote.delete(draft_id, self.owner)
                except NetworkError:
                    raise
                except AppError as e:
                    report.failed[draft_id] = e.message
                    self.audit.emit(
                        "draft_sync_error", {"draft_id": draft_id, "error": e.message}
                    )
                    continue
                with self._lock:
                    self._pending_deletions.discard(draft_id)
            report.deleted.append(draft_id)
            self.audit.emit("draft_deleted_remote", {"draft_id": draft_id})

    def _local_side(self) -> list[Draft]:
        """Local cache plus any in-memory drafts that never reached a tier."""
        local_rows = self.local.read() if self.local_enabled else []
        with self._lock:
            unsynced = [
                copy.deepcopy(d)
                for draft_id, d in self._drafts.items()
                if self._states.get(draft_id) in _UNSYNCED_STATES
            ]
        return list(newest_by_id(local_rows, unsynced).values())

    def _reconcile_draft(
        self,
        draft: Draft,
        remote_copy: Draft | None,
        result: dict[str, Draft],
        synced: set[str],
        report: ReconcileReport,
    ) -> None:
        """Compare one local draft with its remote row. Caller holds its lock."""
        draft_id = draft["id"]
        with self._lock:
            if self._states.get(draft_id) in _TERMINAL_STATES:
                result.pop(draft_id, None)
                synced.discard(draft_id)
                return
            memory_copy = self._drafts.get(draft_id)
            if memory_copy is not None and is_newer(memory_copy, draft):
                draft = copy.deepcopy(memory_copy)

        if draft.get("status") == STATUS_COMPLETED:
            report.dropped.append(draft_id)
            result.pop(draft_id, None)
            return

        try:
            if remote_copy is None:
                uploaded = self.remote.insert(self._with_owner(draft))
                result[draft_id] = uploaded
                report.uploaded.append(draft_id)
                self.audit.emit(
                    "draft_uploaded_remote",
                    {"draft_id": draft_id, "draft_name": draft.get("name")},
                )
            elif remote_copy.get("status") == STATUS_COMPLETED:
                report.dropped.append(draft_id)
                result.pop(draft_id, None)
                synced.discard(draft_id)
                return
            elif is_newer(draft, remote_copy):
                fields = {key: draft[key] for key in _SYNC_FIELDS if key in draft}
                self.remote.update(draft_id, self.owner, fields)
                result[draft_id] = {**remote_copy, **fields}
                report.pushed.append(draft_id)
                self.audit.emit(
                    "draft_pushed_remote",
                    {"draft_id": draft_id, "draft_name": draft.get("name")},
                )
            elif draft != remote_copy:
                report.pulled.append(draft_id)
            synced.add(draft_id)
        except NetworkError:
            raise
        except AppError as e:
            result[draft_id] = draft
            synced.discard(draft_id)
            report.failed[draft_id] = e.message
            logger.error(f"Could not sync draft {draft_id}: {e.message}")
            self.audit.emit(
                "draft_sync_error", {"draft_id": draft_id, "error": e.message}
            )

    def _reconcile(self) -> ReconcileReport:
        report = ReconcileReport()
        try:
            self._push_pending_completions(report)
            self._push_pending_deletions(report)
            remote_rows = self.remote.list(self.owner)
            local_rows = self._local_side()
        except NetworkError as e:
            report.network_failed = True
            self.audit.emit("drafts_sync_error", {"error": e.message})
            return report
        except AppError as e:
            report.error = e.message
            logger.error(f"Draft sync failed: {e.message}")
            self.audit.emit("drafts_sync_error", {"error": e.message})
            return report

        remote_by_id = {r["id"]: r for r in remote_rows}
        result: dict[str, Draft] = {
            r["id"]: r for r in remote_rows if r.get("status") == STATUS_DRAFT
        }
        synced: set[str] = set(result)
        seen: set[str] = set()

        for draft in local_rows:
            draft_id = draft.get("id")
            if not draft_id or not self._owns(draft):
                continue
            seen.add(draft_id)
            # Updates to this draft wait until its compare and push are done.
            with self._id_lock(draft_id):
                try:
                    self._reconcile_draft(
                        draft, remote_by_id.get(draft_id), result, synced, report
                    )
                except NetworkError as e:
                    report.network_failed = True
                    self.audit.emit("drafts_sync_error", {"error": e.message})
                    return report

        try:
            result = self._write_reconciled(result, seen, synced, report)
        except LocalStorageError as e:
            report.error = e.message
            logger.error(f"Could not rewrite local cache after sync: {e.message}")
            self.audit.emit("drafts_sync_error", {"error": e.message})
            return report

        with self._lock:
            for draft_id in report.dropped:
                self._forget(draft_id, DraftState.COMPLETED)
            for draft_id, draft in result.items():
                if self._states.get(draft_id) in _TERMINAL_STATES:
                    continue
                current = self._drafts.get(draft_id)
                if current is not None and is_newer(current, draft):
                    continue
                state = (
                    DraftState.SYNCED
                    if draft_id in synced
                    else self._unsynced_state(draft_id)
                )
                self._drafts[draft_id] = copy.deepcopy(draft)
                self._states[draft_id] = state

        self.audit.emit("drafts_synced", {"count": len(result)})
        return report

    def _write_reconciled(
        self,
        result: dict[str, Draft],
        seen: set[str],
        synced: set[str],
        report: ReconcileReport,
    ) -> dict[str, Draft]:
        """Rewrite the local cache to the reconciled union.

        Entries changed by a concurrent update while the pass ran keep their
        newer timestamp; entries deleted or completed meanwhile stay gone.
        """
        with self._lock:
            terminal = {
                draft_id
                for draft_id, state in self._states.items()
                if state in _TERMINAL_STATES
            }
        if not self.local_enabled:
            return {k: v for k, v in result.items() if k not in terminal}

        with self._local_lock:
            current = self.local.read()
            others = [d for d in current if not self._owns(d)]
            for draft in current:
                draft_id = draft.get("id")
                if not draft_id or not self._owns(draft):
                    continue
                if draft_id in result:
                    if is_newer(draft, result[draft_id]):
                        result[draft_id] = draft
                        synced.discard(draft_id)
                elif draft_id not in seen and draft.get("status") == STATUS_DRAFT:
                    result[draft_id] = draft
            result = {k: v for k, v in result.items() if k not in terminal}

            reconciled = others + sort_by_last_updated(result.values())
            before = {d.get("id"): d for d in current}
            after = {d.get("id"): d for d in reconciled}
            if before != after:
                self.local.write(reconciled)
                report.local_rewritten = True
        return result
