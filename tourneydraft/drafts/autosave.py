"""Debounced autosave with checkpoint flushes."""

from __future__ import annotations

import copy
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Iterable

from tourneydraft.core.constants import DEFAULT_CHECKPOINTS, DEFAULT_DEBOUNCE_SECONDS

if TYPE_CHECKING:
    from .models import SaveOutcome

logger = logging.getLogger(__name__)

Commit = Callable[[str, dict[str, Any]], "SaveOutcome"]
TimerFactory = Callable[..., Any]


class _PendingSave:
    """Scheduling state for one draft: accumulated patch, timer, in-flight flag."""

    def __init__(self) -> None:
        self.patch: dict[str, Any] = {}
        self.timer: Any = None
        self.generation = 0
        self.in_flight = False
        self.condition = threading.Condition()

    def cancel_timer(self) -> None:
        self.generation += 1
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class AutosaveScheduler:
    """Coalesces field edits and decides when to commit them.

    Edits for a draft are merged into one pending patch (last value wins per
    key). The patch is committed after ``debounce_seconds`` without edits, or
    at once when an edit names one of the ``checkpoints``. Only one commit per
    draft runs at a time; edits that arrive meanwhile go into the next one. A
    failed commit puts its patch back underneath any newer edits so the next
    trigger retries it.
    """

    def __init__(
        self,
        commit: Commit,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        checkpoints: Iterable[str] = DEFAULT_CHECKPOINTS,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        self.commit = commit
        self.debounce_seconds = debounce_seconds
        self.checkpoints = frozenset(checkpoints)
        self.timer_factory = timer_factory
        self._slots: dict[str, _PendingSave] = {}
        self._lock = threading.Lock()

    def _slot(self, draft_id: str) -> _PendingSave:
        with self._lock:
            slot = self._slots.get(draft_id)
            if slot is None:
                slot = self._slots[draft_id] = _PendingSave()
            return slot

    def _schedule(self, draft_id: str, slot: _PendingSave) -> None:
        """(Re)start the debounce timer. Caller holds ``slot.condition``."""
        slot.cancel_timer()
        timer = self.timer_factory(
            self.debounce_seconds, self._on_timer, args=(draft_id, slot.generation)
        )
        timer.daemon = True
        slot.timer = timer
        timer.start()

    def _on_timer(self, draft_id: str, generation: int) -> None:
        slot = self._slot(draft_id)
        with slot.condition:
            # A newer schedule or a checkpoint flush superseded this timer.
            if slot.generation != generation:
                return
            slot.timer = None
        try:
            self.flush(draft_id)
        except Exception as e:
            logger.error(f"Autosave of draft {draft_id} failed: {e}")

    def edit(
        self, draft_id: str, patch: dict[str, Any], checkpoint: str | None = None
    ) -> SaveOutcome | None:
        """Buffer an edit; flush now if it reaches a checkpoint.

        Returns the commit outcome for checkpoint flushes, None otherwise.
        """
        is_checkpoint = checkpoint is not None and checkpoint in self.checkpoints
        if checkpoint is not None and not is_checkpoint:
            logger.warning("Unknown autosave checkpoint %r; debouncing instead.", checkpoint)

        slot = self._slot(draft_id)
        with slot.condition:
            slot.patch.update(copy.deepcopy(patch))
            if is_checkpoint:
                slot.cancel_timer()
            else:
                self._schedule(draft_id, slot)

        if is_checkpoint:
            logger.debug("Checkpoint %s reached for draft %s", checkpoint, draft_id)
            return self.flush(draft_id)
        return None

    def flush(self, draft_id: str) -> SaveOutcome | None:
        """Commit everything pending for a draft now.

        Waits for an in-flight commit of the same draft first. Returns None when
        there was nothing to save.
        """
        slot = self._slot(draft_id)
        with slot.condition:
            slot.cancel_timer()
            while slot.in_flight:
                slot.condition.wait()
            if not slot.patch:
                return None
            patch, slot.patch = slot.patch, {}
            slot.in_flight = True

        outcome = None
        try:
            outcome = self.commit(draft_id, patch)
        finally:
            with slot.condition:
                slot.in_flight = False
                if outcome is None or not outcome.succeeded:
                    # Keep the failed edits, newer ones on top.
                    slot.patch = {**patch, **slot.patch}
                slot.condition.notify_all()

        if not outcome.succeeded:
            logger.warning(
                "Autosave of draft %s did not persist (%s); will retry.",
                draft_id,
                outcome.message,
            )
        return outcome

    def pending(self, draft_id: str) -> dict[str, Any]:
        """A copy of the edits not yet committed for a draft."""
        slot = self._slot(draft_id)
        with slot.condition:
            return copy.deepcopy(slot.patch)

    def has_pending(self, draft_id: str | None = None) -> bool:
        with self._lock:
            if draft_id is None:
                slots = list(self._slots.values())
            else:
                slots = [s for key, s in self._slots.items() if key == draft_id]
        return any(slot.patch or slot.in_flight for slot in slots)

    def discard(self, draft_id: str) -> None:
        """Drop pending edits and the timer for a draft (deleted or completed)."""
        with self._lock:
            slot = self._slots.pop(draft_id, None)
        if slot is None:
            return
        with slot.condition:
            slot.cancel_timer()
            slot.patch = {}

    def flush_all(self) -> dict[str, SaveOutcome | None]:
        with self._lock:
            draft_ids = list(self._slots)
        return {draft_id: self.flush(draft_id) for draft_id in draft_ids}

    def shutdown(self) -> None:
        """Flush everything and stop all timers."""
        self.flush_all()
        with self._lock:
            slots = list(self._slots.values())
        for slot in slots:
            with slot.condition:
                slot.cancel_timer()
