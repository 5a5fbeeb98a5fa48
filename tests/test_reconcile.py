"""Tests for reconciling the local cache with the remote store."""

from __future__ import annotations

import threading
import unittest
from unittest.mock import patch

from tests.helpers import DraftTestCase
from tourneydraft.drafts.models import DraftState, StorageTier
from tourneydraft.errors import LocalStorageError, NetworkError, OwnershipError

LATER = "2999-01-01T00:00:00.000000+00:00"


class ReconcileTestCase(DraftTestCase):
    def test_offline_create_uploads_exactly_once(self) -> None:
        self.go_offline()
        draft_id = self.repo.create({"name": "Spring Open"})
        self.go_online()

        first = self.repo.reconcile()
        self.assertTrue(first.succeeded)
        self.assertEqual(first.uploaded, [draft_id])
        self.assertEqual(list(self.remote_rows()), [draft_id])
        self.assertEqual(self.remote_rows()[draft_id]["owner"], "user1")
        self.assertEqual(self.local_rows()[draft_id]["owner"], "user1")
        self.assertEqual(self.repo.state_of(draft_id), DraftState.SYNCED)

        second = self.repo.reconcile()
        self.assertEqual(second.uploaded, [])
        self.assertEqual(list(self.remote_rows()), [draft_id])

    def test_reconcile_is_idempotent(self) -> None:
        self.repo.create({"name": "Synced"})
        self.go_offline()
        self.repo.create({"name": "Offline"})
        self.go_online()

        self.repo.reconcile()
        remote_after_first = self.remote_rows()
        local_after_first = self.local_rows()

        report = self.repo.reconcile()
        self.assertFalse(report.local_rewritten)
        self.assertEqual(report.uploaded, [])
        self.assertEqual(report.pushed, [])
        self.assertEqual(self.remote_rows(), remote_after_first)
        self.assertEqual(self.local_rows(), local_after_first)

    def test_newer_local_copy_is_pushed(self) -> None:
        draft_id = self.repo.create({"name": "Spring Open"})
        self.go_offline()
        self.repo.update(draft_id, {"rounds": 7})
        self.go_online()

        report = self.repo.reconcile()

        self.assertEqual(report.pushed, [draft_id])
        self.assertEqual(self.remote_rows()[draft_id]["document"]["rounds"], 7)
        self.assertEqual(self.repo.state_of(draft_id), DraftState.SYNCED)

    def test_newer_remote_copy_is_pulled(self) -> None:
        draft_id = self.repo.create({"name": "Spring Open"})
        self.set_remote(draft_id, name="Edited Elsewhere", last_updated=LATER)

        report = self.repo.reconcile()

        self.assertEqual(report.pulled, [draft_id])
        self.assertTrue(report.local_rewritten)
        self.assertEqual(self.local_rows()[draft_id]["name"], "Edited Elsewhere")
        self.assertEqual(self.repo.get(draft_id)["name"], "Edited Elsewhere")

    def test_equal_timestamps_keep_remote_copy(self) -> None:
        draft_id = self.repo.create({"name": "Spring Open"})
        self.set_local(draft_id, name="Same Instant")

        self.repo.reconcile()

        self.assertEqual(self.remote_rows()[draft_id]["name"], "Spring Open")
        self.assertEqual(self.local_rows()[draft_id]["name"], "Spring Open")

    def test_remote_completion_drops_local_copy(self) -> None:
        draft_id = self.repo.create()
        self.set_remote(draft_id, status="completed")

        report = self.repo.reconcile()

        self.assertEqual(report.dropped, [draft_id])
        self.assertNotIn(draft_id, self.local_rows())
        self.assertEqual(self.repo.state_of(draft_id), DraftState.COMPLETED)
        self.assertEqual(self.repo.list(), [])

    def test_other_owners_local_drafts_are_preserved(self) -> None:
        self.go_offline()
        theirs = self.make_repository(owner="user2")
        theirs.create({"name": "Theirs"})
        self.set_local(self.local.read()[0]["id"], owner="user2")
        self.go_online()

        report = self.repo.reconcile()

        self.assertEqual(report.uploaded, [])
        self.assertEqual(self.remote_rows(), {})
        self.assertEqual(
            [d["owner"] for d in self.local.read()], ["user2"]
        )

    def test_remote_only_drafts_are_cached_locally(self) -> None:
        other_device = self.make_repository()
        other_device.local = None
        draft_id = other_device.create({"name": "From Phone"})

        self.repo.reconcile()

        self.assertEqual(self.local_rows()[draft_id]["name"], "From Phone")

    def test_offline_reconcile_is_skipped(self) -> None:
        self.go_offline()
        self.repo.create()
        report = self.repo.reconcile()
        self.assertTrue(report.skipped)
        self.assertFalse(report.succeeded)

    def test_overlapping_reconcile_is_skipped(self) -> None:
        self.repo._sync_lock.acquire()
        try:
            report = self.repo.reconcile()
        finally:
            self.repo._sync_lock.release()
        self.assertTrue(report.skipped)

    def test_network_failure_leaves_local_untouched(self) -> None:
        self.go_offline()
        self.repo.create({"name": "Offline"})
        self.go_online()
        before = self.local.read()

        with patch.object(self.remote, "list", side_effect=NetworkError()):
            report = self.repo.reconcile()

        self.assertTrue(report.network_failed)
        self.assertEqual(self.local.read(), before)
        self.assertIn("drafts_sync_error", self.audit.actions)

    def test_rejected_draft_is_kept_and_reported(self) -> None:
        self.go_offline()
        draft_id = self.repo.create({"name": "Offline"})
        self.go_online()

        with patch.object(self.remote, "insert", side_effect=OwnershipError()):
            report = self.repo.reconcile()

        self.assertIn(draft_id, report.failed)
        self.assertIn(draft_id, self.local_rows())
        self.assertEqual(self.repo.state_of(draft_id), DraftState.LOCAL_ONLY)

    def test_memory_only_draft_is_uploaded(self) -> None:
        self.go_offline()
        with patch.object(self.local, "write", side_effect=LocalStorageError()):
            draft_id = self.repo.create({"name": "Memory Only"})
        self.assertEqual(self.repo.state_of(draft_id), DraftState.UNSAVED)
        self.go_online()

        report = self.repo.reconcile()

        self.assertEqual(report.uploaded, [draft_id])
        self.assertIn(draft_id, self.remote_rows())
        self.assertIn(draft_id, self.local_rows())

    def test_update_during_push_is_not_overwritten(self) -> None:
        draft_id = self.repo.create({"name": "Spring Open"})
        self.go_offline()
        self.repo.update(draft_id, {"rounds": 5})
        self.go_online()

        real_update = self.remote.update
        editors: list[threading.Thread] = []

        def edit_then_update(*args, **kwargs):
            if not editors:
                editor = threading.Thread(
                    target=self.repo.update, args=(draft_id, {"rounds": 9})
                )
                editors.append(editor)
                editor.start()
            return real_update(*args, **kwargs)

        with patch.object(self.remote, "update", side_effect=edit_then_update):
            report = self.repo.reconcile()
            editors[0].join(5)

        self.assertEqual(report.pushed, [draft_id])
        remote = self.remote_rows()[draft_id]
        local = self.local_rows()[draft_id]
        self.assertEqual(remote["document"]["rounds"], 9)
        self.assertEqual(local["document"]["rounds"], 9)
        self.assertEqual(remote["last_updated"], local["last_updated"])
        self.assertEqual(self.repo.get(draft_id)["document"]["rounds"], 9)

    def test_offline_delete_is_pushed_by_reconcile(self) -> None:
        draft_id = self.repo.create({"name": "Spring Open"})
        self.go_offline()
        self.assertEqual(self.repo.delete(draft_id).tier, StorageTier.LOCAL)
        self.assertIn(draft_id, self.remote_rows())
        self.go_online()

        report = self.repo.reconcile()

        self.assertEqual(report.deleted, [draft_id])
        self.assertNotIn(draft_id, self.remote_rows())
        self.assertIn("draft_deleted_remote", self.audit.actions)
        self.assertEqual(self.repo.reconcile().deleted, [])

        next_session = self.make_repository()
        self.assertEqual(next_session.list(), [])
        next_session.reconcile()
        self.assertEqual(self.local_rows(), {})

    def test_unreachable_remote_delete_stays_queued(self) -> None:
        draft_id = self.repo.create()
        with patch.object(self.remote, "delete", side_effect=NetworkError()):
            self.repo.delete(draft_id)
            report = self.repo.reconcile()
        self.assertTrue(report.network_failed)
        self.assertIn(draft_id, self.remote_rows())

        report = self.repo.reconcile()
        self.assertEqual(report.deleted, [draft_id])
        self.assertNotIn(draft_id, self.remote_rows())
        self.assertEqual(self.repo.list(), [])

    def test_spring_open_offline_then_online(self) -> None:
        self.go_offline()
        draft_id = self.repo.create({"name": "Spring Open"})
        self.go_online()
        self.repo.reconcile()

        self.repo.update(draft_id, {"rounds": 5})
        self.repo.update(draft_id, {"rounds": 7})
        self.assertEqual(self.remote_rows()[draft_id]["document"]["rounds"], 7)

        self.repo.complete(draft_id, "t-1")
        self.assertEqual(self.repo.list(), [])
        self.assertEqual(self.local.read(), [])
        self.assertEqual(self.remote_rows()[draft_id]["status"], "completed")


if __name__ == "__main__":
    unittest.main()
