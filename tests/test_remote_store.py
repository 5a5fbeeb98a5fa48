"""Tests for the Firestore draft store using mockfirestore."""

from __future__ import annotations

import unittest
from unittest.mock import MagicMock, patch

from google.api_core import exceptions as api_exceptions
from mockfirestore import MockFirestore

from tests.conftest import MockFieldFilter, patch_mockfirestore, stored_drafts
from tourneydraft.drafts.connectivity import ConnectivityMonitor
from tourneydraft.drafts.remote_store import FirestoreDraftStore
from tourneydraft.drafts.utils import build_draft
from tourneydraft.errors import (
    DuplicateResourceError,
    NetworkError,
    NotFoundError,
    OwnershipError,
    RemoteStoreError,
    ValidationError,
)

patch_mockfirestore()


class FirestoreDraftStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = MockFirestore()
        self.connectivity = ConnectivityMonitor()
        self.store = FirestoreDraftStore(db=self.db, connectivity=self.connectivity)

        self.mock_firestore_module = MagicMock()
        self.mock_firestore_module.FieldFilter = MockFieldFilter
        patcher = patch(
            "tourneydraft.drafts.remote_store.firestore", new=self.mock_firestore_module
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def _insert(self, owner: str = "user1", **fields) -> dict:
        draft = build_draft({"name": fields.pop("name", "Spring Open")}, owner=owner)
        draft.update(fields)
        return self.store.insert(draft)

    def test_insert_and_get_one(self) -> None:
        inserted = self._insert()
        stored = stored_drafts(self.db)[inserted["id"]]
        self.assertNotIn("id", stored)
        self.assertEqual(stored["owner"], "user1")

        fetched = self.store.get_one(inserted["id"], "user1")
        self.assertEqual(fetched, inserted)

    def test_insert_requires_owner(self) -> None:
        with self.assertRaises(ValidationError):
            self.store.insert(build_draft())

    def test_insert_twice_is_duplicate(self) -> None:
        inserted = self._insert()
        with self.assertRaises(DuplicateResourceError):
            self.store.insert(inserted)

    def test_get_one_checks_owner(self) -> None:
        inserted = self._insert(owner="user2")
        with self.assertRaises(OwnershipError):
            self.store.get_one(inserted["id"], "user1")
        with self.assertRaises(NotFoundError):
            self.store.get_one("missing", "user1")

    def test_list_filters_by_owner_and_status(self) -> None:
        older = self._insert(last_updated="2024-01-01T00:00:00.000000+00:00")
        newer = self._insert(last_updated="2024-02-01T00:00:00.000000+00:00")
        self._insert(status="completed")
        self._insert(owner="user2")

        drafts = self.store.list("user1", status="draft")
        self.assertEqual([d["id"] for d in drafts], [newer["id"], older["id"]])
        self.assertEqual(len(self.store.list("user1")), 3)

    def test_update_strips_identity_fields(self) -> None:
        inserted = self._insert()
        self.store.update(
            inserted["id"],
            "user1",
            {"id": "other", "owner": "user2", "name": "Renamed"},
        )
        stored = stored_drafts(self.db)[inserted["id"]]
        self.assertEqual(stored["name"], "Renamed")
        self.assertEqual(stored["owner"], "user1")

    def test_update_missing_or_foreign(self) -> None:
        with self.assertRaises(NotFoundError):
            self.store.update("missing", "user1", {"name": "x"})
        inserted = self._insert(owner="user2")
        with self.assertRaises(OwnershipError):
            self.store.update(inserted["id"], "user1", {"name": "x"})

    def test_delete(self) -> None:
        inserted = self._insert()
        self.store.delete(inserted["id"], "user1")
        self.assertNotIn(inserted["id"], stored_drafts(self.db))
        # Deleting again is not an error.
        self.store.delete(inserted["id"], "user1")

    def test_delete_foreign_draft_is_refused(self) -> None:
        inserted = self._insert(owner="user2")
        with self.assertRaises(OwnershipError):
            self.store.delete(inserted["id"], "user1")
        self.assertIn(inserted["id"], stored_drafts(self.db))

    def test_offline_does_not_touch_the_database(self) -> None:
        db = MagicMock()
        store = FirestoreDraftStore(db=db, connectivity=self.connectivity)
        self.connectivity.set_online(False)
        with self.assertRaises(NetworkError):
            store.list("user1")
        db.collection.assert_not_called()


class RemoteErrorClassificationTestCase(unittest.TestCase):
    """Transport errors are mapped onto the application error hierarchy."""

    def _store_raising(self, error: Exception) -> FirestoreDraftStore:
        db = MagicMock()
        db.collection.return_value.document.return_value.get.side_effect = error
        return FirestoreDraftStore(db=db)

    def test_classification(self) -> None:
        cases = [
            (api_exceptions.ServiceUnavailable("down"), NetworkError),
            (api_exceptions.DeadlineExceeded("slow"), NetworkError),
            (ConnectionError("reset"), NetworkError),
            (api_exceptions.PermissionDenied("rules"), OwnershipError),
            (api_exceptions.Unauthenticated("token"), OwnershipError),
            (api_exceptions.NotFound("gone"), NotFoundError),
            (api_exceptions.AlreadyExists("dup"), DuplicateResourceError),
            (api_exceptions.InvalidArgument("bad"), RemoteStoreError),
        ]
        for error, expected in cases:
            with self.subTest(error=type(error).__name__):
                store = self._store_raising(error)
                with self.assertRaises(expected):
                    store.get_one("d1", "user1")

    def test_bad_request_is_not_a_network_error(self) -> None:
        store = self._store_raising(api_exceptions.InvalidArgument("bad"))
        with self.assertRaises(RemoteStoreError) as ctx:
            store.get_one("d1", "user1")
        self.assertNotIsInstance(ctx.exception, NetworkError)


if __name__ == "__main__":
    unittest.main()
