"""Shared fixtures for draft engine tests."""

from __future__ import annotations

import unittest
from typing import Any
from unittest.mock import MagicMock, patch

from mockfirestore import MockFirestore

from tests.conftest import MockFieldFilter, TempDirMixin, patch_mockfirestore, stored_drafts
from tourneydraft.drafts.audit import AuditEmitter
from tourneydraft.drafts.config import DraftConfig
from tourneydraft.drafts.connectivity import ConnectivityMonitor
from tourneydraft.drafts.local_store import JsonKeyValueStore, LocalDraftStore
from tourneydraft.drafts.remote_store import FirestoreDraftStore
from tourneydraft.drafts.repository import DraftRepository

patch_mockfirestore()

MOCK_USER_ID = "user1"


class RecordingAuditEmitter(AuditEmitter):
    """Keeps every audit event in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def _deliver(self, action: str, details: dict[str, Any]) -> None:
        self.events.append((action, details))

    @property
    def actions(self) -> list[str]:
        return [action for action, _ in self.events]


class DraftTestCase(TempDirMixin, unittest.TestCase):
    """A repository wired to mockfirestore and a temporary local cache."""

    owner = MOCK_USER_ID

    def setUp(self) -> None:
        self.db = MockFirestore()

        self.mock_firestore_module = MagicMock()
        self.mock_firestore_module.client.return_value = self.db
        self.mock_firestore_module.FieldFilter = MockFieldFilter
        self.mock_firestore_module.SERVER_TIMESTAMP = "2024-01-01"
        patcher = patch(
            "tourneydraft.drafts.remote_store.firestore", new=self.mock_firestore_module
        )
        patcher.start()
        self.addCleanup(patcher.stop)

        self.connectivity = ConnectivityMonitor()
        self.local = LocalDraftStore(JsonKeyValueStore(self.local_path()))
        self.remote = FirestoreDraftStore(db=self.db, connectivity=self.connectivity)
        self.audit = RecordingAuditEmitter()
        self.repo = self.make_repository()

    def make_repository(
        self, config: DraftConfig | None = None, owner: str | None = None
    ) -> DraftRepository:
        """A fresh repository (empty memory) over the same stores."""
        return DraftRepository(
            self.local,
            self.remote,
            connectivity=self.connectivity,
            owner=owner or self.owner,
            audit=self.audit,
            config=config,
        )

    def go_offline(self) -> None:
        self.connectivity.set_online(False)

    def go_online(self) -> None:
        self.connectivity.set_online(True)

    def remote_rows(self) -> dict[str, Any]:
        return stored_drafts(self.db)

    def local_rows(self) -> dict[str, Any]:
        return {d["id"]: d for d in self.local.read()}

    def set_remote(self, draft_id: str, **fields: Any) -> None:
        """Change a remote row behind the repository's back."""
        self.db.collection("tournament_drafts").document(draft_id).update(fields)

    def set_local(self, draft_id: str, **fields: Any) -> None:
        """Change a local entry behind the repository's back."""
        drafts = self.local.read()
        for draft in drafts:
            if draft["id"] == draft_id:
                draft.update(fields)
        self.local.write(drafts)
