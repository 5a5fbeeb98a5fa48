"""Firestore-backed remote draft store."""

from __future__ import annotations

import contextlib
import copy
import logging
from typing import TYPE_CHECKING, Any, Iterator, cast

from firebase_admin import firestore
from google.api_core import exceptions as api_exceptions

from tourneydraft.core.constants import DRAFTS_COLLECTION
from tourneydraft.errors import (
    DuplicateResourceError,
    NetworkError,
    NotFoundError,
    OwnershipError,
    RemoteStoreError,
    ValidationError,
)

from .utils import sort_by_last_updated

if TYPE_CHECKING:
    from google.cloud.firestore_v1.base_document import DocumentSnapshot
    from google.cloud.firestore_v1.client import Client
    from google.cloud.firestore_v1.document import DocumentReference

    from .connectivity import ConnectivityMonitor
    from .models import Draft

logger = logging.getLogger(__name__)

_TRANSIENT_ERRORS = (
    api_exceptions.ServiceUnavailable,
    api_exceptions.DeadlineExceeded,
    api_exceptions.TooManyRequests,
    api_exceptions.InternalServerError,
    api_exceptions.RetryError,
    ConnectionError,
    TimeoutError,
    OSError,
)


class FirestoreDraftStore:
    """Row-level CRUD on the ``tournament_drafts`` collection.

    Each document id is the draft id. Ownership is checked here as well as by
    the security rules, because the admin SDK bypasses the rules.
    """

    def __init__(
        self,
        db: Client | None = None,
        collection: str = DRAFTS_COLLECTION,
        connectivity: ConnectivityMonitor | None = None,
    ) -> None:
        self._db = db
        self.collection_name = collection
        self.connectivity = connectivity

    @property
    def db(self) -> Client:
        if self._db is None:
            self._db = firestore.client()
        return self._db

    def _collection(self) -> Any:
        return self.db.collection(self.collection_name)

    @contextlib.contextmanager
    def _remote_call(self, action: str) -> Iterator[None]:
        """Refuse while offline and translate transport errors."""
        if self.connectivity is not None and not self.connectivity.is_online:
            raise NetworkError("Offline: the remote store was not contacted.")
        try:
            yield
        except (api_exceptions.PermissionDenied, api_exceptions.Unauthenticated) as e:
            raise OwnershipError(f"Remote store refused to {action}: {e}") from e
        except api_exceptions.NotFound as e:
            raise NotFoundError(f"Draft not found while trying to {action}.") from e
        except api_exceptions.AlreadyExists as e:
            raise DuplicateResourceError(f"Draft already exists: {e}") from e
        except _TRANSIENT_ERRORS as e:
            logger.warning("Remote store unreachable during %s: %s", action, e)
            raise NetworkError(f"Remote store unreachable: {e}") from e
        except api_exceptions.GoogleAPICallError as e:
            raise RemoteStoreError(f"Remote store failed to {action}: {e}") from e

    @staticmethod
    def _to_draft(doc: DocumentSnapshot) -> Draft:
        data = cast(dict[str, Any], doc.to_dict() or {})
        data["id"] = doc.id
        return cast("Draft", data)

    def _owned_snapshot(
        self, draft_id: str, owner: str
    ) -> tuple[DocumentReference, DocumentSnapshot]:
        ref = self._collection().document(draft_id)
        doc = cast("DocumentSnapshot", ref.get())
        if not doc.exists:
            raise NotFoundError("Draft not found.")
        data = doc.to_dict() or {}
        if data.get("owner") != owner:
            raise OwnershipError()
        return ref, doc

    def list(self, owner: str, status: str | None = None) -> list[Draft]:
        """Fetch a user's drafts, most recently updated first."""
        with self._remote_call("list drafts"):
            query = self._collection().where(
                filter=firestore.FieldFilter("owner", "==", owner)
            )
            if status is not None:
                query = query.where(
                    filter=firestore.FieldFilter("status", "==", status)
                )
            drafts = [self._to_draft(doc) for doc in query.stream() if doc.exists]
        return sort_by_last_updated(drafts)

    def get_one(self, draft_id: str, owner: str) -> Draft:
        """Fetch a single draft owned by ``owner``."""
        with self._remote_call("load draft"):
            _, doc = self._owned_snapshot(draft_id, owner)
            return self._to_draft(doc)

    def insert(self, draft: Draft) -> Draft:
        """Create a new draft row. The draft must carry its owner."""
        if not draft.get("owner"):
            raise ValidationError("A draft needs an owner before it can be uploaded.")
        payload = copy.deepcopy(dict(draft))
        draft_id = payload.pop("id")
        with self._remote_call("create draft"):
            ref = self._collection().document(draft_id)
            existing = cast("DocumentSnapshot", ref.get())
            if existing.exists:
                raise DuplicateResourceError(f"Draft {draft_id} already exists.")
            ref.set(payload)
        return cast("Draft", {**payload, "id": draft_id})

    def update(self, draft_id: str, owner: str, fields: dict[str, Any]) -> None:
        """Apply a partial update to a draft owned by ``owner``."""
        payload = copy.deepcopy(fields)
        payload.pop("id", None)
        payload.pop("owner", None)
        with self._remote_call("update draft"):
            ref, _ = self._owned_snapshot(draft_id, owner)
            ref.update(payload)

    def delete(self, draft_id: str, owner: str) -> None:
        """Delete a draft; deleting a missing draft is not an error."""
        with self._remote_call("delete draft"):
            try:
                ref, _ = self._owned_snapshot(draft_id, owner)
            except NotFoundError:
                return
            ref.delete()
