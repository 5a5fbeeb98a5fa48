"""Core data types for the tourneydraft application."""

from typing import Any, TypedDict


class _FirestoreDocumentBase(TypedDict):
    id: str
    created_at: Any


class FirestoreDocument(_FirestoreDocumentBase, total=False):
    """Generic Firestore document structure."""

    last_updated: str
