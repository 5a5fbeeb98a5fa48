"""Utility functions for drafts."""

from __future__ import annotations

import copy
import datetime
import uuid
from typing import TYPE_CHECKING, Any, Iterable

from tourneydraft.core.constants import (
    STATUS_DRAFT,
    UNTITLED_DRAFT_NAME,
)

if TYPE_CHECKING:
    from .models import Draft

ONE_TICK = datetime.timedelta(microseconds=1)


def new_draft_id() -> str:
    """Generate a globally unique draft id without a server round-trip."""
    return str(uuid.uuid4())


def format_timestamp(value: datetime.datetime) -> str:
    """Render an aware datetime as a fixed-width UTC ISO-8601 string."""
    return value.astimezone(datetime.timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> datetime.datetime:
    """Parse a stored timestamp into an aware UTC datetime.

    Accepts the strings written by ``format_timestamp``, a trailing ``Z``, and
    datetime objects (Firestore hands those back for native timestamp fields).
    Missing values sort before everything else.
    """
    if value is None or value == "":
        return datetime.datetime.min.replace(tzinfo=datetime.timezone.utc)
    if isinstance(value, datetime.datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed.astimezone(datetime.timezone.utc)


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def next_timestamp(previous: Any = None) -> str:
    """Return a timestamp strictly greater than ``previous``."""
    now = utc_now()
    if previous:
        floor = parse_timestamp(previous) + ONE_TICK
        if now < floor:
            now = floor
    return format_timestamp(now)


def is_newer(candidate: Draft, reference: Draft) -> bool:
    """Strict-newer-wins: True only if ``candidate`` was updated after ``reference``."""
    return parse_timestamp(candidate.get("last_updated")) > parse_timestamp(
        reference.get("last_updated")
    )


def display_name(document: dict[str, Any]) -> str:
    """Derive a draft's label from its form data."""
    name = document.get("name") if document else None
    if isinstance(name, str) and name.strip():
        return name
    return UNTITLED_DRAFT_NAME


def merge_document(document: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Shallow merge: keys in ``patch`` replace keys in ``document``."""
    merged = copy.deepcopy(document or {})
    merged.update(copy.deepcopy(patch or {}))
    return merged


def build_draft(
    document: dict[str, Any] | None = None, owner: str | None = None
) -> Draft:
    """Create a brand-new draft record."""
    now = next_timestamp()
    document = copy.deepcopy(document or {})
    draft: Draft = {
        "id": new_draft_id(),
        "document": document,
        "name": display_name(document),
        "status": STATUS_DRAFT,
        "created_at": now,
        "last_updated": now,
    }
    if owner:
        draft["owner"] = owner
    return draft


def newest_by_id(*collections: Iterable[Draft]) -> dict[str, Draft]:
    """Merge draft collections keeping the strictly newest copy of each id.

    Earlier collections win ties.
    """
    merged: dict[str, Draft] = {}
    for drafts in collections:
        for draft in drafts:
            draft_id = draft.get("id")
            if not draft_id:
                continue
            current = merged.get(draft_id)
            if current is None or is_newer(draft, current):
                merged[draft_id] = draft
    return merged


def sort_by_last_updated(drafts: Iterable[Draft]) -> list[Draft]:
    """Most recently updated first."""
    return sorted(
        drafts, key=lambda d: parse_timestamp(d.get("last_updated")), reverse=True
    )


def serialize_draft(draft: Draft) -> dict[str, Any]:
    """Shape a draft for JSON responses."""
    return {
        "id": draft.get("id"),
        "name": draft.get("name") or UNTITLED_DRAFT_NAME,
        "status": draft.get("status", STATUS_DRAFT),
        "document": draft.get("document", {}),
        "created_at": draft.get("created_at"),
        "last_updated": draft.get("last_updated"),
    }
