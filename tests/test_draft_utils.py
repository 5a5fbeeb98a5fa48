"""Tests for draft utility functions."""

from __future__ import annotations

import datetime
import unittest
from unittest.mock import patch

from tourneydraft.drafts.utils import (
    build_draft,
    display_name,
    format_timestamp,
    is_newer,
    merge_document,
    newest_by_id,
    next_timestamp,
    parse_timestamp,
    serialize_draft,
    sort_by_last_updated,
)

UTC = datetime.timezone.utc


class TimestampTestCase(unittest.TestCase):
    def test_format_is_fixed_width_utc(self) -> None:
        value = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        self.assertEqual(format_timestamp(value), "2024-03-01T12:00:00.000000+00:00")

    def test_parse_accepts_z_suffix_and_naive_values(self) -> None:
        expected = datetime.datetime(2024, 3, 1, 12, 0, tzinfo=UTC)
        self.assertEqual(parse_timestamp("2024-03-01T12:00:00Z"), expected)
        self.assertEqual(parse_timestamp(datetime.datetime(2024, 3, 1, 12, 0)), expected)

    def test_missing_timestamp_sorts_first(self) -> None:
        self.assertLess(parse_timestamp(None), parse_timestamp("2000-01-01T00:00:00Z"))
        self.assertLess(parse_timestamp(""), parse_timestamp("2000-01-01T00:00:00Z"))

    def test_next_timestamp_is_strictly_after_previous(self) -> None:
        future = format_timestamp(
            datetime.datetime.now(UTC) + datetime.timedelta(hours=1)
        )
        following = next_timestamp(future)
        self.assertGreater(parse_timestamp(following), parse_timestamp(future))
        self.assertEqual(
            parse_timestamp(following) - parse_timestamp(future),
            datetime.timedelta(microseconds=1),
        )

    def test_next_timestamp_uses_clock_when_ahead(self) -> None:
        fixed = datetime.datetime(2024, 5, 5, 10, 0, tzinfo=UTC)
        with patch("tourneydraft.drafts.utils.utc_now", return_value=fixed):
            self.assertEqual(
                next_timestamp("2024-01-01T00:00:00.000000+00:00"),
                format_timestamp(fixed),
            )


class DraftHelpersTestCase(unittest.TestCase):
    def test_is_newer_is_strict(self) -> None:
        a = {"id": "d", "last_updated": "2024-01-01T00:00:00.000001+00:00"}
        b = {"id": "d", "last_updated": "2024-01-01T00:00:00.000001+00:00"}
        self.assertFalse(is_newer(a, b))
        self.assertFalse(is_newer(b, a))
        b["last_updated"] = "2024-01-01T00:00:00.000002+00:00"
        self.assertTrue(is_newer(b, a))

    def test_merge_document_is_shallow_and_copies(self) -> None:
        original = {"name": "Spring Open", "settings": {"rounds": 5}}
        merged = merge_document(original, {"settings": {"rounds": 7}, "format": "swiss"})
        self.assertEqual(
            merged, {"name": "Spring Open", "settings": {"rounds": 7}, "format": "swiss"}
        )
        self.assertEqual(original["settings"], {"rounds": 5})

    def test_display_name_falls_back(self) -> None:
        self.assertEqual(display_name({"name": "Spring Open"}), "Spring Open")
        self.assertEqual(display_name({"name": "   "}), "Untitled Tournament")
        self.assertEqual(display_name({"name": ""}), "Untitled Tournament")

    def test_build_draft(self) -> None:
        draft = build_draft({"name": "Spring Open"})
        self.assertEqual(draft["status"], "draft")
        self.assertEqual(draft["name"], "Spring Open")
        self.assertEqual(draft["created_at"], draft["last_updated"])
        self.assertNotIn("owner", draft)
        self.assertNotEqual(build_draft()["id"], draft["id"])
        self.assertEqual(build_draft(owner="user1")["owner"], "user1")

    def test_newest_by_id_prefers_earlier_collection_on_ties(self) -> None:
        remote = [{"id": "a", "last_updated": "2024-01-02T00:00:00+00:00", "name": "R"}]
        local = [
            {"id": "a", "last_updated": "2024-01-02T00:00:00+00:00", "name": "L"},
            {"id": "b", "last_updated": "2024-01-01T00:00:00+00:00", "name": "B"},
        ]
        merged = newest_by_id(remote, local)
        self.assertEqual(merged["a"]["name"], "R")
        self.assertEqual(set(merged), {"a", "b"})

        local[0]["last_updated"] = "2024-01-03T00:00:00+00:00"
        self.assertEqual(newest_by_id(remote, local)["a"]["name"], "L")

    def test_sort_by_last_updated_newest_first(self) -> None:
        drafts = [
            {"id": "old", "last_updated": "2024-01-01T00:00:00+00:00"},
            {"id": "new", "last_updated": "2024-02-01T00:00:00+00:00"},
        ]
        self.assertEqual([d["id"] for d in sort_by_last_updated(drafts)], ["new", "old"])

    def test_serialize_draft_hides_owner(self) -> None:
        draft = build_draft({"name": "Spring Open"}, owner="user1")
        data = serialize_draft(draft)
        self.assertNotIn("owner", data)
        self.assertEqual(data["document"], {"name": "Spring Open"})


if __name__ == "__main__":
    unittest.main()
