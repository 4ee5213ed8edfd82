"""Tests for change tracking against stored scrape history."""

from __future__ import annotations

from scrapecore.cache import CacheEntry, MemoryScrapeStore
from scrapecore.changes import (
    ChangeStatus,
    iso_timestamp,
    json_delta,
    normalize_content,
    track,
    track_changes,
)

_T0 = 1_700_000_000_000


def _entry(content: str, created_at: int = _T0, tracked_json=None) -> CacheEntry:
    return CacheEntry(
        identity="id",
        url="https://example.com/",
        created_at=created_at,
        content=content,
        tracked_json=tracked_json,
    )


class TestTrackChanges:
    def test_first_scrape_is_new(self) -> None:
        record = track_changes(None, "Hello", status_code=200)
        assert record.change_status is ChangeStatus.NEW
        assert record.previous_scrape_at is None
        assert record.diff is None

    def test_identical_content_is_same(self) -> None:
        record = track_changes(_entry("Hello\n"), "Hello  \n\n\n", status_code=200)
        assert record.change_status is ChangeStatus.SAME
        assert record.diff is None
        assert record.previous_scrape_at == iso_timestamp(_T0)

    def test_changed_content_has_diff(self) -> None:
        record = track_changes(_entry("Hello\nWorld"), "Hello\nThere", status_code=200)
        assert record.change_status is ChangeStatus.CHANGED
        assert "--- previous" in record.diff
        assert "-World" in record.diff
        assert "+There" in record.diff

    def test_diff_only_in_git_diff_mode(self) -> None:
        record = track_changes(_entry("a"), "b", status_code=200, modes=("json",))
        assert record.change_status is ChangeStatus.CHANGED
        assert record.diff is None

    def test_gone_page_is_removed(self) -> None:
        record = track_changes(_entry("Hello"), "Not Found", status_code=404)
        assert record.change_status is ChangeStatus.REMOVED
        assert "-Hello" in record.diff

    def test_json_change_alone_is_a_change(self) -> None:
        prior = _entry("Same", tracked_json={"price": 10, "name": "A"})
        record = track_changes(prior, "Same", status_code=200, tracked_json={"price": 12, "name": "A"})
        assert record.change_status is ChangeStatus.CHANGED
        assert record.json == {"price": {"previous": 10, "current": 12}}

    def test_json_only_when_both_sides_have_it(self) -> None:
        record = track_changes(_entry("x"), "x", status_code=200, tracked_json={"a": 1})
        assert record.json is None
        assert record.change_status is ChangeStatus.SAME

    def test_hidden_visibility(self) -> None:
        record = track_changes(None, "x", status_code=200, hidden=True)
        assert record.visibility == "hidden"
        assert record.to_dict()["visibility"] == "hidden"

    def test_to_dict_wire_names(self) -> None:
        record = track_changes(_entry("a"), "b", status_code=200)
        assert set(record.to_dict()) == {"previousScrapeAt", "changeStatus", "visibility", "diff", "json"}
        assert record.to_dict()["changeStatus"] == "changed"


class TestTrack:
    def test_compares_against_latest(self) -> None:
        store = MemoryScrapeStore()
        store.put("id", _entry("old", _T0))
        store.put("id", _entry("newer", _T0 + 1000))
        record = track(store, "id", "newer", status_code=200)
        assert record.change_status is ChangeStatus.SAME
        assert record.previous_scrape_at == iso_timestamp(_T0 + 1000)

    def test_before_skips_the_replayed_entry(self) -> None:
        store = MemoryScrapeStore()
        store.put("id", _entry("old", _T0))
        store.put("id", _entry("newer", _T0 + 1000))
        record = track(store, "id", "newer", before=_T0 + 1000, status_code=200)
        assert record.change_status is ChangeStatus.CHANGED
        assert record.previous_scrape_at == iso_timestamp(_T0)

    def test_unknown_identity_is_new(self) -> None:
        record = track(MemoryScrapeStore(), "nope", "x", status_code=200)
        assert record.change_status is ChangeStatus.NEW


class TestHelpers:
    def test_normalize_content(self) -> None:
        assert normalize_content("a  \r\nb\n\n\n\nc\n") == "a\nb\n\nc"

    def test_iso_timestamp(self) -> None:
        assert iso_timestamp(0) == "1970-01-01T00:00:00Z"

    def test_json_delta_added_and_removed_keys(self) -> None:
        assert json_delta({"a": 1}, {"b": 2}) == {
            "a": {"previous": 1, "current": None},
            "b": {"previous": None, "current": 2},
        }
