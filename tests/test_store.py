"""Tests for community_health.pipeline.store: merge, checkpoint persistence, filtering.

Run with:
    pytest tests/test_store.py --maxfail=1 -v --cov=community_health.pipeline.store --cov-report=term-missing
"""

import json
from unittest.mock import patch

import pytest

from community_health.pipeline import store as store_mod
from community_health.pipeline.store import RecordStore, merge
from community_health.records import RepositoryRecord


def _record(owner="octo", name="repo", **attributes):
    return RepositoryRecord(owner=owner, name=name, snapshot={"stargazers_count": 20}, attributes=dict(attributes))


def test_merge_keeps_one_record_per_identity():
    existing = [_record(name="a", languages={"Go": 10}, contributor_count=3), _record(name="b")]
    discovered = [_record(name="a"), _record(name="c"), _record(name="c"), _record(owner="other", name="a")]
    merged = merge(existing, discovered)
    identities = [record.identity for record in merged]
    assert identities == [("octo", "a"), ("octo", "b"), ("octo", "c"), ("other", "a")]
    assert len(set(identities)) == len(identities)
    assert merged[0].get("languages") == {"Go": 10}
    assert merged[0].get("contributor_count") == 3


def test_merge_does_not_mutate_inputs():
    existing = [_record(name="a")]
    discovered = [_record(name="a"), _record(name="b")]
    merge(existing, discovered)
    assert len(existing) == 1 and len(discovered) == 2


def test_load_missing_checkpoint_is_cold_start(tmp_path):
    store = RecordStore(tmp_path / "checkpoint.json")
    assert store.load() == []
    assert store.loaded is True


def test_persist_then_load(tmp_path):
    path = tmp_path / "out" / "checkpoint.json"
    store = RecordStore(path)
    store.load()
    store.merge_discovered([_record(name="a", contributor_count=0, has_funding=False, readme_url=None)])
    store.flush()

    text = path.read_text(encoding="utf-8")
    assert text.startswith("[\n  {")
    reloaded = RecordStore(path)
    records = reloaded.load()
    assert len(records) == 1
    assert records[0].attributes == {"contributor_count": 0, "has_funding": False, "readme_url": None}
    assert records[0].has("readme_url")


def test_merge_discovered_reports_new_records(tmp_path):
    store = RecordStore(tmp_path / "c.json")
    store.load()
    assert store.merge_discovered([_record(name="a"), _record(name="b")]) == 2
    assert store.merge_discovered([_record(name="b"), _record(name="c")]) == 1
    assert [record.name for record in store.records] == ["a", "b", "c"]


def test_filter_invalid_drops_records_without_contributor_count(tmp_path):
    store = RecordStore(tmp_path / "c.json")
    store.load()
    store.merge_discovered([_record(name="a", contributor_count=0), _record(name="b"), _record(name="c", contributor_count=5)])
    assert store.filter_invalid() == 1
    assert [record.name for record in store.records] == ["a", "c"]
    assert store.valid_count == 2


def test_flush_before_load_does_not_touch_disk(tmp_path):
    path = tmp_path / "c.json"
    path.write_text("[]", encoding="utf-8")
    store = RecordStore(path)
    store.flush()
    assert path.read_text(encoding="utf-8") == "[]"


def test_corrupt_checkpoint_raises_and_is_preserved(tmp_path):
    path = tmp_path / "c.json"
    path.write_text("[{broken", encoding="utf-8")
    store = RecordStore(path)
    with pytest.raises(ValueError):
        store.load()
    store.flush()
    assert path.read_text(encoding="utf-8") == "[{broken"


def test_failed_write_leaves_previous_checkpoint_intact(tmp_path):
    path = tmp_path / "c.json"
    store = RecordStore(path)
    store.load()
    store.merge_discovered([_record(name="a", contributor_count=1)])
    store.flush()
    before = path.read_text(encoding="utf-8")

    store.records[0].set("languages", {"C": 1})
    with patch.object(store_mod.os, "fsync", side_effect=OSError("disk full")):
        with pytest.raises(OSError):
            store.flush()

    assert path.read_text(encoding="utf-8") == before
    assert json.loads(before)[0]["attributes"] == {"contributor_count": 1}
    assert [p.name for p in tmp_path.iterdir()] == ["c.json"]


def test_load_removes_temp_files_left_by_interrupted_write(tmp_path):
    path = tmp_path / "c.json"
    path.write_text(json.dumps([_record(name="a").to_dict()]), encoding="utf-8")
    stale = tmp_path / ".c.json.abc123.tmp"
    stale.write_text("[{half", encoding="utf-8")
    other = tmp_path / ".other.json.xyz.tmp"
    other.write_text("keep", encoding="utf-8")

    records = RecordStore(path).load()

    assert [record.name for record in records] == ["a"]
    assert not stale.exists()
    assert other.exists()
