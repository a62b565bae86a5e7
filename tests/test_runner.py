"""Tests for community_health.pipeline.runner: batches, recovery, signals, and scenarios.

Run with:
    pytest tests/test_runner.py --maxfail=1 -v --cov=community_health.pipeline.runner --cov-report=term-missing
"""

import json
import signal
from pathlib import Path
from unittest.mock import MagicMock, patch

import arff
import pytest

from community_health.pipeline import runner
from community_health.pipeline.config import PipelineSettings
from community_health.pipeline.store import RecordStore
from community_health.records import RepositoryRecord
from community_health.retrieval.errors import RateLimitError

ALL_BUT_WORKFLOWS = {
    "contributor_count": 4,
    "languages": {"Go": 10},
    "readme_url": None,
    "readme_size": 0,
    "has_code_of_conduct": False,
    "has_contributing": False,
    "has_issue_template": False,
    "has_pull_request_template": False,
    "health_percentage": 10,
    "environments": [],
    "has_deployments": False,
    "has_releases": False,
    "labels_count": 0,
    "milestones_count": 0,
    "has_security_policy": False,
    "has_funding": False,
    "has_codeowners": False,
    "has_changelog": False,
    "has_devcontainer": False,
}


def _settings(tmp_path: Path, **overrides) -> PipelineSettings:
    values = dict(
        checkpoint_path=tmp_path / "checkpoint.json",
        dataset_path=tmp_path / "github.arff",
        query="stars:>10",
        page_size=10,
        target_count=1000,
        batch_interval=30,
        recovery_cooldown=600,
        max_recovery_attempts=2,
        max_total_failures=0,
        max_batches=1,
    )
    values.update(overrides)
    return PipelineSettings(**values)


def _record(name, **attributes):
    return RepositoryRecord(owner="octo", name=name, attributes=dict(attributes))


def _resp(status=200, payload=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = {}
    resp.json.return_value = payload if payload is not None else {}
    resp.text = text
    return resp


def _loaded_store(settings, records=()):
    store = RecordStore(settings.checkpoint_path)
    store.load()
    store.merge_discovered(list(records))
    return store


def _checkpoint(settings):
    return json.loads(settings.checkpoint_path.read_text(encoding="utf-8"))


@patch("community_health.pipeline.runner.COLLECTORS", [])
@patch("community_health.retrieval.collectors.count_via_link")
@patch("community_health.retrieval.collectors.fetch_page")
@patch("community_health.pipeline.runner.discover_repositories")
def test_fresh_run_keeps_only_countable_repositories(mock_discover, mock_fetch, mock_count, tmp_path):
    settings = _settings(tmp_path)
    mock_discover.return_value = [_record("counted"), _record("gone")]

    def fake_fetch(url, *args, **kwargs):
        if url.endswith("/counted"):
            return _resp(200, text='<a href="/octo/counted/graphs/contributors"><span class="Counter">8</span></a>')
        return _resp(404)

    mock_fetch.side_effect = fake_fetch
    store = RecordStore(settings.checkpoint_path)
    assert runner.BatchOrchestrator(store, settings, sleep=lambda _: None).run() == 0

    checkpoint = _checkpoint(settings)
    assert [entry["name"] for entry in checkpoint] == ["counted"]
    assert checkpoint[0]["attributes"]["contributor_count"] == 8
    decoded = arff.loads(settings.dataset_path.read_text(encoding="utf-8"))
    assert len(decoded["data"]) == 1
    mock_count.assert_not_called()


@patch("community_health.retrieval.collectors.is_authenticated", return_value=True)
@patch("community_health.retrieval.collectors.exists")
@patch("community_health.retrieval.collectors.count_via_link")
@patch("community_health.retrieval.collectors.paged_get")
@patch("community_health.retrieval.collectors.fetch_page")
@patch("community_health.retrieval.collectors.get_json")
@patch("community_health.retrieval.collectors.request_with_backoff")
def test_resumed_run_only_collects_missing_attributes(mock_request, mock_get_json, mock_fetch, mock_paged,
                                                      mock_count, mock_exists, mock_auth, tmp_path):
    settings = _settings(tmp_path)
    store = _loaded_store(settings, [_record("resumed", **ALL_BUT_WORKFLOWS)])
    mock_request.return_value = _resp(200, {"total_count": 2})

    runner.BatchOrchestrator(store, settings, sleep=lambda _: None).run_batch(discover=False)

    assert store.records[0].get("workflows_count") == 2
    assert store.records[0].get("languages") == {"Go": 10}
    assert [call.args[1] for call in mock_request.call_args_list] == [
        "https://api.github.com/repos/octo/resumed/actions/workflows?per_page=1",
    ]
    mock_get_json.assert_not_called()
    mock_fetch.assert_not_called()
    mock_paged.assert_not_called()
    mock_count.assert_not_called()
    mock_exists.assert_not_called()
    assert _checkpoint(settings)[0]["attributes"]["workflows_count"] == 2


@patch("community_health.pipeline.runner.write_dataset")
@patch("community_health.pipeline.runner.collect_contributor_counts")
def test_failed_batch_still_flushes_partial_work(mock_contributors, mock_write, tmp_path):
    settings = _settings(tmp_path)
    store = _loaded_store(settings, [_record("a", contributor_count=2)])

    def languages_then_boom(records):
        records[0].set("languages", {"C": 5})
        raise RuntimeError("boom")

    with patch.object(runner, "COLLECTORS", [("languages", languages_then_boom)]):
        with pytest.raises(RuntimeError):
            runner.BatchOrchestrator(store, settings).run_batch(discover=False)

    assert _checkpoint(settings)[0]["attributes"]["languages"] == {"C": 5}
    mock_write.assert_not_called()


def test_recovery_batch_follows_failure(tmp_path):
    settings = _settings(tmp_path)
    sleeps = []
    orchestrator = runner.BatchOrchestrator(_loaded_store(settings), settings, sleep=sleeps.append)
    calls = []

    def fake_batch(discover=True):
        calls.append(discover)
        if len(calls) == 1:
            raise RuntimeError("rate limited")

    orchestrator.run_batch = fake_batch
    assert orchestrator.run() == 1
    assert calls == [True, False]
    assert sleeps == [600]
    assert orchestrator.failures == 1


def test_recovery_attempts_are_bounded_per_iteration(tmp_path):
    settings = _settings(tmp_path, max_batches=2)
    sleeps = []
    orchestrator = runner.BatchOrchestrator(_loaded_store(settings), settings, sleep=sleeps.append)
    calls = []

    def always_fails(discover=True):
        calls.append(discover)
        raise RuntimeError("still broken")

    orchestrator.run_batch = always_fails
    assert orchestrator.run() == 1
    # batch, 2 recoveries, idle, batch, 2 recoveries
    assert calls == [True, False, False, True, False, False]
    assert sleeps == [600, 600, 30, 600, 600]


def test_failure_budget_ends_the_run(tmp_path):
    settings = _settings(tmp_path, max_batches=0, max_total_failures=2)
    orchestrator = runner.BatchOrchestrator(_loaded_store(settings), settings, sleep=lambda _: None)
    calls = []

    def always_fails(discover=True):
        calls.append(discover)
        raise RuntimeError("down")

    orchestrator.run_batch = always_fails
    assert orchestrator.run() == 1
    assert calls == [True, False]


def test_target_reached_stops_after_persisting(tmp_path):
    settings = _settings(tmp_path, target_count=1, max_batches=0)
    seed = RecordStore(settings.checkpoint_path)
    seed.load()
    seed.merge_discovered([_record("a", contributor_count=1), _record("b", contributor_count=2)])
    seed.flush()

    orchestrator = runner.BatchOrchestrator(RecordStore(settings.checkpoint_path), settings)
    orchestrator.run_batch = MagicMock()
    assert orchestrator.run() == 0
    orchestrator.run_batch.assert_not_called()
    assert len(_checkpoint(settings)) == 2


def test_recover_only_skips_discovery(tmp_path):
    settings = _settings(tmp_path, recover_only=True)
    orchestrator = runner.BatchOrchestrator(_loaded_store(settings), settings, sleep=lambda _: None)
    orchestrator.run_batch = MagicMock()
    assert orchestrator.run() == 0
    orchestrator.run_batch.assert_called_once_with(discover=False)


def test_signal_handler_flushes_checkpoint(tmp_path, monkeypatch):
    settings = _settings(tmp_path)
    store = _loaded_store(settings, [_record("a", contributor_count=3)])
    installed = {}
    monkeypatch.setattr(runner.signal, "signal", lambda signum, handler: installed.setdefault(signum, handler))
    exits = []

    def fake_exit(code):
        exits.append(code)
        raise SystemExit(code)

    monkeypatch.setattr(runner.os, "_exit", fake_exit)
    handler = runner.install_signal_handlers(store)
    assert set(installed) == {signal.SIGINT, signal.SIGUSR1, signal.SIGUSR2}

    store.records[0].set("languages", {"Rust": 1})
    with pytest.raises(SystemExit):
        handler(signal.SIGUSR1, None)

    assert exits == [128 + signal.SIGUSR1]
    attributes = _checkpoint(settings)[0]["attributes"]
    assert attributes == {"contributor_count": 3, "languages": {"Rust": 1}}


def test_main_flushes_on_unhandled_fault(tmp_path, monkeypatch):
    checkpoint = tmp_path / "checkpoint.json"
    monkeypatch.setattr(runner, "install_signal_handlers", lambda store: None)

    def crashing_run(self):
        self.store.load()
        self.store.merge_discovered([_record("a", contributor_count=1)])
        raise KeyboardInterrupt

    monkeypatch.setattr(runner.BatchOrchestrator, "run", crashing_run)
    with pytest.raises(KeyboardInterrupt):
        runner.main(["--checkpoint", str(checkpoint), "--once"])
    assert json.loads(checkpoint.read_text(encoding="utf-8"))[0]["name"] == "a"


def test_recovery_waits_at_least_the_server_hint(tmp_path):
    settings = _settings(tmp_path)
    sleeps = []
    orchestrator = runner.BatchOrchestrator(_loaded_store(settings), settings, sleep=sleeps.append)
    calls = []

    def limited_then_ok(discover=True):
        calls.append(discover)
        if len(calls) == 1:
            raise RateLimitError("API rate limit exceeded", retry_after=5400)

    orchestrator.run_batch = limited_then_ok
    assert orchestrator.run() == 1
    assert calls == [True, False]
    assert sleeps == [5400]


def test_signal_mid_batch_keeps_attributes_collected_so_far(tmp_path, monkeypatch):
    settings = _settings(tmp_path)
    store = _loaded_store(settings, [_record("a", contributor_count=3), _record("b", contributor_count=5)])
    monkeypatch.setattr(runner.signal, "signal", lambda signum, handler: None)

    def fake_exit(code):
        raise SystemExit(code)

    monkeypatch.setattr(runner.os, "_exit", fake_exit)
    handler = runner.install_signal_handlers(store)

    def languages(records):
        records[0].set("languages", {"Go": 7})
        handler(signal.SIGINT, None)
        records[1].set("languages", {"C": 1})

    def never_reached(records):
        raise AssertionError("collectors after the interrupt must not run")

    with patch.object(runner, "collect_contributor_counts"), \
            patch.object(runner, "write_dataset") as mock_write, \
            patch.object(runner, "COLLECTORS", [("languages", languages), ("labels", never_reached)]):
        with pytest.raises(SystemExit) as excinfo:
            runner.BatchOrchestrator(store, settings).run_batch(discover=False)

    assert excinfo.value.code == 128 + signal.SIGINT
    mock_write.assert_not_called()
    by_name = {entry["name"]: entry["attributes"] for entry in _checkpoint(settings)}
    assert by_name["a"] == {"contributor_count": 3, "languages": {"Go": 7}}
    assert by_name["b"] == {"contributor_count": 5}
    assert [p.name for p in tmp_path.iterdir() if p.suffix == ".tmp"] == []
