"""Tests for community_health.retrieval.probe (first-success-wins existence checks).

Run with:
    pytest tests/test_probe.py --maxfail=1 -v --cov=community_health.retrieval.probe --cov-report=term-missing
"""

import itertools
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from community_health.retrieval import probe
from community_health.retrieval.errors import ProbeError


def _status_map(mapping):
    def fake_fetch(url, method="GET", **kwargs):
        outcome = mapping[url]
        if isinstance(outcome, Exception):
            raise outcome
        resp = MagicMock()
        resp.status_code = outcome
        return resp

    return fake_fetch


@pytest.mark.parametrize("order", list(itertools.permutations(["A", "B", "C"])))
def test_found_wins_in_any_order(order):
    statuses = {"A": 404, "B": 200, "C": 500}
    with patch.object(probe, "fetch_page", side_effect=_status_map(statuses)):
        assert probe.exists(list(order)) is True


def test_all_not_found_is_false():
    with patch.object(probe, "fetch_page", side_effect=_status_map({"A": 404, "B": 404})):
        assert probe.exists(["A", "B"]) is False


def test_mixed_failure_without_success_raises():
    with patch.object(probe, "fetch_page", side_effect=_status_map({"A": 404, "B": 500})):
        with pytest.raises(ProbeError) as excinfo:
            probe.exists(["A", "B"])
    assert isinstance(excinfo.value, OSError)
    assert ("B", 500) in excinfo.value.outcomes


def test_network_error_without_success_raises():
    statuses = {"A": 404, "B": requests.ConnectionError("reset")}
    with patch.object(probe, "fetch_page", side_effect=_status_map(statuses)):
        with pytest.raises(ProbeError):
            probe.exists(["A", "B"])


def test_empty_candidates_is_false():
    with patch.object(probe, "fetch_page") as mock_fetch:
        assert probe.exists([]) is False
    mock_fetch.assert_not_called()


def test_checks_use_head_requests():
    with patch.object(probe, "fetch_page", side_effect=_status_map({"A": 404})) as mock_fetch:
        probe.exists(["A"])
    assert mock_fetch.call_args.args == ("A", "HEAD")


def test_success_does_not_wait_for_slow_candidates():
    release = threading.Event()

    def fake_fetch(url, method="GET", **kwargs):
        resp = MagicMock()
        if url == "slow":
            release.wait(timeout=5)
            resp.status_code = 500
        else:
            resp.status_code = 200
        return resp

    try:
        with patch.object(probe, "fetch_page", side_effect=fake_fetch):
            assert probe.exists(["slow", "fast"]) is True
        assert not release.is_set()
    finally:
        release.set()


def test_candidate_urls_include_org_health_repository():
    urls = probe.candidate_urls("octo", "repo", "trunk", ["SECURITY.md"], ["SECURITY.md"])
    assert urls == [
        "https://raw.githubusercontent.com/octo/repo/trunk/SECURITY.md",
        "https://raw.githubusercontent.com/octo/.github/main/SECURITY.md",
        "https://raw.githubusercontent.com/octo/.github/master/SECURITY.md",
    ]
    assert probe.candidate_urls("octo", "repo", "main", ["CODEOWNERS"]) == [
        "https://raw.githubusercontent.com/octo/repo/main/CODEOWNERS",
    ]
