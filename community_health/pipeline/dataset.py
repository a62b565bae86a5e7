"""Render collected records as an ARFF dataset, one row per repository."""

from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import arff

from community_health.records import RepositoryRecord

from .config import DATASET_RELATION
from .store import write_text_atomic

YES_NO = ["y", "n"]

# contributor_count is the label and stays last.
ATTRIBUTES: List[Tuple[str, Any]] = [
    ("fork", YES_NO),
    ("seconds_since_created", "NUMERIC"),
    ("seconds_since_updated", "NUMERIC"),
    ("seconds_since_pushed", "NUMERIC"),
    ("size", "NUMERIC"),
    ("stargazers_count", "NUMERIC"),
    ("watchers_count", "NUMERIC"),
    ("primary_language", "STRING"),
    ("has_issues", YES_NO),
    ("has_projects", YES_NO),
    ("has_downloads", YES_NO),
    ("has_wiki", YES_NO),
    ("has_pages", YES_NO),
    ("forks_count", "NUMERIC"),
    ("open_issues_count", "NUMERIC"),
    ("license", "STRING"),
    ("topics_count", "NUMERIC"),
    ("workflows_count", "NUMERIC"),
    ("readme_size", "NUMERIC"),
    ("has_code_of_conduct", YES_NO),
    ("has_contributing", YES_NO),
    ("has_issue_template", YES_NO),
    ("has_pull_request_template", YES_NO),
    ("health_percentage", "NUMERIC"),
    ("languages_count", "NUMERIC"),
    ("primary_language_ratio", "NUMERIC"),
    ("has_deployments", YES_NO),
    ("environments_count", "NUMERIC"),
    ("has_releases", YES_NO),
    ("labels_count", "NUMERIC"),
    ("milestones_count", "NUMERIC"),
    ("has_security_policy", YES_NO),
    ("has_funding", YES_NO),
    ("has_codeowners", YES_NO),
    ("has_changelog", YES_NO),
    ("has_devcontainer", YES_NO),
    ("contributor_count", "NUMERIC"),
]


def yes_no(value: Any) -> Optional[str]:
    if value is True:
        return "y"
    if value is False:
        return "n"
    return None


def _parse_github_timestamp(raw: Optional[str]) -> Optional[dt.datetime]:
    if not raw:
        return None
    try:
        return dt.datetime.strptime(raw, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=dt.timezone.utc)
    except ValueError:
        return None


def seconds_since(raw: Optional[str], now: dt.datetime) -> Optional[int]:
    ts = _parse_github_timestamp(raw)
    if ts is None:
        return None
    return int((now - ts).total_seconds())


def _length(value: Any) -> Optional[int]:
    return len(value) if value is not None else None


def primary_language_ratio(languages: Optional[Dict[str, int]], primary: Optional[str]) -> Optional[float]:
    """Share of bytes written in the primary language; None when unknown."""
    if not languages or not primary:
        return None
    total = sum(languages.values())
    if not total:
        return None
    return languages.get(primary, 0) / total


def to_row(record: RepositoryRecord, now: dt.datetime) -> List[Any]:
    snap = record.snapshot
    attrs = record.attributes
    languages = attrs.get("languages")
    values = {
        "fork": yes_no(snap.get("fork")),
        "seconds_since_created": seconds_since(snap.get("created_at"), now),
        "seconds_since_updated": seconds_since(snap.get("updated_at"), now),
        "seconds_since_pushed": seconds_since(snap.get("pushed_at"), now),
        "size": snap.get("size"),
        "stargazers_count": snap.get("stargazers_count"),
        "watchers_count": snap.get("watchers_count"),
        "primary_language": snap.get("language"),
        "has_issues": yes_no(snap.get("has_issues")),
        "has_projects": yes_no(snap.get("has_projects")),
        "has_downloads": yes_no(snap.get("has_downloads")),
        "has_wiki": yes_no(snap.get("has_wiki")),
        "has_pages": yes_no(snap.get("has_pages")),
        "forks_count": snap.get("forks_count"),
        "open_issues_count": snap.get("open_issues_count"),
        "license": snap.get("license"),
        "topics_count": _length(snap.get("topics")),
        "languages_count": _length(languages),
        "primary_language_ratio": primary_language_ratio(languages, snap.get("language")),
        "environments_count": _length(attrs.get("environments")),
    }
    for name, kind in ATTRIBUTES:
        if name in values:
            continue
        raw = attrs.get(name)
        values[name] = yes_no(raw) if kind is YES_NO else raw
    return [values[name] for name, _ in ATTRIBUTES]


def render(records: Sequence[RepositoryRecord], now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(dt.timezone.utc)
    return arff.dumps({
        "relation": DATASET_RELATION,
        "description": f"{len(records)} repositories, generated {now.replace(microsecond=0).isoformat()}",
        "attributes": ATTRIBUTES,
        "data": [to_row(record, now) for record in records],
    })


def write_dataset(records: Sequence[RepositoryRecord],
                  path: str | Path,
                  now: Optional[dt.datetime] = None) -> None:
    """Emit rows for every record that carries a contributor count."""
    rows = [record for record in records if record.has("contributor_count")]
    write_text_atomic(path, render(rows, now) + "\n")
    print(f"[batch] wrote {len(rows)} rows to {path}")


__all__ = [
    "YES_NO",
    "ATTRIBUTES",
    "yes_no",
    "seconds_since",
    "primary_language_ratio",
    "to_row",
    "render",
    "write_dataset",
]
