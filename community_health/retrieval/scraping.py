"""Parsers for rendered GitHub pages, for signals the REST API does not expose.

Each parser is a pure function over HTML text. The markup they rely on is
pinned by the fixtures in tests/test_scraping.py; when GitHub changes a page,
only the matching parser and fixture need to move.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional

from bs4 import BeautifulSoup

COUNT_RE = re.compile(r"([\d][\d,]*(?:\.\d+)?)\s*([kKmM])?")
LABELS_RE = re.compile(r"\b([\d][\d,]*)\s+labels?\b")
MILESTONE_STATE_RE = re.compile(r"\b([\d][\d,]*)\s+(Open|Closed)\b")
WORKFLOW_LINK_RE = re.compile(r"/blob/[^/]+/\.github/workflows/([^/]+\.ya?ml)$")
WORKFLOW_SUFFIXES = (".yml", ".yaml")


def parse_count(raw: Optional[str]) -> Optional[int]:
    """Turn '1,234', '5k' or '1.2k' into an int; None when nothing numeric is found."""
    if not raw:
        return None
    match = COUNT_RE.search(raw.strip())
    if not match:
        return None
    number = float(match.group(1).replace(",", ""))
    suffix = (match.group(2) or "").lower()
    if suffix == "k":
        number *= 1_000
    elif suffix == "m":
        number *= 1_000_000
    return int(round(number))


def parse_contributor_count(html: str, owner: str, name: str) -> Optional[int]:
    """Contributor figure from the landing page sidebar.

    Contract: the `span.Counter` inside `a[href="/{owner}/{name}/graphs/contributors"]`;
    its `title` holds the exact number, its text may be abbreviated. GitHub
    omits the sidebar entry for single-contributor repositories, so None here
    is not "unknown" on its own.
    """
    target = f"/{owner}/{name}/graphs/contributors".lower()
    soup = BeautifulSoup(html, "html.parser")
    for link in soup.find_all("a", href=True):
        if link["href"].lower() != target:
            continue
        counter = link.find("span", class_="Counter") or link.find("span")
        if counter is None:
            continue
        for raw in (counter.get("title"), counter.get_text()):
            value = parse_count(raw)
            if value is not None:
                return value
    return None


def _embedded_tree_items(soup: BeautifulSoup) -> Optional[Iterable[Any]]:
    for script in soup.find_all("script", attrs={"type": "application/json"}):
        try:
            data = json.loads(script.string or "")
        except ValueError:
            continue
        if not isinstance(data, dict):
            continue
        tree = ((data.get("payload") or {}).get("tree") or {})
        items = tree.get("items")
        if isinstance(items, list):
            return items
    return None


def parse_workflow_files(html: str) -> int:
    """Number of workflow files in a `.github/workflows` directory listing.

    Contract: the react-app embedded JSON (`payload.tree.items[].name` with
    `contentType == "file"`); older markup falls back to blob links ending in
    `.github/workflows/<file>.yml|.yaml`.
    """
    soup = BeautifulSoup(html, "html.parser")
    items = _embedded_tree_items(soup)
    if items is not None:
        return sum(
            1
            for item in items
            if isinstance(item, dict)
            and item.get("contentType", "file") == "file"
            and str(item.get("name", "")).lower().endswith(WORKFLOW_SUFFIXES)
        )

    names = set()
    for link in soup.find_all("a", href=True):
        match = WORKFLOW_LINK_RE.search(link["href"])
        if match:
            names.add(match.group(1))
    return len(names)


def parse_labels_count(html: str) -> Optional[int]:
    """Contract: the first "<N> label(s)" phrase in the labels page text."""
    text = BeautifulSoup(html, "html.parser").get_text(" ", strip=True)
    match = LABELS_RE.search(text)
    if not match:
        return None
    return int(match.group(1).replace(",", ""))


def parse_milestones_count(html: str) -> Optional[int]:
    """Open plus closed milestones.

    Contract: the state toggles, anchors whose href contains
    `milestones?state=`, read as "<N> Open" and "<N> Closed".
    """
    soup = BeautifulSoup(html, "html.parser")
    counts = {}
    for link in soup.find_all("a", href=True):
        if "milestones?state=" not in link["href"]:
            continue
        match = MILESTONE_STATE_RE.search(link.get_text(" ", strip=True))
        if match:
            counts.setdefault(match.group(2), int(match.group(1).replace(",", "")))
    if not counts:
        return None
    return sum(counts.values())


__all__ = [
    "parse_count",
    "parse_contributor_count",
    "parse_workflow_files",
    "parse_labels_count",
    "parse_milestones_count",
]
