"""Existence probe: is an optional file present at any of several locations?"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, List, Optional, Sequence, Tuple

import requests

from .concurrency import pool_size
from .config import ORG_DEFAULT_BRANCHES, RAW_URL
from .errors import ProbeError
from .http_client import fetch_page

ORG_HEALTH_REPO = ".github"


def raw_url(owner: str, name: str, branch: str, path: str) -> str:
    return f"{RAW_URL}/{owner}/{name}/{branch}/{path}"


def candidate_urls(owner: str,
                   name: str,
                   branch: str,
                   paths: Iterable[str],
                   org_paths: Iterable[str] = ()) -> List[str]:
    """Raw-content URLs for `paths` in the repository, then `org_paths` in the
    owner's `.github` repository (organization default health files)."""
    urls = [raw_url(owner, name, branch, path) for path in paths]
    org_paths = list(org_paths)
    for org_branch in ORG_DEFAULT_BRANCHES:
        urls.extend(raw_url(owner, ORG_HEALTH_REPO, org_branch, path) for path in org_paths)
    return urls


def _head_status(url: str) -> int:
    return fetch_page(url, "HEAD").status_code


def exists(candidates: Sequence[str]) -> bool:
    """Return True as soon as any candidate answers 200, False if all answer 404.

    Any other mix raises ProbeError: caching a false "absent" would stick to
    the record for good.
    """
    urls = list(dict.fromkeys(candidates))
    if not urls:
        return False

    outcomes: List[Tuple[str, Optional[int | str]]] = []
    executor = ThreadPoolExecutor(max_workers=pool_size(len(urls)))
    try:
        futures = {executor.submit(_head_status, url): url for url in urls}
        for future in as_completed(futures):
            url = futures[future]
            try:
                status = future.result()
            except requests.RequestException as exc:
                outcomes.append((url, type(exc).__name__))
                continue
            if status == 200:
                return True
            outcomes.append((url, status))
    finally:
        # Remaining in-flight checks are abandoned, not drained.
        executor.shutdown(wait=False, cancel_futures=True)

    if all(outcome == 404 for _, outcome in outcomes):
        return False
    raise ProbeError(outcomes)


__all__ = ["ORG_HEALTH_REPO", "raw_url", "candidate_urls", "exists"]
