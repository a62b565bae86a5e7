"""Discovery and attribute collectors for repository records.

Every collector takes the full record list, skips records that already carry
its attribute(s), and mutates the rest in place. Collectors that call the REST
API walk records one at a time; page and raw-file collectors fan out across
records.
"""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

import requests

from community_health.records import RepositoryRecord

from .concurrency import run_all
from .config import BASE_URL, WEB_URL
from .errors import ScrapeError, UnexpectedStatusError
from .http_client import (
    api_url,
    count_via_link,
    fetch_page,
    get_json,
    is_authenticated,
    log_http_error,
    paged_get,
    request_with_backoff,
    with_query,
)
from .probe import candidate_urls, exists
from .scraping import (
    parse_contributor_count,
    parse_labels_count,
    parse_milestones_count,
    parse_workflow_files,
)

Collector = Callable[[Sequence[RepositoryRecord]], None]

PROFILE_KEYS = (
    "has_code_of_conduct",
    "has_contributing",
    "has_issue_template",
    "has_pull_request_template",
    "health_percentage",
)


def pending(records: Iterable[RepositoryRecord], *keys: str) -> List[RepositoryRecord]:
    """Records still missing at least one of `keys`."""
    return [record for record in records if not record.has_all(*keys)]


def _for_each(records: Sequence[RepositoryRecord],
              func: Callable[[RepositoryRecord], None],
              *,
              concurrent: bool = False) -> None:
    if concurrent:
        run_all(func, records)
        return
    for record in records:
        func(record)


def _is_redirect(status: int) -> bool:
    return 300 <= status < 400


# ---------------------------------------------------------------------------
# discovery
# ---------------------------------------------------------------------------

def discover_repositories(query: str, page_size: int = 100, page: int = 1) -> List[RepositoryRecord]:
    """One page of repository search results, most recently updated first."""
    url = (
        f"{BASE_URL}/search/repositories?q={quote_plus(query)}"
        f"&sort=updated&order=desc&per_page={page_size}&page={page}"
    )
    payload = get_json(url) or {}
    records = []
    for item in payload.get("items") or []:
        if not (item.get("owner") or {}).get("login") or not item.get("name"):
            continue
        records.append(RepositoryRecord.from_search_item(item))
    print(f"[batch] discovered {len(records)} repositories for '{query}' (page {page})")
    return records


# ---------------------------------------------------------------------------
# contributors (filtering step)
# ---------------------------------------------------------------------------

def _contributor_count(record: RepositoryRecord) -> Optional[int]:
    """Sidebar figure first, then the contributor listing; None when undeterminable."""
    url = f"{WEB_URL}/{record.owner}/{record.name}"
    resp = fetch_page(url)
    if resp.status_code == 404:
        return None
    if resp.status_code != 200:
        raise UnexpectedStatusError(url, resp.status_code)

    count = parse_contributor_count(resp.text, record.owner, record.name)
    if count is not None:
        return count

    # The sidebar entry is omitted for tiny repositories; ask the API instead.
    listing = with_query(api_url(record.owner, record.name, "contributors"), anon=1)
    try:
        return count_via_link(listing)
    except UnexpectedStatusError as exc:
        # 403: history too large to list; 404: repository gone.
        if exc.status in (403, 404):
            return None
        raise


def collect_contributor_counts(records: Sequence[RepositoryRecord]) -> None:
    def work(record: RepositoryRecord) -> None:
        count = _contributor_count(record)
        if count is None:
            print(f"[warn] contributor count undeterminable for {record.full_name}")
            return
        record.set("contributor_count", count)

    _for_each(pending(records, "contributor_count"), work, concurrent=True)


# ---------------------------------------------------------------------------
# README
# ---------------------------------------------------------------------------

def collect_readme_urls(records: Sequence[RepositoryRecord]) -> None:
    """Resolve the raw README location once; None records "no README"."""

    def work(record: RepositoryRecord) -> None:
        url = api_url(record.owner, record.name, "readme")
        resp = request_with_backoff("GET", url)
        if resp.status_code == 404:
            record.set("readme_url", None)
            return
        if resp.status_code != 200:
            log_http_error(resp, url)
            raise UnexpectedStatusError(url, resp.status_code)
        record.set("readme_url", (resp.json() or {}).get("download_url"))

    _for_each(pending(records, "readme_url"), work)


def _readme_size(readme_url: Optional[str]) -> int:
    if not readme_url:
        return 0
    try:
        resp = fetch_page(readme_url, "HEAD", headers={"Accept-Encoding": "identity"})
    except requests.RequestException as exc:
        print(f"[warn] README fetch failed for {readme_url}: {exc}; size 0")
        return 0
    if resp.status_code != 200:
        print(f"[warn] README fetch returned {resp.status_code} for {readme_url}; size 0")
        return 0
    length = str((resp.headers or {}).get("Content-Length") or "")
    return int(length) if length.isdigit() else 0


def collect_readme_sizes(records: Sequence[RepositoryRecord]) -> None:
    """Needs `readme_url` from collect_readme_urls; any fetch failure counts as 0."""
    ready = [record for record in pending(records, "readme_size") if record.has("readme_url")]

    def work(record: RepositoryRecord) -> None:
        record.set("readme_size", _readme_size(record.get("readme_url")))

    _for_each(ready, work, concurrent=True)


# ---------------------------------------------------------------------------
# structured API collectors
# ---------------------------------------------------------------------------

def collect_community_profiles(records: Sequence[RepositoryRecord]) -> None:
    def work(record: RepositoryRecord) -> None:
        data = get_json(api_url(record.owner, record.name, "community/profile")) or {}
        files = data.get("files") or {}
        profile = {
            "has_code_of_conduct": bool(files.get("code_of_conduct") or files.get("code_of_conduct_file")),
            "has_contributing": bool(files.get("contributing")),
            "has_issue_template": bool(files.get("issue_template")),
            "has_pull_request_template": bool(files.get("pull_request_template")),
            "health_percentage": data.get("health_percentage"),
        }
        # Keys carried over from an older checkpoint stay as they were.
        for key, value in profile.items():
            if not record.has(key):
                record.set(key, value)

    _for_each(pending(records, *PROFILE_KEYS), work)


def collect_languages(records: Sequence[RepositoryRecord]) -> None:
    def work(record: RepositoryRecord) -> None:
        record.set("languages", get_json(api_url(record.owner, record.name, "languages")) or {})

    _for_each(pending(records, "languages"), work)


def collect_environments(records: Sequence[RepositoryRecord]) -> None:
    def work(record: RepositoryRecord) -> None:
        url = api_url(record.owner, record.name, "environments")
        try:
            environments = paged_get(url, item_key="environments")
        except UnexpectedStatusError as exc:
            if exc.status != 404:
                raise
            environments = []
        record.set("environments", [env.get("name") for env in environments])

    _for_each(pending(records, "environments"), work)


def collect_deployments(records: Sequence[RepositoryRecord]) -> None:
    """Run after collect_environments: no environments means no deployments."""

    def work(record: RepositoryRecord) -> None:
        if record.has("environments") and not record.get("environments"):
            record.set("has_deployments", False)
            return
        url = with_query(api_url(record.owner, record.name, "deployments"), per_page=1)
        resp = request_with_backoff("GET", url)
        if resp.status_code >= 500:
            # GitHub times out listing very large deployment histories.
            print(f"[warn] HTTP {resp.status_code} listing deployments for {record.full_name}; assuming some")
            record.set("has_deployments", True)
            return
        if resp.status_code != 200:
            log_http_error(resp, url)
            raise UnexpectedStatusError(url, resp.status_code)
        record.set("has_deployments", len(resp.json() or []) > 0)

    _for_each(pending(records, "has_deployments"), work)


# ---------------------------------------------------------------------------
# collectors with an API and a page rendition
#
# With a token the API ceiling is generous and its answers are exact; without
# one the 60 requests/hour budget goes to the calls that have no page fallback.
# ---------------------------------------------------------------------------

def _has_releases(record: RepositoryRecord) -> bool:
    if is_authenticated():
        url = with_query(api_url(record.owner, record.name, "releases"), per_page=1)
        resp = request_with_backoff("GET", url)
        if resp.status_code != 200:
            log_http_error(resp, url)
            raise UnexpectedStatusError(url, resp.status_code)
        return len(resp.json() or []) > 0

    # /releases redirects to /tags when nothing has been released.
    url = f"{WEB_URL}/{record.owner}/{record.name}/releases"
    resp = fetch_page(url, allow_redirects=False)
    if 200 <= resp.status_code < 300:
        return True
    if _is_redirect(resp.status_code):
        return False
    raise UnexpectedStatusError(url, resp.status_code)


def collect_releases(records: Sequence[RepositoryRecord]) -> None:
    def work(record: RepositoryRecord) -> None:
        record.set("has_releases", _has_releases(record))

    _for_each(pending(records, "has_releases"), work, concurrent=not is_authenticated())


def _workflows_count(record: RepositoryRecord) -> int:
    if is_authenticated():
        url = with_query(api_url(record.owner, record.name, "actions/workflows"), per_page=1)
        resp = request_with_backoff("GET", url)
        if resp.status_code == 404:
            return 0
        if resp.status_code != 200:
            log_http_error(resp, url)
            raise UnexpectedStatusError(url, resp.status_code)
        return int((resp.json() or {}).get("total_count") or 0)

    url = f"{WEB_URL}/{record.owner}/{record.name}/tree/{record.default_branch}/.github/workflows"
    resp = fetch_page(url)
    if resp.status_code == 404:
        return 0
    if resp.status_code != 200:
        raise UnexpectedStatusError(url, resp.status_code)
    return parse_workflow_files(resp.text)


def collect_workflows(records: Sequence[RepositoryRecord]) -> None:
    def work(record: RepositoryRecord) -> None:
        record.set("workflows_count", _workflows_count(record))

    _for_each(pending(records, "workflows_count"), work, concurrent=not is_authenticated())


def _scraped_count(url: str, parser: Callable[[str], Optional[int]], what: str) -> int:
    resp = fetch_page(url)
    if resp.status_code != 200:
        raise UnexpectedStatusError(url, resp.status_code)
    count = parser(resp.text)
    if count is None:
        raise ScrapeError(url, what)
    return count


def _labels_count(record: RepositoryRecord) -> int:
    if is_authenticated():
        return count_via_link(api_url(record.owner, record.name, "labels"))
    url = f"{WEB_URL}/{record.owner}/{record.name}/labels"
    return _scraped_count(url, parse_labels_count, "label count")


def collect_labels(records: Sequence[RepositoryRecord]) -> None:
    def work(record: RepositoryRecord) -> None:
        record.set("labels_count", _labels_count(record))

    _for_each(pending(records, "labels_count"), work, concurrent=not is_authenticated())


def _milestones_count(record: RepositoryRecord) -> int:
    if is_authenticated():
        url = with_query(api_url(record.owner, record.name, "milestones"), state="all")
        return count_via_link(url)
    url = f"{WEB_URL}/{record.owner}/{record.name}/milestones"
    return _scraped_count(url, parse_milestones_count, "milestone counters")


def collect_milestones(records: Sequence[RepositoryRecord]) -> None:
    def work(record: RepositoryRecord) -> None:
        record.set("milestones_count", _milestones_count(record))

    _for_each(pending(records, "milestones_count"), work, concurrent=not is_authenticated())


# ---------------------------------------------------------------------------
# presence probes
# ---------------------------------------------------------------------------

def presence_collector(key: str,
                       paths: Tuple[str, ...],
                       org_paths: Tuple[str, ...] = ()) -> Collector:
    """Build a collector setting `key` to whether any of `paths` exists.

    `org_paths` are also tried in the owner's `.github` repository, where
    GitHub picks up organization-wide default health files.
    """

    def work(record: RepositoryRecord) -> None:
        urls = candidate_urls(record.owner, record.name, record.default_branch, paths, org_paths)
        record.set(key, exists(urls))

    def collect(records: Sequence[RepositoryRecord]) -> None:
        _for_each(pending(records, key), work, concurrent=True)

    collect.__name__ = f"collect_{key}"
    collect.__doc__ = f"Probe for {', '.join(paths)}."
    return collect


collect_security_policies = presence_collector(
    "has_security_policy",
    ("SECURITY.md", ".github/SECURITY.md", "docs/SECURITY.md"),
    ("SECURITY.md", ".github/SECURITY.md"),
)
collect_funding = presence_collector(
    "has_funding",
    (".github/FUNDING.yml",),
    ("FUNDING.yml", ".github/FUNDING.yml"),
)
collect_codeowners = presence_collector(
    "has_codeowners",
    ("CODEOWNERS", ".github/CODEOWNERS", "docs/CODEOWNERS"),
)
collect_changelogs = presence_collector(
    "has_changelog",
    ("CHANGELOG.md", "CHANGELOG", "CHANGES.md", "HISTORY.md", "docs/CHANGELOG.md"),
)
collect_devcontainers = presence_collector(
    "has_devcontainer",
    (".devcontainer/devcontainer.json", ".devcontainer.json"),
)


# Order matters: readme_url feeds readme_size, environments short-circuit
# deployments. Contributor counts run earlier, as the filtering step.
COLLECTORS: List[Tuple[str, Collector]] = [
    ("workflows", collect_workflows),
    ("readme urls", collect_readme_urls),
    ("readme sizes", collect_readme_sizes),
    ("community profiles", collect_community_profiles),
    ("languages", collect_languages),
    ("environments", collect_environments),
    ("deployments", collect_deployments),
    ("releases", collect_releases),
    ("labels", collect_labels),
    ("milestones", collect_milestones),
    ("security policies", collect_security_policies),
    ("funding files", collect_funding),
    ("codeowners", collect_codeowners),
    ("changelogs", collect_changelogs),
    ("devcontainers", collect_devcontainers),
]


__all__ = [
    "Collector",
    "PROFILE_KEYS",
    "pending",
    "discover_repositories",
    "collect_contributor_counts",
    "collect_readme_urls",
    "collect_readme_sizes",
    "collect_community_profiles",
    "collect_languages",
    "collect_environments",
    "collect_deployments",
    "collect_releases",
    "collect_workflows",
    "collect_labels",
    "collect_milestones",
    "presence_collector",
    "collect_security_policies",
    "collect_funding",
    "collect_codeowners",
    "collect_changelogs",
    "collect_devcontainers",
    "COLLECTORS",
]
