"""HTTP helpers with retry/backoff logic for API calls and page fetches."""

from __future__ import annotations

import time
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import requests
from requests.utils import parse_header_links

from .config import (
    BASE_URL,
    CONNECTION_RETRIES,
    GITHUB_TOKEN,
    PER_PAGE,
    RATE_LIMIT_MIN_WAIT_SEC,
    RATE_LIMIT_RETRIES,
    REQUEST_TIMEOUT,
    USER_AGENT,
)
from .errors import AbuseDetectedError, RateLimitError, UnexpectedStatusError

SESSION = requests.Session()
SESSION.headers.update(
    {
        "Accept": "application/vnd.github+json",
        "User-Agent": USER_AGENT,
    }
)

# Pages and raw files are fetched without credentials.
PAGE_SESSION = requests.Session()
PAGE_SESSION.headers.update({"User-Agent": USER_AGENT})


def set_auth_header(token: Optional[str]) -> None:
    """Set or clear the API session Authorization header."""
    if token:
        SESSION.headers["Authorization"] = f"token {token}"
    else:
        SESSION.headers.pop("Authorization", None)


def is_authenticated() -> bool:
    return "Authorization" in SESSION.headers


set_auth_header(GITHUB_TOKEN)


def log_request(method: str, url: str, outcome: Any, elapsed: float) -> None:
    """Print one line per request so stalls show up during long runs."""
    print(f"[http] {method} {url} -> {outcome} ({elapsed:.2f}s)")


def error_message(resp: requests.Response) -> str:
    """Extract GitHub's error message from a JSON body, falling back to raw text."""
    try:
        body = resp.json()
    except Exception:
        body = {"text": (resp.text or "")[:300]}
    if not isinstance(body, dict):
        return ""
    return str(body.get("message") or body.get("error") or body.get("text") or "")


def log_http_error(resp: requests.Response, url: str) -> None:
    """Print a short, human-readable message when GitHub returns an error."""
    print(f"[error] HTTP {resp.status_code} for {url}\n  -> {error_message(resp)}")


def sleep_on_rate_limit(wait_sec: float, url: str) -> None:
    print(f"[rate-limit] quota exhausted for {url}; sleeping {wait_sec:.0f}s")
    time.sleep(wait_sec)
    print("  done sleeping, resuming collection...")


def rate_limit_kind(resp: requests.Response) -> Optional[str]:
    """Classify a response as a 'primary' or 'abuse' limit signal, or None."""
    if resp.status_code not in (403, 429):
        return None
    headers = resp.headers or {}
    if headers.get("X-RateLimit-Remaining") == "0":
        return "primary"
    message = error_message(resp).lower()
    if headers.get("Retry-After") or "secondary rate limit" in message or "abuse" in message:
        return "abuse"
    return None


def rate_limit_wait_seconds(resp: requests.Response) -> float:
    """Server-indicated wait, floored at RATE_LIMIT_MIN_WAIT_SEC."""
    headers = resp.headers or {}
    retry_after = headers.get("Retry-After")
    reset = headers.get("X-RateLimit-Reset")
    if retry_after and str(retry_after).isdigit():
        wait_sec = int(retry_after)
    elif reset and str(reset).isdigit():
        wait_sec = int(reset) - int(time.time())
    else:
        wait_sec = 0
    return float(max(wait_sec, RATE_LIMIT_MIN_WAIT_SEC))


def _send(session: requests.Session, method: str, url: str, **kwargs) -> requests.Response:
    """Issue one request, retrying a failed connection attempt CONNECTION_RETRIES times."""
    timeout = kwargs.pop("timeout", REQUEST_TIMEOUT)
    attempts = CONNECTION_RETRIES + 1
    for attempt in range(1, attempts + 1):
        start = time.monotonic()
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as exc:
            log_request(method, url, f"{type(exc).__name__}: {exc}", time.monotonic() - start)
            if attempt >= attempts:
                raise
            print(f"[retry {attempt}/{CONNECTION_RETRIES}] connection failed for {url}")
            continue
        log_request(method, url, resp.status_code, time.monotonic() - start)
        return resp
    raise RuntimeError("Request failed after retries.")


def request_with_backoff(method: str, url: str, **kwargs) -> requests.Response:
    """Perform a REST API call honouring GitHub's primary and secondary rate limits.

    Statuses other than rate-limit signals are returned untouched; the caller
    decides what a 404 or 5xx means for its attribute.
    """
    for attempt in range(RATE_LIMIT_RETRIES + 1):
        resp = _send(SESSION, method, url, **kwargs)
        kind = rate_limit_kind(resp)
        if kind is None:
            return resp

        if kind == "abuse":
            print(f"[abuse] abuse detection triggered for {method} {url}; not retrying")
            raise AbuseDetectedError(
                f"secondary rate limit for {method} {url}: {error_message(resp)}",
                retry_after=rate_limit_wait_seconds(resp),
            )

        wait_sec = rate_limit_wait_seconds(resp)
        if attempt >= RATE_LIMIT_RETRIES:
            log_http_error(resp, url)
            raise RateLimitError(
                f"rate limit persists for {method} {url} after {RATE_LIMIT_RETRIES} retries",
                retry_after=wait_sec,
            )
        sleep_on_rate_limit(wait_sec, url)
    raise RuntimeError("Request failed after retries.")


def fetch_page(url: str,
               method: str = "GET",
               *,
               allow_redirects: bool = True,
               headers: Optional[Dict[str, str]] = None) -> requests.Response:
    """Fetch an HTML page or raw file; there is no rate-limit protocol to honour."""
    return _send(PAGE_SESSION, method, url, allow_redirects=allow_redirects, headers=headers)


def api_url(owner: str, name: str, suffix: str = "") -> str:
    suffix = f"/{suffix.lstrip('/')}" if suffix else ""
    return f"{BASE_URL}/repos/{owner}/{name}{suffix}"


def with_query(url: str, **params: Any) -> str:
    """Append query parameters to a URL that may already carry some."""
    extra = "&".join(f"{key}={value}" for key, value in params.items())
    if not extra:
        return url
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}{extra}"


def link_url(resp: requests.Response, rel: str) -> Optional[str]:
    """Return the URL for `rel` from a Link header, if present."""
    header = (resp.headers or {}).get("Link")
    if not header:
        return None
    for link in parse_header_links(header):
        if link.get("rel") == rel:
            return link.get("url")
    return None


def get_json(url: str) -> Any:
    """GET an API resource and return its JSON body; non-200 raises."""
    resp = request_with_backoff("GET", url)
    if resp.status_code != 200:
        log_http_error(resp, url)
        raise UnexpectedStatusError(url, resp.status_code)
    return resp.json()


def paged_get(url: str, *, item_key: Optional[str] = None) -> List[Dict[str, Any]]:
    """Follow `rel="next"` links until a page comes back empty or none is linked."""
    results: List[Dict[str, Any]] = []
    page_url: Optional[str] = with_query(url, per_page=PER_PAGE)
    while page_url:
        resp = request_with_backoff("GET", page_url)
        if resp.status_code != 200:
            log_http_error(resp, page_url)
            raise UnexpectedStatusError(page_url, resp.status_code)
        payload = resp.json()
        batch = payload.get(item_key) if item_key and isinstance(payload, dict) else payload
        if not isinstance(batch, list) or not batch:
            break
        results.extend(batch)
        page_url = link_url(resp, "next")
    return results


def count_via_link(url: str) -> int:
    """Count a listing's items with one request: per_page=1 and the last page number.

    204 (GitHub's answer for an empty repository) counts as zero.
    """
    page_url = with_query(url, per_page=1)
    resp = request_with_backoff("GET", page_url)
    if resp.status_code == 204:
        return 0
    if resp.status_code != 200:
        log_http_error(resp, page_url)
        raise UnexpectedStatusError(page_url, resp.status_code)
    last = link_url(resp, "last")
    if last:
        page = parse_qs(urlparse(last).query).get("page")
        if page and page[0].isdigit():
            return int(page[0])
    payload = resp.json()
    return len(payload) if isinstance(payload, list) else 0


__all__ = [
    "SESSION",
    "PAGE_SESSION",
    "set_auth_header",
    "is_authenticated",
    "log_request",
    "error_message",
    "log_http_error",
    "sleep_on_rate_limit",
    "rate_limit_kind",
    "rate_limit_wait_seconds",
    "request_with_backoff",
    "fetch_page",
    "api_url",
    "with_query",
    "link_url",
    "get_json",
    "paged_get",
    "count_via_link",
]
