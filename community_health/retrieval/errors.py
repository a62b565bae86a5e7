"""Exception taxonomy for the collection pipeline."""

from __future__ import annotations

from typing import List, Optional, Tuple


class CollectionError(Exception):
    """Base exception for collection failures that abort a batch."""


class RateLimitError(CollectionError):
    """Raised when the primary API rate limit persists past the retry ceiling."""

    def __init__(self, message: str, retry_after: int | float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class AbuseDetectedError(RateLimitError):
    """
    Raised when GitHub's secondary rate limit (abuse detection) is triggered.

    These are never retried in-process; retrying quickly only extends the
    lockout.
    """


class UnexpectedStatusError(CollectionError):
    """Raised when a response carries a status the caller cannot interpret."""

    def __init__(self, url: str, status: int):
        super().__init__(f"unexpected HTTP {status} for {url}")
        self.url = url
        self.status = status


class ScrapeError(CollectionError):
    """Raised when a rendered page no longer carries the markup a parser expects."""

    def __init__(self, url: str, what: str):
        super().__init__(f"could not find {what} in {url}")
        self.url = url


class ProbeError(CollectionError, OSError):
    """Raised when an existence probe cannot tell absent from unreachable."""

    def __init__(self, outcomes: List[Tuple[str, Optional[int | str]]]):
        detail = ", ".join(f"{url} -> {outcome}" for url, outcome in outcomes)
        super().__init__(f"existence probe inconclusive: {detail}")
        self.outcomes = outcomes


__all__ = [
    "CollectionError",
    "RateLimitError",
    "AbuseDetectedError",
    "UnexpectedStatusError",
    "ScrapeError",
    "ProbeError",
]
