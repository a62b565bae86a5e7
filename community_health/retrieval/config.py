"""Central configuration constants for talking to GitHub (API, pages, raw files)."""

from __future__ import annotations

import os
from typing import Optional

from community_health.secrets import resolve_github_token

GITHUB_TOKEN: Optional[str] = resolve_github_token()
USER_AGENT = "community-health-collector/1.0"
BASE_URL = "https://api.github.com"
WEB_URL = "https://github.com"
RAW_URL = "https://raw.githubusercontent.com"
PER_PAGE = 100
REQUEST_TIMEOUT = int(os.getenv("REQUEST_TIMEOUT", "60"))
CONNECTION_RETRIES = 1
RATE_LIMIT_RETRIES = int(os.getenv("RATE_LIMIT_RETRIES", "2"))
# Near-zero waits right after a reset tend to trip abuse detection.
RATE_LIMIT_MIN_WAIT_SEC = int(os.getenv("RATE_LIMIT_MIN_WAIT_SEC", "60"))
MAX_CONCURRENCY = int(os.getenv("MAX_CONCURRENCY", "0"))  # 0 = no cap
ORG_DEFAULT_BRANCHES = ("main", "master")

__all__ = [
    "GITHUB_TOKEN",
    "USER_AGENT",
    "BASE_URL",
    "WEB_URL",
    "RAW_URL",
    "PER_PAGE",
    "REQUEST_TIMEOUT",
    "CONNECTION_RETRIES",
    "RATE_LIMIT_RETRIES",
    "RATE_LIMIT_MIN_WAIT_SEC",
    "MAX_CONCURRENCY",
    "ORG_DEFAULT_BRANCHES",
]
