"""Convenience shim to run the collection pipeline from a checkout."""

from __future__ import annotations

import sys

from community_health.pipeline.runner import main


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
