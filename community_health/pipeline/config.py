"""Configuration for the batch pipeline: paths, cadence, and stopping rules."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

OUTPUT_DIR = os.getenv("OUTPUT_DIR", "./output")
CHECKPOINT_PATH = os.getenv("CHECKPOINT_PATH", os.path.join(OUTPUT_DIR, "checkpoint.json"))
DATASET_PATH = os.getenv("DATASET_PATH", os.path.join(OUTPUT_DIR, "github.arff"))
DATASET_RELATION = "GitHub Community Health"
SEARCH_QUERY = os.getenv("SEARCH_QUERY", "stars:>10")
SEARCH_PAGE_SIZE = int(os.getenv("SEARCH_PAGE_SIZE", "100"))
TARGET_RECORD_COUNT = int(os.getenv("TARGET_RECORD_COUNT", "10000"))
BATCH_INTERVAL_SEC = int(os.getenv("BATCH_INTERVAL_SEC", str(10 * 60)))
RECOVERY_COOLDOWN_SEC = int(os.getenv("RECOVERY_COOLDOWN_SEC", str(60 * 60)))
MAX_RECOVERY_ATTEMPTS = int(os.getenv("MAX_RECOVERY_ATTEMPTS", "3"))
MAX_TOTAL_FAILURES = int(os.getenv("MAX_TOTAL_FAILURES", "0"))  # 0 = no cap
MAX_BATCHES = int(os.getenv("MAX_BATCHES", "0"))  # 0 = no cap


@dataclass(frozen=True)
class PipelineSettings:
    """Resolved runtime settings for one pipeline run."""

    checkpoint_path: Path
    dataset_path: Path
    query: str
    page_size: int
    target_count: int
    batch_interval: float
    recovery_cooldown: float
    max_recovery_attempts: int
    max_total_failures: int
    max_batches: int
    recover_only: bool = False


def build_arg_parser() -> argparse.ArgumentParser:
    """Return the CLI parser used by the pipeline entry point."""

    parser = argparse.ArgumentParser(
        description="Collect community-health signals for GitHub repositories into an ARFF dataset.",
    )
    parser.add_argument("--checkpoint", default=CHECKPOINT_PATH)
    parser.add_argument("--dataset", default=DATASET_PATH)
    parser.add_argument("--query", default=SEARCH_QUERY)
    parser.add_argument("--page-size", type=int, default=SEARCH_PAGE_SIZE)
    parser.add_argument("--target-count", type=int, default=TARGET_RECORD_COUNT)
    parser.add_argument("--batch-interval", type=float, default=BATCH_INTERVAL_SEC)
    parser.add_argument("--recovery-cooldown", type=float, default=RECOVERY_COOLDOWN_SEC)
    parser.add_argument("--max-recovery-attempts", type=int, default=MAX_RECOVERY_ATTEMPTS)
    parser.add_argument("--max-total-failures", type=int, default=MAX_TOTAL_FAILURES)
    parser.add_argument("--max-batches", type=int, default=MAX_BATCHES)
    parser.add_argument("--once", action="store_true", help="run a single batch and stop")
    parser.add_argument(
        "--recover-only",
        action="store_true",
        help="skip discovery; catch up on records already in the checkpoint, then stop",
    )
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments; accepts argv overrides for testing."""

    parser = build_arg_parser()
    return parser.parse_args(argv)


def resolve_settings(args: Optional[argparse.Namespace] = None) -> PipelineSettings:
    args = args or parse_args([])
    max_batches = args.max_batches
    if args.once or args.recover_only:
        max_batches = 1
    if args.page_size < 1 or args.page_size > 100:
        raise ValueError("--page-size must be between 1 and 100")
    return PipelineSettings(
        checkpoint_path=Path(args.checkpoint),
        dataset_path=Path(args.dataset),
        query=args.query,
        page_size=args.page_size,
        target_count=args.target_count,
        batch_interval=max(0.0, args.batch_interval),
        recovery_cooldown=max(0.0, args.recovery_cooldown),
        max_recovery_attempts=max(0, args.max_recovery_attempts),
        max_total_failures=max(0, args.max_total_failures),
        max_batches=max(0, max_batches),
        recover_only=args.recover_only,
    )


__all__ = [
    "OUTPUT_DIR",
    "CHECKPOINT_PATH",
    "DATASET_PATH",
    "DATASET_RELATION",
    "SEARCH_QUERY",
    "SEARCH_PAGE_SIZE",
    "TARGET_RECORD_COUNT",
    "BATCH_INTERVAL_SEC",
    "RECOVERY_COOLDOWN_SEC",
    "MAX_RECOVERY_ATTEMPTS",
    "MAX_TOTAL_FAILURES",
    "MAX_BATCHES",
    "PipelineSettings",
    "build_arg_parser",
    "parse_args",
    "resolve_settings",
]
