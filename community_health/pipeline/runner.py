"""Batch orchestrator: discover, filter, collect, persist, emit, repeat."""

from __future__ import annotations

import os
import signal
import sys
import time
import traceback
from typing import Callable, List, Optional

from community_health.retrieval.collectors import (
    COLLECTORS,
    collect_contributor_counts,
    discover_repositories,
)

from .config import PipelineSettings, parse_args, resolve_settings
from .dataset import write_dataset
from .store import RecordStore

FLUSH_SIGNALS = ("SIGINT", "SIGUSR1", "SIGUSR2")


class BatchOrchestrator:
    """Drives batches over a RecordStore it owns, flushing after every one."""

    def __init__(self,
                 store: RecordStore,
                 settings: PipelineSettings,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        self.store = store
        self.settings = settings
        self.sleep = sleep
        self.batches = 0
        self.failures = 0
        self.retry_after: Optional[float] = None

    def run_batch(self, discover: bool = True) -> None:
        """One batch. The checkpoint is written whatever happens; the dataset
        only when every step succeeded."""
        kind = "batch" if discover else "recovery batch"
        start = time.monotonic()
        print(f"\n=== {kind} ({len(self.store.records)} records in checkpoint) ===")
        try:
            if discover:
                discovered = discover_repositories(self.settings.query, self.settings.page_size)
                self.store.merge_discovered(discovered)

            print("  collecting contributor counts...")
            collect_contributor_counts(self.store.records)
            self.store.filter_invalid()

            for label, collector in COLLECTORS:
                print(f"  collecting {label}...")
                collector(self.store.records)
        finally:
            self.store.flush()

        write_dataset(self.store.records, self.settings.dataset_path)
        print(f"    DONE {kind} in {time.monotonic() - start:.1f}s")

    def _record_failure(self, exc: BaseException, what: str) -> None:
        self.failures += 1
        self.retry_after = getattr(exc, "retry_after", None)
        print(f"[error] {what} failed: {type(exc).__name__}: {exc}")
        traceback.print_exc()

    def failure_budget_exhausted(self) -> bool:
        limit = self.settings.max_total_failures
        return bool(limit) and self.failures >= limit

    def cooldown(self) -> float:
        """Recovery wait: the configured cooldown, or longer if the API asked for it."""
        return max(self.settings.recovery_cooldown, float(self.retry_after or 0))

    def recover(self) -> bool:
        """Cool down, then let collectors catch up on known records without discovery."""
        attempts = self.settings.max_recovery_attempts
        for attempt in range(1, attempts + 1):
            if self.failure_budget_exhausted():
                return False
            wait = self.cooldown()
            print(f"[recover] sleeping {wait:.0f}s before attempt {attempt}/{attempts}")
            self.sleep(wait)
            try:
                self.run_batch(discover=False)
                return True
            except Exception as exc:
                self._record_failure(exc, f"recovery attempt {attempt}/{attempts}")
        print("[recover] giving up on this iteration")
        return False

    def target_reached(self) -> bool:
        return self.store.valid_count > self.settings.target_count

    def run(self) -> int:
        """Run batches until the target, the batch cap, or the failure budget is hit.

        Returns a process exit code.
        """
        self.store.load()
        while True:
            if self.target_reached():
                print(f"[batch] {self.store.valid_count} valid records; target reached, stopping")
                self.store.flush()
                return 0
            if self.settings.max_batches and self.batches >= self.settings.max_batches:
                return 0 if not self.failures else 1

            self.batches += 1
            try:
                self.run_batch(discover=not self.settings.recover_only)
            except Exception as exc:
                self._record_failure(exc, f"batch {self.batches}")
                if not self.failure_budget_exhausted():
                    self.recover()
                if self.failure_budget_exhausted():
                    print(f"[error] {self.failures} failures this run; stopping")
                    return 1

            more = not self.settings.max_batches or self.batches < self.settings.max_batches
            if more and not self.target_reached():
                print(f"[batch] idle for {self.settings.batch_interval:.0f}s")
                self.sleep(self.settings.batch_interval)


def install_signal_handlers(store: RecordStore) -> Callable[[int, object], None]:
    """Flush the checkpoint and exit immediately on operator signals."""

    def handler(signum: int, frame: object) -> None:
        print(f"[signal] received {signal.Signals(signum).name}; flushing checkpoint")
        try:
            store.flush()
        finally:
            # In-flight requests are abandoned, not drained.
            os._exit(128 + signum)

    for name in FLUSH_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, handler)
    return handler


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the collection pipeline."""

    settings = resolve_settings(parse_args(argv))
    store = RecordStore(settings.checkpoint_path)
    install_signal_handlers(store)
    try:
        return BatchOrchestrator(store, settings).run()
    except BaseException:
        print("[error] unhandled fault; flushing checkpoint before exit")
        store.flush()
        raise


if __name__ == "__main__":
    sys.exit(main())
