"""Fan-out helpers: fire many independent network operations and wait for all."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, List, Optional, TypeVar

from .config import MAX_CONCURRENCY

T = TypeVar("T")


def pool_size(task_count: int) -> int:
    """One worker per task unless MAX_CONCURRENCY caps it."""
    size = max(1, task_count)
    if MAX_CONCURRENCY > 0:
        size = min(size, MAX_CONCURRENCY)
    return size


def run_all(func: Callable[[T], None], items: Iterable[T]) -> None:
    """Run `func` on every item concurrently.

    Every item is allowed to finish so that successful work is kept; the first
    failure (in completion order) is re-raised afterwards.
    """
    items = list(items)
    if not items:
        return
    first_error: Optional[BaseException] = None
    failures: List[BaseException] = []
    with ThreadPoolExecutor(max_workers=pool_size(len(items))) as executor:
        futures = [executor.submit(func, item) for item in items]
        for future in as_completed(futures):
            exc = future.exception()
            if exc is None:
                continue
            failures.append(exc)
            if first_error is None:
                first_error = exc
    if first_error is not None:
        if len(failures) > 1:
            print(f"[warn] {len(failures)} concurrent tasks failed; raising the first")
        raise first_error


__all__ = ["pool_size", "run_all"]
