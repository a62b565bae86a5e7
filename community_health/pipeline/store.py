"""Record store: the checkpoint of every repository discovered so far."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence

from community_health.records import RepositoryRecord


def write_text_atomic(path: str | Path, text: str) -> None:
    """Replace `path` with `text` so a crash leaves either the old or the new file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def save_json(path: str | Path, data: Any) -> None:
    """Write JSON atomically using UTF-8 and deterministic formatting."""
    write_text_atomic(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def merge(existing: Iterable[RepositoryRecord],
          discovered: Iterable[RepositoryRecord]) -> List[RepositoryRecord]:
    """Deduplicate by identity, keeping the first occurrence.

    Existing records come first, so attributes collected in earlier runs are
    never replaced by a bare discovery snapshot.
    """
    seen = set()
    merged: List[RepositoryRecord] = []
    for source in (existing, discovered):
        for record in source:
            if record.identity in seen:
                continue
            seen.add(record.identity)
            merged.append(record)
    return merged


class RecordStore:
    """In-memory record list backed by a JSON checkpoint file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.records: List[RepositoryRecord] = []
        self.loaded = False
        self._lock = threading.RLock()

    def load(self) -> List[RepositoryRecord]:
        """Read the checkpoint; a missing file is a cold start.

        An unreadable checkpoint raises instead of starting empty, since the
        next flush would otherwise overwrite it.
        """
        with self._lock:
            self._remove_stale_temp_files()
            if not self.path.exists():
                print(f"[checkpoint] no checkpoint at {self.path}; cold start")
                self.records = []
            else:
                with self.path.open("r", encoding="utf-8") as handle:
                    data = json.load(handle)
                if not isinstance(data, list):
                    raise ValueError(f"checkpoint {self.path} does not hold a list of records")
                self.records = merge([RepositoryRecord.from_dict(entry) for entry in data], [])
                print(f"[checkpoint] loaded {len(self.records)} records from {self.path}")
            self.loaded = True
            return self.records

    def _remove_stale_temp_files(self) -> None:
        """Delete temp files a write interrupted by os._exit left next to the checkpoint."""
        if not self.path.parent.is_dir():
            return
        for stale in self.path.parent.glob(f".{self.path.name}.*.tmp"):
            print(f"[checkpoint] removing stale temp file {stale}")
            stale.unlink(missing_ok=True)

    def merge_discovered(self, discovered: Sequence[RepositoryRecord]) -> int:
        """Fold a discovery page into the store; return how many records were new."""
        with self._lock:
            before = len(self.records)
            self.records = merge(self.records, discovered)
            added = len(self.records) - before
        print(f"[checkpoint] merged discovery page: {added} new, {len(discovered) - added} already known")
        return added

    def filter_invalid(self) -> int:
        """Drop records without a contributor count; return how many were dropped."""
        with self._lock:
            kept = [record for record in self.records if record.has("contributor_count")]
            dropped = len(self.records) - len(kept)
            self.records = kept
        if dropped:
            print(f"[checkpoint] dropped {dropped} records without a contributor count")
        return dropped

    @property
    def valid_count(self) -> int:
        return sum(1 for record in self.records if record.has("contributor_count"))

    def persist(self, records: Optional[Sequence[RepositoryRecord]] = None) -> None:
        with self._lock:
            records = self.records if records is None else records
            save_json(self.path, [record.to_dict() for record in records])
        print(f"[checkpoint] saved {len(records)} records to {self.path}")

    def flush(self) -> None:
        """Persist the in-memory state; a no-op until a checkpoint has been loaded."""
        if not self.loaded:
            print("[checkpoint] nothing loaded yet; skipping flush")
            return
        self.persist()


__all__ = ["write_text_atomic", "save_json", "merge", "RecordStore"]
