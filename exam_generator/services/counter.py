"""Persistent download counter used for sequential PDF filenames.

The counter file holds ``{"count": n}``. Increments are serialized by an
in-process lock plus an exclusive flock on a sibling lock file, so neither
threads nor worker processes can hand out the same number twice.
"""

import fcntl
import json
import logging
import os
import threading
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


def _atomic_write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + f".{uuid.uuid4().hex}.tmp")
    try:
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        tmp.replace(path)
    finally:
        tmp.unlink(missing_ok=True)


class DownloadCounter:
    """Monotonically increasing integer persisted across restarts."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.lock_path = self.path.with_name(f".{self.path.name}.lock")
        self._lock = threading.Lock()

    def _read(self) -> int:
        if not self.path.exists():
            return 0
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Corrupt counter file {self.path}, restarting at 1: {e}")
            return 0
        count = data.get("count") if isinstance(data, dict) else None
        return count if isinstance(count, int) and count >= 0 else 0

    def current(self) -> int:
        with self._lock:
            return self._read()

    def next_value(self) -> int:
        """Increment and persist; returns the new value."""
        with self._lock:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            lock_fd = os.open(str(self.lock_path), os.O_WRONLY | os.O_CREAT)
            try:
                fcntl.flock(lock_fd, fcntl.LOCK_EX)
                value = self._read() + 1
                _atomic_write_json(self.path, {"count": value})
                return value
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
                os.close(lock_fd)


_counters: dict[Path, DownloadCounter] = {}
_counters_lock = threading.Lock()


def get_counter(path: Path) -> DownloadCounter:
    """One counter instance per file so the in-process lock is shared."""
    key = Path(path).resolve()
    with _counters_lock:
        if key not in _counters:
            _counters[key] = DownloadCounter(key)
        return _counters[key]
