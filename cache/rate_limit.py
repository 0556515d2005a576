"""
cache/rate_limit.py -- File-backed fixed-window request counter.

One JSON file per limiter key: {"count": <int>, "timestamp": <unix seconds>}.
timestamp is when the current window opened. The file name is a sanitized
prefix of the key followed by its SHA-256, so distinct keys never share a
record.

Semantics (fixed window, reset on expiry -- not a sliding window, not a
token bucket):
  - no record, or window older than window_seconds  -> new window, count=1, allow
  - inside the window and count < max_requests      -> count += 1, allow
  - inside the window and count >= max_requests     -> deny, record untouched
A client can therefore spend max_requests at the very end of one window and
max_requests again right after it resets. Callers rely on that coarse
behaviour; do not replace it with a smoother algorithm.

Concurrency: the read-modify-write is NOT locked. Two requests for the same
key can read the same count and both write count+1 (lost update), letting a
few extra requests through under contention. Writes go through a temp file
and os.replace, so a reader never sees a half-written record.

Usage:
    limiter = FileRateLimiter(Path("cache"))
    if not limiter.check_and_consume("ip_203.0.113.9", max_requests=100, window_seconds=3600):
        ...  # 429
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from pathlib import Path

from core.validation import sanitize_filename

logger = logging.getLogger("nemesis.ratelimit")

_DIR_MODE = 0o755
_PREFIX_LEN = 40


class FileRateLimiter:
    def __init__(self, directory: Path | str, clock: Callable[[], float] = time.time) -> None:
        self.directory = Path(directory)
        self._clock = clock

    def _path_for(self, key: str) -> Path:
        """One file per distinct key: a readable prefix plus a digest of the raw key."""
        prefix = sanitize_filename(key)[:_PREFIX_LEN]
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        name = f"rate_limit_{prefix}_{digest}" if prefix else f"rate_limit_{digest}"
        return self.directory / f"{name}.json"

    def _read(self, path: Path) -> dict | None:
        """Return the record, or None if absent or unreadable.

        A corrupt record is treated like a missing one: the next call opens a
        fresh window and overwrites it.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable rate limit record %s", path.name)
            return None
        if not isinstance(data, dict):
            return None
        count, timestamp = data.get("count"), data.get("timestamp")
        if not isinstance(count, int) or not isinstance(timestamp, (int, float)):
            return None
        return {"count": count, "timestamp": timestamp}

    def _write(self, path: Path, record: dict) -> None:
        self.directory.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".rl_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(record, fh)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def check_and_consume(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Count one request against key. Returns True if it is allowed."""
        path = self._path_for(key)
        now = int(self._clock())
        record = self._read(path)

        if record is None or now - record["timestamp"] >= window_seconds:
            self._write(path, {"count": 1, "timestamp": now})
            return True

        if record["count"] >= max_requests:
            return False

        record["count"] += 1
        self._write(path, record)
        return True

    def retry_after(self, key: str, window_seconds: int) -> int:
        """Seconds until the key's current window resets (0 if none is open)."""
        record = self._read(self._path_for(key))
        if record is None:
            return 0
        return max(0, int(record["timestamp"] + window_seconds - self._clock()))

    def reset(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)
