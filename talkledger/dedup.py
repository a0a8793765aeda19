import threading
import time
from collections.abc import Callable
from typing import Any

from loguru import logger


def fingerprint(record: Any) -> str:
    """date|type|CURRENCY|amount|note, from a Transaction or a plain dict."""
    data = record.model_dump() if hasattr(record, "model_dump") else dict(record)
    amount = float(data.get("amount") or 0)
    # Lossless, so 1234567 and 1234568 stay distinct
    amount_key = str(int(amount)) if amount.is_integer() else repr(amount)
    return "|".join([
        str(data.get("date") or ""),
        str(data.get("type") or "expense"),
        str(data.get("currency") or "").strip().upper(),
        amount_key,
        str(data.get("note") or "").strip().lower(),
    ])


class DedupGuard:
    """Per-user sliding window of recently written fingerprints."""

    def __init__(self, ttl_seconds: float = 120.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._buckets: dict[str, dict[str, float]] = {}
        self._lock = threading.Lock()

    def seen_recently(self, user_id: str, record: Any, ttl: float | None = None) -> bool:
        """True if the same record was seen inside the window; otherwise marks it."""
        ttl = self.ttl_seconds if ttl is None else ttl
        key = fingerprint(record)
        now = self.clock()
        with self._lock:
            bucket = self._buckets.setdefault(user_id, {})
            for stale in [fp for fp, seen_at in bucket.items() if now - seen_at >= ttl]:
                del bucket[stale]
            if key in bucket:
                logger.info("Duplicate write skipped for {}: {}", user_id, key)
                return True
            bucket[key] = now
            return False

    def forget(self, user_id: str, record: Any) -> None:
        """Unmark a record whose write failed, so a retry is not reported as a duplicate."""
        key = fingerprint(record)
        with self._lock:
            bucket = self._buckets.get(user_id)
            if bucket is None:
                return
            bucket.pop(key, None)
            if not bucket:
                del self._buckets[user_id]

    def prune(self) -> None:
        now = self.clock()
        with self._lock:
            for user_id in list(self._buckets):
                bucket = self._buckets[user_id]
                for stale in [fp for fp, seen_at in bucket.items() if now - seen_at >= self.ttl_seconds]:
                    del bucket[stale]
                if not bucket:
                    del self._buckets[user_id]

    def bucket_size(self, user_id: str) -> int:
        with self._lock:
            return len(self._buckets.get(user_id, {}))
