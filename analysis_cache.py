import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Callable, Optional

from config import get_settings


@dataclass(frozen=True)
class AnalysisCacheEntry:
    summary_text: str
    record_count: int
    total_amount_cents: int
    computed_at: datetime
    stored_at: float

    def matches(self, record_count: int, total_amount_cents: int) -> bool:
        return (
            self.record_count == record_count
            and self.total_amount_cents == total_amount_cents
        )


class AnalysisCache:
    """Per-user coaching summaries keyed by a (count, total) fingerprint.

    The fingerprint is a heuristic: deleting one invoice and adding another
    with the same amount inside the window reads as "unchanged". Entries are
    evicted least-recently-used beyond ``max_entries`` and, when ``ttl_seconds``
    is positive, after that many seconds.
    """

    def __init__(
        self,
        max_entries: int = 1024,
        ttl_seconds: float = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, AnalysisCacheEntry]" = OrderedDict()
        self._user_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expired(self, entry: AnalysisCacheEntry) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return self._clock() - entry.stored_at >= self.ttl_seconds

    def get(self, user_id: str) -> Optional[AnalysisCacheEntry]:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            if self._expired(entry):
                del self._entries[user_id]
                return None
            self._entries.move_to_end(user_id)
            return entry

    def lookup(
        self, user_id: str, record_count: int, total_amount_cents: int
    ) -> Optional[str]:
        entry = self.get(user_id)
        if entry is None or not entry.matches(record_count, total_amount_cents):
            return None
        return entry.summary_text

    def put(
        self,
        user_id: str,
        summary_text: str,
        record_count: int,
        total_amount_cents: int,
    ) -> AnalysisCacheEntry:
        entry = AnalysisCacheEntry(
            summary_text=summary_text,
            record_count=record_count,
            total_amount_cents=total_amount_cents,
            computed_at=datetime.now(timezone.utc),
            stored_at=self._clock(),
        )
        with self._lock:
            self._entries[user_id] = entry
            self._entries.move_to_end(user_id)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                user_lock = self._user_locks.get(evicted)
                if user_lock is not None and not user_lock.locked():
                    del self._user_locks[evicted]
        return entry

    def lock_for(self, user_id: str) -> threading.Lock:
        with self._lock:
            user_lock = self._user_locks.get(user_id)
            if user_lock is None:
                if len(self._user_locks) >= 2 * self.max_entries:
                    self._prune_user_locks()
                user_lock = threading.Lock()
                self._user_locks[user_id] = user_lock
            return user_lock

    def _prune_user_locks(self) -> None:
        stale = [
            user_id
            for user_id, user_lock in self._user_locks.items()
            if user_id not in self._entries and not user_lock.locked()
        ]
        for user_id in stale:
            del self._user_locks[user_id]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._user_locks.clear()


@lru_cache(maxsize=1)
def get_analysis_cache() -> AnalysisCache:
    settings = get_settings()
    return AnalysisCache(
        max_entries=settings.analysis_cache_max_entries,
        ttl_seconds=settings.analysis_cache_ttl_secs,
    )
