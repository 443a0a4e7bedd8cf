"""Per-player sync cooldown, computed from the latest successful sync-history row."""

from __future__ import annotations

import logging
import math
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator

from config import SYNC_COOLDOWN_SECONDS
from errors import RateLimited, StoreError
from models import utcnow

logger = logging.getLogger(__name__)


class SyncRateLimiter:
    """
    `store` only needs `get_last_sync_time(subject_id)`.

    `admit()` holds a per-subject lock from the cooldown check until the caller's
    block finishes writing its sync-history row, so two forced syncs of the same
    player cannot both pass the check. Different players never share a lock.
    """

    def __init__(
        self,
        store,
        cooldown: timedelta = timedelta(seconds=SYNC_COOLDOWN_SECONDS),
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.cooldown = cooldown
        self.clock = clock
        # subject -> [lock, number of callers holding or waiting on it]
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _subject_lock(self, subject_id: str) -> Iterator[None]:
        """Hold `subject_id`'s lock; the entry is dropped once nobody holds or waits on it."""
        with self._locks_guard:
            entry = self._locks.get(subject_id)
            if entry is None:
                entry = self._locks[subject_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[subject_id]

    def _elapsed_seconds(self, subject_id: str) -> float | None:
        try:
            last_sync = self.store.get_last_sync_time(subject_id)
        except StoreError as exc:
            logger.warning("Could not read sync history for %s, allowing sync: %s", subject_id, exc)
            return None
        if last_sync is None:
            return None
        return (self.clock() - last_sync).total_seconds()

    def can_sync(self, subject_id: str) -> bool:
        elapsed = self._elapsed_seconds(subject_id)
        return elapsed is None or elapsed >= self.cooldown.total_seconds()

    def retry_after(self, subject_id: str) -> int:
        """Seconds until the cooldown ends; 0 when a sync is allowed now."""
        elapsed = self._elapsed_seconds(subject_id)
        cooldown = self.cooldown.total_seconds()
        if elapsed is None:
            return 0
        if elapsed < 0:
            return int(cooldown)
        return max(0, math.ceil(cooldown - elapsed))

    @contextmanager
    def admit(self, subject_id: str) -> Iterator[None]:
        """Run the block only when `subject_id` is out of cooldown, else raise RateLimited."""
        with self._subject_lock(subject_id):
            wait = self.retry_after(subject_id)
            if wait > 0:
                logger.info("Sync rejected for %s, cooldown active for %ds", subject_id, wait)
                raise RateLimited(wait)
            yield
