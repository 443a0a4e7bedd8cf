"""Read-through / write-through cache over the DB layer, with sync-history bookkeeping."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from errors import PubgStatsError, StoreError
from models import (
    STATUS_FAILED,
    STATUS_SUCCESS,
    SYNC_PLAYER,
    CacheKey,
    CacheRecord,
    SyncHistoryEntry,
    utcnow,
)
from rate_limit import SyncRateLimiter

logger = logging.getLogger(__name__)

Payload = dict[str, Any]
RemoteFetch = Callable[[], Payload]
ToRecord = Callable[[Payload], CacheRecord]


class ReadThroughCache:
    """
    Sits between the service and a store (the `db` module or anything with the
    same functions). Store failures never reach the caller: a failed read is a
    miss and a failed write is logged, the fresh payload is still returned.
    Provider failures always propagate and nothing is written for them.
    """

    def __init__(
        self,
        store,
        limiter: SyncRateLimiter | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.clock = clock
        self.limiter = limiter or SyncRateLimiter(store, clock=clock)

    # ── Store access (errors swallowed) ───────────────────────────────────────

    def lookup(self, key: CacheKey) -> CacheRecord | None:
        try:
            return self.store.get_by_key(key)
        except StoreError as exc:
            logger.warning("Cache read failed for %s, treating as miss: %s", key, exc)
            return None

    def persist(self, record: CacheRecord) -> CacheRecord | None:
        record.last_synced_at = self.clock()
        try:
            return self.store.upsert(record)
        except StoreError as exc:
            logger.warning("Cache write-back failed for %s: %s", record.key, exc)
            return None

    def record_sync(self, subject_id: str, kind: str, outcome: str, detail: str | None = None) -> None:
        entry = SyncHistoryEntry(
            subject_id=subject_id,
            kind=kind,
            outcome=outcome,
            detail=detail,
            occurred_at=self.clock(),
        )
        try:
            self.store.add_sync_history(entry)
        except StoreError as exc:
            logger.warning("Could not record %s sync for %s: %s", outcome, subject_id, exc)

    # ── Read-through ─────────────────────────────────────────────────────────

    def resolve(
        self,
        key: CacheKey,
        remote_fetch: RemoteFetch,
        to_record: ToRecord | None = None,
        sync_kind: str = SYNC_PLAYER,
    ) -> tuple[Payload, bool]:
        """
        Return `(payload, served_from_cache)`.

        `to_record` builds the record to write back from the fresh payload; it is
        needed when the lookup key is not the storage key (player-by-name).
        """
        cached = self.lookup(key)
        if cached is not None:
            logger.debug("Cache hit for %s", key)
            return cached.payload, True

        logger.debug("Cache miss for %s, calling provider", key)
        payload = remote_fetch()
        record = to_record(payload) if to_record else CacheRecord(key=key, payload=payload)
        self.persist(record)
        self.record_sync(record.key.entity_id, sync_kind, STATUS_SUCCESS)
        return payload, False

    # ── Write-through ────────────────────────────────────────────────────────

    def refresh(
        self,
        key: CacheKey,
        remote_fetch: RemoteFetch,
        to_record: ToRecord | None = None,
        sync_kind: str = SYNC_PLAYER,
        detail: str | None = None,
    ) -> Payload:
        """Always call the provider, write back and log the attempt. Not rate limited."""
        try:
            payload = remote_fetch()
        except PubgStatsError as exc:
            self.record_sync(key.entity_id, sync_kind, STATUS_FAILED, f"Error: {exc}")
            raise
        record = to_record(payload) if to_record else CacheRecord(key=key, payload=payload)
        self.persist(record)
        self.record_sync(record.key.entity_id, sync_kind, STATUS_SUCCESS, detail)
        return payload

    def force_sync(
        self,
        key: CacheKey,
        remote_fetch: RemoteFetch,
        to_record: ToRecord | None = None,
        sync_kind: str = SYNC_PLAYER,
    ) -> Payload:
        """`refresh` behind the per-subject cooldown; raises RateLimited when too soon."""
        with self.limiter.admit(key.entity_id):
            return self.refresh(key, remote_fetch, to_record, sync_kind)
