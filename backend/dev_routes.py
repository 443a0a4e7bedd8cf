"""
Dev-only FastAPI router, mounted only when TEST_MODE=1.

Endpoints:
  GET  /dev/cache/players/{account_id}              Cached player row, if any
  GET  /dev/cache/players/{account_id}/seasons/{id} Cached season stats row, if any
  GET  /dev/sync-history/{account_id}               Latest sync attempts and cooldown state
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query
from fastapi.concurrency import run_in_threadpool

import db
from config import DEFAULT_SHARD
from models import CacheKey
from rate_limit import SyncRateLimiter

router = APIRouter(prefix="/dev", tags=["dev (TEST_MODE only)"])


def _record_json(record) -> dict:
    return {
        "key":          record.key._asdict(),
        "name":         record.name,
        "lastSyncedAt": record.last_synced_at.isoformat() if record.last_synced_at else None,
        "data":         record.payload,
    }


@router.get("/cache/players/{account_id}", summary="Show the cached player row")
async def cached_player(account_id: str, shard: str = Query(default=DEFAULT_SHARD)):
    record = await run_in_threadpool(db.get_by_key, CacheKey.player(account_id, shard))
    if record is None:
        raise HTTPException(status_code=404, detail=f"Player {account_id} is not cached on {shard}")
    return _record_json(record)


@router.get("/cache/players/{account_id}/seasons/{season_id}", summary="Show a cached season stats row")
async def cached_season_stats(account_id: str, season_id: str, shard: str = Query(default=DEFAULT_SHARD)):
    record = await run_in_threadpool(
        db.get_by_key, CacheKey.season_stats(account_id, season_id, shard)
    )
    if record is None:
        raise HTTPException(status_code=404, detail="Season stats are not cached")
    return _record_json(record)


@router.get("/sync-history/{account_id}", summary="Show recent sync attempts for a player")
async def sync_history(account_id: str, limit: int = Query(default=20, ge=1, le=200)):
    """
    Lists the newest sync-history rows and whether a forced sync would be
    accepted right now (cooldown is 5 minutes).
    """
    entries = await run_in_threadpool(db.get_sync_history, account_id, limit)
    retry_after = await run_in_threadpool(SyncRateLimiter(db).retry_after, account_id)
    return {
        "accountId":  account_id,
        "canSync":    retry_after == 0,
        "retryAfter": retry_after,
        "entries": [
            {
                "kind":       e.kind,
                "outcome":    e.outcome,
                "detail":     e.detail,
                "occurredAt": e.occurred_at.isoformat(),
            }
            for e in entries
        ],
    }
