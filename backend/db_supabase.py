"""Supabase cache store: players, player season stats and sync history."""

from __future__ import annotations

import os

from supabase import create_client, Client

from errors import StoreError
from models import (
    PLAYER,
    PLAYER_NAME,
    SEASON_STATS,
    STATUS_SUCCESS,
    CacheKey,
    CacheRecord,
    SyncHistoryEntry,
    merge_relationships,
    parse_timestamp,
    utcnow,
)


def _client() -> Client:
    url = os.getenv("SUPABASE_URL", "")
    key = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    return create_client(url, key)


def _execute(build_query):
    """Run a query built against a fresh client, surfacing any failure as StoreError."""
    try:
        return build_query(_client()).execute()
    except Exception as exc:
        raise StoreError(f"Supabase query failed: {exc}") from exc


# ── Cache records ──────────────────────────────────────────────────────────────

def _player_record(row: dict, shard: str) -> CacheRecord:
    return CacheRecord(
        key=CacheKey.player(row["id"], row.get("shard") or shard),
        payload=row.get("data") or {},
        last_synced_at=parse_timestamp(row.get("last_sync_at")),
        name=row.get("name"),
    )


def get_by_key(key: CacheKey) -> CacheRecord | None:
    if key.kind == PLAYER:
        result = _execute(lambda sb: (
            sb.table("players").select("*")
            .eq("id", key.entity_id).eq("shard", key.shard).limit(1)
        ))
        return _player_record(result.data[0], key.shard) if result.data else None

    if key.kind == PLAYER_NAME:
        result = _execute(lambda sb: (
            sb.table("players").select("*")
            .eq("name", key.entity_id).eq("shard", key.shard)
            .order("last_sync_at", desc=True).limit(1)
        ))
        return _player_record(result.data[0], key.shard) if result.data else None

    if key.kind == SEASON_STATS:
        result = _execute(lambda sb: (
            sb.table("player_season_stats").select("*")
            .eq("player_id", key.entity_id)
            .eq("season_id", key.secondary)
            .eq("shard", key.shard)
            .limit(1)
        ))
        if not result.data:
            return None
        row = result.data[0]
        return CacheRecord(
            key=key,
            payload=row.get("data") or {},
            last_synced_at=parse_timestamp(row.get("last_sync_at")),
        )

    raise ValueError(f"Unknown cache key kind: {key.kind}")


def upsert(record: CacheRecord) -> CacheRecord:
    key = record.key
    now = utcnow()

    if key.kind == PLAYER:
        existing = get_by_key(key)
        data = merge_relationships(existing.payload if existing else None, record.payload)
        _execute(lambda sb: sb.table("players").upsert(
            {
                "id":           key.entity_id,
                "shard":        key.shard,
                "name":         record.name,
                "data":         data,
                "last_sync_at": now.isoformat(),
                "updated_at":   now.isoformat(),
            },
            on_conflict="id,shard",
        ))
        return CacheRecord(key=key, payload=data, last_synced_at=now, name=record.name)

    if key.kind == SEASON_STATS:
        existing = get_by_key(key)
        data = merge_relationships(existing.payload if existing else None, record.payload)
        _execute(lambda sb: sb.table("player_season_stats").upsert(
            {
                "player_id":    key.entity_id,
                "season_id":    key.secondary,
                "shard":        key.shard,
                "data":         data,
                "last_sync_at": now.isoformat(),
                "updated_at":   now.isoformat(),
            },
            on_conflict="player_id,season_id,shard",
        ))
        return CacheRecord(key=key, payload=data, last_synced_at=now)

    raise ValueError(f"Cannot upsert cache key kind: {key.kind}")


# ── Sync history ───────────────────────────────────────────────────────────────

def add_sync_history(entry: SyncHistoryEntry) -> SyncHistoryEntry:
    _execute(lambda sb: sb.table("sync_history").insert({
        "player_id":  entry.subject_id,
        "sync_type":  entry.kind,
        "status":     entry.outcome,
        "details":    entry.detail,
        "created_at": entry.occurred_at.isoformat(),
    }))
    return entry


def get_last_sync_time(subject_id: str):
    """Most recent successful sync for a player, or None."""
    result = _execute(lambda sb: (
        sb.table("sync_history")
        .select("created_at")
        .eq("player_id", subject_id)
        .eq("status", STATUS_SUCCESS)
        .order("created_at", desc=True)
        .limit(1)
    ))
    if not result.data:
        return None
    return parse_timestamp(result.data[0]["created_at"])


def get_sync_history(subject_id: str, limit: int = 20) -> list[SyncHistoryEntry]:
    result = _execute(lambda sb: (
        sb.table("sync_history")
        .select("*")
        .eq("player_id", subject_id)
        .order("created_at", desc=True)
        .limit(limit)
    ))
    return [
        SyncHistoryEntry(
            subject_id=row["player_id"],
            kind=row["sync_type"],
            outcome=row["status"],
            detail=row.get("details"),
            occurred_at=parse_timestamp(row["created_at"]),
        )
        for row in (result.data or [])
    ]
