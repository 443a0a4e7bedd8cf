"""Local Postgres cache store using psycopg2. Used in Docker / TEST_MODE instead of Supabase."""

from __future__ import annotations

import os
from contextlib import contextmanager

import psycopg2
import psycopg2.extras

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


def _conn():
    return psycopg2.connect(os.environ["DATABASE_URL"])


@contextmanager
def _cursor():
    """Yield a dict cursor inside one committed transaction; failures become StoreError."""
    try:
        conn = _conn()
    except KeyError as exc:
        raise StoreError("DATABASE_URL is not set") from exc
    except psycopg2.Error as exc:
        raise StoreError(f"Local Postgres connection failed: {exc}") from exc

    try:
        with conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                yield cur
            conn.commit()
    except psycopg2.Error as exc:
        raise StoreError(f"Local Postgres query failed: {exc}") from exc


# ── Cache records ──────────────────────────────────────────────────────────────

def _player_record(row) -> CacheRecord:
    return CacheRecord(
        key=CacheKey.player(row["id"], row["shard"]),
        payload=row["data"] or {},
        last_synced_at=parse_timestamp(row["last_sync_at"]),
        name=row["name"],
    )


def _fetch_one(cur, key: CacheKey, lock: bool = False):
    suffix = " FOR UPDATE" if lock else ""
    if key.kind == PLAYER:
        cur.execute(
            "SELECT id, shard, name, data, last_sync_at FROM players "
            "WHERE id = %s AND shard = %s" + suffix,
            (key.entity_id, key.shard),
        )
    elif key.kind == PLAYER_NAME:
        cur.execute(
            "SELECT id, shard, name, data, last_sync_at FROM players "
            "WHERE name = %s AND shard = %s ORDER BY last_sync_at DESC LIMIT 1",
            (key.entity_id, key.shard),
        )
    elif key.kind == SEASON_STATS:
        cur.execute(
            "SELECT data, last_sync_at FROM player_season_stats "
            "WHERE player_id = %s AND season_id = %s AND shard = %s" + suffix,
            (key.entity_id, key.secondary, key.shard),
        )
    else:
        raise ValueError(f"Unknown cache key kind: {key.kind}")
    return cur.fetchone()


def get_by_key(key: CacheKey) -> CacheRecord | None:
    with _cursor() as cur:
        row = _fetch_one(cur, key)
    if row is None:
        return None
    if key.kind == SEASON_STATS:
        return CacheRecord(
            key=key,
            payload=row["data"] or {},
            last_synced_at=parse_timestamp(row["last_sync_at"]),
        )
    return _player_record(row)


def upsert(record: CacheRecord) -> CacheRecord:
    key = record.key
    now = utcnow()
    with _cursor() as cur:
        if key.kind not in (PLAYER, SEASON_STATS):
            raise ValueError(f"Cannot upsert cache key kind: {key.kind}")
        existing = _fetch_one(cur, key, lock=True)
        data = merge_relationships(existing["data"] if existing else None, record.payload)

        if key.kind == PLAYER:
            cur.execute(
                """
                INSERT INTO players (id, shard, name, data, last_sync_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (id, shard) DO UPDATE SET
                  name         = EXCLUDED.name,
                  data         = EXCLUDED.data,
                  last_sync_at = EXCLUDED.last_sync_at,
                  updated_at   = EXCLUDED.updated_at
                """,
                (key.entity_id, key.shard, record.name, psycopg2.extras.Json(data), now, now),
            )
        else:
            cur.execute(
                """
                INSERT INTO player_season_stats (player_id, season_id, shard, data, last_sync_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                ON CONFLICT (player_id, season_id, shard) DO UPDATE SET
                  data         = EXCLUDED.data,
                  last_sync_at = EXCLUDED.last_sync_at,
                  updated_at   = EXCLUDED.updated_at
                """,
                (key.entity_id, key.secondary, key.shard, psycopg2.extras.Json(data), now, now),
            )
    return CacheRecord(key=key, payload=data, last_synced_at=now, name=record.name)


# ── Sync history ───────────────────────────────────────────────────────────────

def add_sync_history(entry: SyncHistoryEntry) -> SyncHistoryEntry:
    with _cursor() as cur:
        cur.execute(
            """
            INSERT INTO sync_history (player_id, sync_type, status, details, created_at)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (entry.subject_id, entry.kind, entry.outcome, entry.detail, entry.occurred_at),
        )
    return entry


def get_last_sync_time(subject_id: str):
    """Most recent successful sync for a player, or None."""
    with _cursor() as cur:
        cur.execute(
            "SELECT MAX(created_at) AS last_sync FROM sync_history "
            "WHERE player_id = %s AND status = %s",
            (subject_id, STATUS_SUCCESS),
        )
        row = cur.fetchone()
    return parse_timestamp(row["last_sync"]) if row else None


def get_sync_history(subject_id: str, limit: int = 20) -> list[SyncHistoryEntry]:
    with _cursor() as cur:
        cur.execute(
            "SELECT player_id, sync_type, status, details, created_at FROM sync_history "
            "WHERE player_id = %s ORDER BY created_at DESC LIMIT %s",
            (subject_id, limit),
        )
        rows = cur.fetchall()
    return [
        SyncHistoryEntry(
            subject_id=r["player_id"],
            kind=r["sync_type"],
            outcome=r["status"],
            detail=r["details"],
            occurred_at=parse_timestamp(r["created_at"]),
        )
        for r in rows
    ]
