"""Cache keys, records and sync-history rows shared by the store backends and the cache."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, NamedTuple

# ── Cache keys ────────────────────────────────────────────────────────────────

PLAYER        = "player"         # players table, keyed (id, shard)
PLAYER_NAME   = "player_name"    # players table, looked up by (name, shard)
SEASON_STATS  = "season_stats"   # player_season_stats, keyed (player_id, shard, season_id)

LIFETIME_SEASON = "lifetime"


class CacheKey(NamedTuple):
    kind:      str
    entity_id: str
    shard:     str
    secondary: str | None = None

    @classmethod
    def player(cls, account_id: str, shard: str) -> "CacheKey":
        return cls(PLAYER, account_id, shard)

    @classmethod
    def player_name(cls, name: str, shard: str) -> "CacheKey":
        return cls(PLAYER_NAME, name, shard)

    @classmethod
    def season_stats(cls, account_id: str, season_id: str, shard: str) -> "CacheKey":
        return cls(SEASON_STATS, account_id, shard, season_id)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(val) -> datetime | None:
    """Accept a datetime (psycopg2) or ISO string (Supabase) and return an aware datetime."""
    if val is None:
        return None
    if isinstance(val, datetime):
        dt = val
    else:
        dt = datetime.fromisoformat(str(val).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# ── Records ───────────────────────────────────────────────────────────────────


@dataclass
class CacheRecord:
    key:            CacheKey
    payload:        dict[str, Any]
    last_synced_at: datetime = field(default_factory=utcnow)
    name:           str | None = None

    @classmethod
    def for_player(cls, player: dict[str, Any], shard: str) -> "CacheRecord":
        return cls(
            key=CacheKey.player(player["id"], shard),
            payload=player,
            name=(player.get("attributes") or {}).get("name"),
        )


SYNC_PLAYER         = "player"
SYNC_SEASON_STATS   = "season_stats"
SYNC_LIFETIME_STATS = "lifetime_stats"

STATUS_SUCCESS = "success"
STATUS_FAILED  = "failed"


@dataclass(frozen=True)
class SyncHistoryEntry:
    subject_id:  str
    kind:        str
    outcome:     str
    detail:      str | None = None
    occurred_at: datetime = field(default_factory=utcnow)


def merge_relationships(existing: dict[str, Any] | None, incoming: dict[str, Any]) -> dict[str, Any]:
    """
    Return the document to store when `incoming` replaces `existing`.

    Top-level fields come from `incoming`. The `relationships` sub-document is
    merged key by key so locally added links (e.g. a clan annotation) survive a
    re-sync from the provider, which never returns them.
    """
    merged = dict(incoming)
    old_rel = (existing or {}).get("relationships")
    if isinstance(old_rel, dict):
        new_rel = incoming.get("relationships")
        merged["relationships"] = {**old_rel, **(new_rel if isinstance(new_rel, dict) else {})}
    return merged
