"""
Pytest configuration and shared fixtures.

Nothing here talks to the network or a database: the PUBG API is replaced by
FakePubgClient and the cache store by InMemoryStore, which implements the same
functions as db_local / db_supabase.

TEST_MODE=1 is set here so db.py routes to db_local and the dev routes mount.
"""

import os

# ── Must be set BEFORE any app imports ────────────────────────────────────────
os.environ.setdefault("TEST_MODE", "1")
os.environ.setdefault("DATABASE_URL", "postgresql://postgres:postgres@db:5432/pubg_dev")
os.environ.setdefault("PUBG_OPEN_API_KEY", "test-key-0123456789")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from cache import ReadThroughCache
from config import PubgApiConfig
from errors import RemoteError, StoreError
from models import (
    PLAYER,
    PLAYER_NAME,
    SEASON_STATS,
    STATUS_SUCCESS,
    CacheKey,
    CacheRecord,
    merge_relationships,
)
from service import PubgStatsService

# Import app after env vars are set
from main import app, get_service

SHROUD_ID = "account.d50fdc18fcad49c691d38466bed6f8fd"
SEASON_OLD = "division.bro.official.pc-2018-29"
SEASON_NEW = "division.bro.official.pc-2018-30"


# ── Fakes ─────────────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryStore:
    """Dict-backed cache store with switches to simulate an unhealthy database."""

    def __init__(self):
        self.players: dict[tuple, CacheRecord] = {}
        self.season_stats: dict[tuple, CacheRecord] = {}
        self.history: list = []
        self.fail_reads = False
        self.fail_writes = False
        self.upserts = 0

    def get_by_key(self, key: CacheKey):
        if self.fail_reads:
            raise StoreError("database unavailable")
        if key.kind == PLAYER:
            return self.players.get((key.entity_id, key.shard))
        if key.kind == PLAYER_NAME:
            for record in self.players.values():
                if record.name == key.entity_id and record.key.shard == key.shard:
                    return record
            return None
        if key.kind == SEASON_STATS:
            return self.season_stats.get((key.entity_id, key.secondary, key.shard))
        raise ValueError(key.kind)

    def upsert(self, record: CacheRecord):
        if self.fail_writes:
            raise StoreError("database unavailable")
        self.upserts += 1
        key = record.key
        table, store_key = (
            (self.players, (key.entity_id, key.shard))
            if key.kind == PLAYER
            else (self.season_stats, (key.entity_id, key.secondary, key.shard))
        )
        existing = table.get(store_key)
        stored = CacheRecord(
            key=key,
            payload=merge_relationships(existing.payload if existing else None, record.payload),
            last_synced_at=record.last_synced_at,
            name=record.name,
        )
        table[store_key] = stored
        return stored

    def add_sync_history(self, entry):
        if self.fail_writes:
            raise StoreError("database unavailable")
        self.history.append(entry)
        return entry

    def get_last_sync_time(self, subject_id):
        if self.fail_reads:
            raise StoreError("database unavailable")
        times = [
            e.occurred_at for e in self.history
            if e.subject_id == subject_id and e.outcome == STATUS_SUCCESS
        ]
        return max(times) if times else None

    def get_sync_history(self, subject_id, limit=20):
        entries = [e for e in self.history if e.subject_id == subject_id]
        return sorted(entries, key=lambda e: e.occurred_at, reverse=True)[:limit]


def make_player(account_id: str, name: str, match_ids=()) -> dict:
    return {
        "type": "player",
        "id": account_id,
        "attributes": {"name": name, "shardId": "steam", "titleId": "pubg", "stats": None},
        "relationships": {
            "assets": {"data": []},
            "matches": {"data": [{"type": "match", "id": m} for m in match_ids]},
        },
        "links": {"self": f"https://api.pubg.com/shards/steam/players/{account_id}"},
    }


def make_season(season_id: str, current: bool = False) -> dict:
    return {
        "type": "season",
        "id": season_id,
        "attributes": {"isCurrentSeason": current, "isOffseason": False},
    }


def make_stats(account_id: str, season_id: str, kills: int = 10) -> dict:
    return {
        "type": "playerSeason",
        "attributes": {"gameModeStats": {"squad-fpp": {"kills": kills, "wins": 1, "roundsPlayed": 20}}},
        "relationships": {
            "player": {"data": {"type": "player", "id": account_id}},
            "season": {"data": {"type": "season", "id": season_id}},
        },
    }


class FakePubgClient:
    """Stands in for PubgApiClient; records every call as (method, args)."""

    def __init__(self):
        self.config = PubgApiConfig(api_key="test-key-0123456789", match_batch_size=5)
        self.calls: list[tuple] = []
        self.players: dict[str, dict] = {}
        self.seasons: list[dict] = []
        self.stats: dict[tuple, dict] = {}
        self.matches: dict[str, dict] = {}
        self.clans: dict[str, dict] = {}
        self.errors: dict[str, Exception] = {}

    def _record(self, method, *args):
        self.calls.append((method, *args))
        if method in self.errors:
            raise self.errors[method]

    def count(self, method: str) -> int:
        return sum(1 for call in self.calls if call[0] == method)

    def get_players_by_names(self, names, shard=None):
        self._record("get_players_by_names", tuple(names), shard)
        found = [p for p in self.players.values() if p["attributes"]["name"] in names]
        if not found:
            raise RemoteError(404, "Not Found - No Players Found Matching Criteria")
        return {"data": found}

    def get_players_by_ids(self, account_ids, shard=None):
        self._record("get_players_by_ids", tuple(account_ids), shard)
        return {"data": [self.players[i] for i in account_ids if i in self.players]}

    def get_player(self, account_id, shard=None):
        self._record("get_player", account_id, shard)
        if account_id not in self.players:
            raise RemoteError(404, "Not Found")
        return {"data": self.players[account_id]}

    def get_seasons(self, shard=None):
        self._record("get_seasons", shard)
        return {"data": list(self.seasons)}

    def get_player_season_stats(self, account_id, season_id, shard=None):
        self._record("get_player_season_stats", account_id, season_id, shard)
        if (account_id, season_id) not in self.stats:
            raise RemoteError(404, "Not Found")
        return {"data": self.stats[(account_id, season_id)]}

    def get_match(self, match_id, shard=None):
        self._record("get_match", match_id, shard)
        if match_id not in self.matches:
            raise RemoteError(404, f"match {match_id} not found")
        return self.matches[match_id]

    def get_clan(self, clan_id, shard=None):
        self._record("get_clan", clan_id, shard)
        if clan_id not in self.clans:
            raise RemoteError(404, "Not Found")
        return self.clans[clan_id]

    def get_weapon_mastery(self, account_id, shard=None):
        self._record("get_weapon_mastery", account_id, shard)
        return {"data": {"type": "weaponMasterySummary", "id": account_id}}

    def get_survival_mastery(self, account_id, shard=None):
        self._record("get_survival_mastery", account_id, shard)
        return {"data": {"type": "survivalMasterySummary", "id": account_id}}

    def get_leaderboard(self, game_mode, shard=None):
        self._record("get_leaderboard", game_mode, shard)
        return {"data": {"type": "leaderboard", "attributes": {"gameMode": game_mode}}}


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache(store, clock):
    return ReadThroughCache(store, clock=clock)


@pytest.fixture
def pubg():
    """Fake provider seeded with one player, two seasons and their stats."""
    fake = FakePubgClient()
    fake.players[SHROUD_ID] = make_player(SHROUD_ID, "shroud", match_ids=[f"m{i}" for i in range(7)])
    fake.seasons = [make_season(SEASON_OLD), make_season(SEASON_NEW, current=True)]
    fake.stats[(SHROUD_ID, SEASON_NEW)] = make_stats(SHROUD_ID, SEASON_NEW, kills=42)
    fake.stats[(SHROUD_ID, SEASON_OLD)] = make_stats(SHROUD_ID, SEASON_OLD, kills=7)
    fake.stats[(SHROUD_ID, "lifetime")] = make_stats(SHROUD_ID, "lifetime", kills=9000)
    for i in range(7):
        fake.matches[f"m{i}"] = {"data": {"type": "match", "id": f"m{i}"}, "included": []}
    return fake


@pytest.fixture
def service(pubg, cache):
    return PubgStatsService(pubg, cache)


@pytest.fixture
def client(service):
    """TestClient wired to the fake-backed service."""
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()
