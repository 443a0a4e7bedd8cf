"""PUBG stats service: the operations the HTTP layer calls, wired over the client and the cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from batch import fetch_all
from cache import ReadThroughCache
from errors import NotFoundError, ParseError, PubgStatsError, RemoteError
from models import (
    LIFETIME_SEASON,
    SYNC_LIFETIME_STATS,
    SYNC_PLAYER,
    SYNC_SEASON_STATS,
    CacheKey,
    CacheRecord,
    utcnow,
)
from pubg_client import PubgApiClient
from seasons import CURRENT, resolve_season, sort_seasons

logger = logging.getLogger(__name__)

Document = dict[str, Any]

CLAN_MEMBER_GROUP_SIZE = 10


@dataclass
class StatsResult:
    stats:      Document
    season_id:  str
    from_cache: bool
    season:     Document | None = None


@dataclass
class SyncResult:
    player:       Document
    season_stats: Document | None
    season_id:    str | None
    synced_at:    datetime = field(default_factory=utcnow)


def _not_found_on_404(what: str, call: Callable[[], Document]) -> Document:
    """Run a provider call, turning its 404 into NotFoundError."""
    try:
        return call()
    except RemoteError as exc:
        if exc.status_code == 404:
            raise NotFoundError(f"{what} not found") from exc
        raise


def _data(doc: Document, what: str) -> Document:
    """The `data` object of a provider envelope; anything else is a ParseError."""
    data = doc.get("data")
    if not isinstance(data, dict):
        raise ParseError(f"{what}: response has no `data` object")
    return data


class PubgStatsService:
    def __init__(self, client: PubgApiClient, cache: ReadThroughCache) -> None:
        self.client = client
        self.cache = cache

    def _shard(self, shard: str | None) -> str:
        return shard or self.client.config.default_shard

    # ── Players ───────────────────────────────────────────────────────────────

    def search_player_by_name(self, name: str, shard: str | None = None) -> tuple[Document, bool]:
        """Return `(player, from_cache)`; the player is cached under its (id, shard)."""
        name = (name or "").strip()
        if not name:
            raise ValueError("Player name is required")
        shard = self._shard(shard)

        def fetch() -> Document:
            doc = _not_found_on_404(
                f"Player '{name}'", lambda: self.client.get_players_by_names([name], shard)
            )
            players = doc.get("data") or []
            if not isinstance(players, list):
                raise ParseError(f"Player search for '{name}': `data` is not a list")
            if not players:
                raise NotFoundError(f"Player '{name}' not found")
            if not isinstance(players[0], dict) or "id" not in players[0]:
                raise ParseError(f"Player search for '{name}': player has no id")
            return players[0]

        return self.cache.resolve(
            CacheKey.player_name(name, shard),
            fetch,
            to_record=lambda player: CacheRecord.for_player(player, shard),
            sync_kind=SYNC_PLAYER,
        )

    def get_player(self, account_id: str, shard: str | None = None) -> Document:
        """Always fresh from the provider; match lists go stale too quickly to cache."""
        doc = _not_found_on_404(
            f"Player {account_id}", lambda: self.client.get_player(account_id, self._shard(shard))
        )
        return _data(doc, f"Player {account_id}")

    # ── Seasons ───────────────────────────────────────────────────────────────

    def get_seasons(self, shard: str | None = None) -> list[Document]:
        doc = self.client.get_seasons(self._shard(shard))
        return sort_seasons(doc.get("data") or [])

    def get_current_season(self, shard: str | None = None) -> Document:
        return resolve_season(self.get_seasons(shard), CURRENT)

    def _fetch_stats(self, account_id: str, season_id: str, shard: str) -> Document:
        doc = _not_found_on_404(
            f"Stats for player {account_id} in season {season_id}",
            lambda: self.client.get_player_season_stats(account_id, season_id, shard),
        )
        return _data(doc, f"Stats for player {account_id} in season {season_id}")

    def get_season_stats(
        self, account_id: str, season_or_current: str = CURRENT, shard: str | None = None
    ) -> StatsResult:
        """
        Stats for one season, read through the cache.

        `season_or_current` is an explicit season id, "current" (resolved against
        the season list on every call) or "lifetime".
        """
        shard = self._shard(shard)

        if season_or_current == LIFETIME_SEASON:
            stats, from_cache = self.cache.resolve(
                CacheKey.season_stats(account_id, LIFETIME_SEASON, shard),
                lambda: self._fetch_stats(account_id, LIFETIME_SEASON, shard),
                sync_kind=SYNC_LIFETIME_STATS,
            )
            return StatsResult(stats, LIFETIME_SEASON, from_cache)

        if season_or_current == CURRENT:
            season = self.get_current_season(shard)
            stats, from_cache = self.cache.resolve(
                CacheKey.season_stats(account_id, season["id"], shard),
                lambda: self._fetch_stats(account_id, season["id"], shard),
                sync_kind=SYNC_SEASON_STATS,
            )
            return StatsResult(stats, season["id"], from_cache, season)

        def fetch() -> Document:
            # Only validated on a miss; a cached id was valid when it was stored.
            resolve_season(self.get_seasons(shard), season_or_current)
            return self._fetch_stats(account_id, season_or_current, shard)

        stats, from_cache = self.cache.resolve(
            CacheKey.season_stats(account_id, season_or_current, shard),
            fetch,
            sync_kind=SYNC_SEASON_STATS,
        )
        return StatsResult(stats, season_or_current, from_cache)

    def get_lifetime_stats(self, account_id: str, shard: str | None = None) -> StatsResult:
        return self.get_season_stats(account_id, LIFETIME_SEASON, shard)

    # ── Sync ──────────────────────────────────────────────────────────────────

    def force_sync(self, account_id: str, shard: str | None = None) -> SyncResult:
        """
        Re-fetch the player and their current-season stats, bypassing the cache.

        Raises RateLimited inside the cooldown window. The season stats part is
        best effort: a failure there still leaves the player synced.
        """
        shard = self._shard(shard)
        player = self.cache.force_sync(
            CacheKey.player(account_id, shard),
            lambda: self.get_player(account_id, shard),
            to_record=lambda p: CacheRecord.for_player(p, shard),
            sync_kind=SYNC_PLAYER,
        )

        season_id = None
        season_stats = None
        try:
            season_id = self.get_current_season(shard)["id"]
            season_stats = self.cache.refresh(
                CacheKey.season_stats(account_id, season_id, shard),
                lambda: self._fetch_stats(account_id, season_id, shard),
                sync_kind=SYNC_SEASON_STATS,
                detail="Full sync completed successfully",
            )
        except PubgStatsError as exc:
            logger.warning("Season stats sync failed for %s: %s", account_id, exc)

        return SyncResult(player, season_stats, season_id, self.cache.clock())

    # ── Matches ───────────────────────────────────────────────────────────────

    def get_match(self, match_id: str, shard: str | None = None) -> Document:
        return _not_found_on_404(
            f"Match {match_id}", lambda: self.client.get_match(match_id, self._shard(shard))
        )

    def get_recent_matches(
        self, account_id: str, limit: int = 20, shard: str | None = None
    ) -> tuple[Document, list[Document]]:
        """
        Return `(player, matches)` for the player's `limit` latest matches.

        Matches are fetched in batches; any match that fails to load is dropped
        from the list rather than failing the request.
        """
        if limit <= 0:
            raise ValueError("limit must be positive")
        shard = self._shard(shard)
        player = self.get_player(account_id, shard)
        refs = ((player.get("relationships") or {}).get("matches") or {}).get("data") or []
        match_ids = [ref["id"] for ref in refs[:limit]]
        if not match_ids:
            logger.info("Player %s has no recent matches", account_id)
            return player, []

        matches = fetch_all(
            match_ids,
            self.client.config.match_batch_size,
            lambda match_id: self.client.get_match(match_id, shard),
        )
        return player, matches

    # ── Clans ─────────────────────────────────────────────────────────────────

    def get_player_clan(self, account_id: str, shard: str | None = None) -> Document:
        """
        Best effort: the provider has no player→clan endpoint, so this only reads
        a `relationships.clan` annotation on the cached player. Expect
        `{"found": False}` for most players.
        """
        record = self.cache.lookup(CacheKey.player(account_id, self._shard(shard)))
        if record is None:
            return {"found": False}
        clan = (record.payload.get("relationships") or {}).get("clan")
        if not isinstance(clan, dict) or clan.get("found") is not True:
            return {"found": False}
        return {
            "id":    clan.get("id") or "",
            "name":  clan.get("name") or "",
            "tag":   clan.get("tag") or "",
            "found": True,
        }

    def get_clan(self, clan_id: str, shard: str | None = None) -> tuple[Document, list[Document]]:
        """Return `(clan, members)`; members that fail to load are left out."""
        shard = self._shard(shard)
        clan = _not_found_on_404(f"Clan {clan_id}", lambda: self.client.get_clan(clan_id, shard))
        refs = (((clan.get("data") or {}).get("relationships") or {}).get("members") or {}).get("data") or []
        member_ids = [ref["id"] for ref in refs]
        groups = [
            member_ids[i:i + CLAN_MEMBER_GROUP_SIZE]
            for i in range(0, len(member_ids), CLAN_MEMBER_GROUP_SIZE)
        ]
        pages = fetch_all(
            groups,
            self.client.config.match_batch_size,
            lambda ids: self.client.get_players_by_ids(ids, shard).get("data") or [],
        )
        members = [player for page in pages for player in page]
        return clan, members

    # ── Mastery and leaderboards ──────────────────────────────────────────────

    def get_weapon_mastery(self, account_id: str, shard: str | None = None) -> Document:
        return _not_found_on_404(
            f"Weapon mastery for {account_id}",
            lambda: self.client.get_weapon_mastery(account_id, self._shard(shard)),
        )

    def get_survival_mastery(self, account_id: str, shard: str | None = None) -> Document:
        return _not_found_on_404(
            f"Survival mastery for {account_id}",
            lambda: self.client.get_survival_mastery(account_id, self._shard(shard)),
        )

    def get_leaderboard(self, game_mode: str, shard: str | None = None) -> Document:
        return _not_found_on_404(
            f"Leaderboard {game_mode}",
            lambda: self.client.get_leaderboard(game_mode, self._shard(shard)),
        )
