"""Thin wrapper around the PUBG Open API: auth headers, shard-scoped paths, typed errors."""

from __future__ import annotations

import logging
import time
from typing import Any

import requests

from config import PubgApiConfig
from errors import ParseError, RemoteError

logger = logging.getLogger(__name__)

Document = dict[str, Any]


class PubgApiClient:
    """
    Stateless request/response client. No retries and no caching happen here;
    callers decide what to do with a RemoteError.
    """

    def __init__(self, config: PubgApiConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()
        logger.debug(
            "PUBG client ready base_url=%s shard=%s key=%s",
            config.base_url, config.default_shard, config.key_preview,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Accept": "application/vnd.api+json",
        }

    def fetch(
        self,
        resource_path: str,
        shard: str | None = None,
        params: list[tuple[str, str]] | None = None,
    ) -> Document:
        shard = shard or self.config.default_shard
        url = f"{self.config.base_url}/shards/{shard}/{resource_path.lstrip('/')}"

        started = time.perf_counter()
        try:
            response = self.session.get(
                url,
                headers=self._headers(),
                params=params,
                timeout=self.config.timeout_seconds,
            )
        except requests.Timeout as exc:
            logger.error("PUBG API timeout url=%s", url)
            raise RemoteError(None, f"Request timed out after {self.config.timeout_seconds}s") from exc
        except requests.RequestException as exc:
            logger.error("PUBG API network failure url=%s: %s", url, exc)
            raise RemoteError(None, f"Network failure: {exc}") from exc

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.debug("GET %s -> %s in %dms", url, response.status_code, elapsed_ms)

        if not 200 <= response.status_code < 300:
            message = self._error_message(response)
            logger.error("PUBG API error status=%s url=%s: %s", response.status_code, url, message)
            raise RemoteError(response.status_code, message)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ParseError(f"Failed to parse API response: {(response.text or '')[:200]}") from exc
        if not isinstance(payload, dict):
            raise ParseError(f"Expected a JSON object from {url}, got {type(payload).__name__}")
        return payload

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            errors = response.json().get("errors") or []
            first = errors[0]
            return f"{first.get('title', '')} - {first.get('detail', '')}".strip(" -")
        except (ValueError, AttributeError, IndexError, TypeError):
            return (response.text or "")[:500] or f"Status {response.status_code}"

    # ── Players ───────────────────────────────────────────────────────────────

    def get_players_by_names(self, names: list[str], shard: str | None = None) -> Document:
        if not names:
            raise ValueError("Player names list cannot be empty")
        return self.fetch("players", shard, [("filter[playerNames]", n) for n in names])

    def get_players_by_ids(self, account_ids: list[str], shard: str | None = None) -> Document:
        if not account_ids:
            raise ValueError("Account id list cannot be empty")
        return self.fetch("players", shard, [("filter[playerIds]", i) for i in account_ids])

    def get_player(self, account_id: str, shard: str | None = None) -> Document:
        return self.fetch(f"players/{account_id}", shard)

    def get_weapon_mastery(self, account_id: str, shard: str | None = None) -> Document:
        return self.fetch(f"players/{account_id}/weapon_mastery", shard)

    def get_survival_mastery(self, account_id: str, shard: str | None = None) -> Document:
        return self.fetch(f"players/{account_id}/survival_mastery", shard)

    # ── Seasons ───────────────────────────────────────────────────────────────

    def get_seasons(self, shard: str | None = None) -> Document:
        return self.fetch("seasons", shard)

    def get_player_season_stats(self, account_id: str, season_id: str, shard: str | None = None) -> Document:
        if season_id != "lifetime" and not season_id.startswith("division.bro.official."):
            logger.warning("Unexpected season id format: %s", season_id)
        return self.fetch(f"players/{account_id}/seasons/{season_id}", shard)

    def get_player_lifetime_stats(self, account_id: str, shard: str | None = None) -> Document:
        return self.fetch(f"players/{account_id}/seasons/lifetime", shard)

    # ── Matches, clans, leaderboards ──────────────────────────────────────────

    def get_match(self, match_id: str, shard: str | None = None) -> Document:
        return self.fetch(f"matches/{match_id}", shard)

    def get_clan(self, clan_id: str, shard: str | None = None) -> Document:
        return self.fetch(f"clans/{clan_id}", shard)

    def get_leaderboard(self, game_mode: str, shard: str | None = None) -> Document:
        return self.fetch(f"leaderboards/{game_mode}", shard)
