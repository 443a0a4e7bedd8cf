"""Season ordering and "current" season resolution."""

from __future__ import annotations

import logging
from typing import Any

from errors import NotFoundError

logger = logging.getLogger(__name__)

CURRENT = "current"

Season = dict[str, Any]


def season_sort_key(season: Season) -> str:
    """
    Recency key for a season.

    Uses the raw id string: the provider's ids ("division.bro.official.pc-2018-30")
    happen to sort in release order. Swap this for a timestamp once the provider
    exposes one or changes its id format.
    """
    return season["id"]


def sort_seasons(seasons: list[Season]) -> list[Season]:
    """Newest first."""
    return sorted(seasons, key=season_sort_key, reverse=True)


def is_current(season: Season) -> bool:
    return bool((season.get("attributes") or {}).get("isCurrentSeason"))


def resolve_season(seasons: list[Season], requested: str) -> Season:
    if requested == CURRENT:
        for season in seasons:
            if is_current(season):
                return season
        if not seasons:
            raise NotFoundError("No seasons available")
        latest = sort_seasons(seasons)[0]
        logger.info("No season flagged current, falling back to latest id %s", latest["id"])
        return latest

    for season in seasons:
        if season["id"] == requested:
            return season
    raise NotFoundError(f"Season '{requested}' not found")
