"""FastAPI backend for the PUBG player stats site."""

from __future__ import annotations

import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, HTTPException, Depends, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import db
from cache import ReadThroughCache
from config import GAME_MODES, PlatformShard, load_pubg_config
from errors import (
    ConfigError,
    NotFoundError,
    ParseError,
    PubgStatsError,
    RateLimited,
    RemoteError,
    StoreError,
)
from pubg_client import PubgApiClient
from seasons import CURRENT, resolve_season
from service import PubgStatsService

logger = logging.getLogger(__name__)

TEST_MODE = os.getenv("TEST_MODE", "") == "1"
STARTED_AT = datetime.now(timezone.utc)


@lru_cache(maxsize=1)
def get_service() -> PubgStatsService:
    """One service per process so every request shares the per-player sync locks."""
    config = load_pubg_config()
    return PubgStatsService(PubgApiClient(config), ReadThroughCache(db))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Cache store: %s", "local Postgres (TEST_MODE)" if TEST_MODE else "Supabase")
    yield
    logger.info("Shutting down")


app = FastAPI(title="PUBG Stats API", version="1.0", lifespan=lifespan)

# ── Dev routes (only in TEST_MODE) ────────────────────────────────────────────
if TEST_MODE:
    from dev_routes import router as dev_router
    app.include_router(dev_router)
    logger.info("TEST_MODE: dev routes mounted at /dev/*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:5173"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error translation ─────────────────────────────────────────────────────────


@app.exception_handler(PubgStatsError)
async def pubg_error_handler(request: Request, exc: PubgStatsError):
    if isinstance(exc, NotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})
    if isinstance(exc, RateLimited):
        return JSONResponse(
            status_code=429,
            headers={"Retry-After": str(exc.retry_after_seconds)},
            content={
                "detail":     "Sync cooldown active",
                "message":    "Please wait at least 5 minutes between syncs",
                "retryAfter": exc.retry_after_seconds,
            },
        )
    if isinstance(exc, RemoteError):
        status = 503 if exc.transient else 502
        return JSONResponse(
            status_code=status,
            content={"detail": "PUBG API request failed", "message": exc.provider_message,
                     "retryable": exc.transient},
        )
    if isinstance(exc, ParseError):
        return JSONResponse(status_code=502, content={"detail": str(exc), "retryable": False})
    if isinstance(exc, ConfigError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})
    if isinstance(exc, StoreError):
        logger.error("Store error escaped the cache layer: %s", exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def _shard(shard: Optional[PlatformShard]) -> Optional[str]:
    return shard.value if shard else None


@app.get("/health", include_in_schema=False)
async def health():
    now = datetime.now(timezone.utc)
    return {
        "status":    "ok",
        "timestamp": now.isoformat(),
        "uptime":    (now - STARTED_AT).total_seconds(),
        "test_mode": TEST_MODE,
    }


# ── Players ───────────────────────────────────────────────────────────────────


@app.get("/api/pubg/players")
async def search_player(
    playerName: Optional[str] = None,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    if not playerName or not playerName.strip():
        raise HTTPException(status_code=400, detail="Player name is required")
    player, from_cache = await run_in_threadpool(svc.search_player_by_name, playerName, _shard(shard))
    return {"player": player, "fromCache": from_cache}


@app.get("/api/pubg/players/{account_id}")
async def get_player(
    account_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    player = await run_in_threadpool(svc.get_player, account_id, _shard(shard))
    return {"player": player}


@app.get("/api/pubg/players/{account_id}/seasons/{season_id}")
async def get_player_season_stats(
    account_id: str,
    season_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    result = await run_in_threadpool(svc.get_season_stats, account_id, season_id, _shard(shard))
    body = {"seasonStats": result.stats, "seasonId": result.season_id, "fromCache": result.from_cache}
    if result.season is not None:
        body["seasonInfo"] = result.season
    return body


@app.get("/api/pubg/players/{account_id}/lifetime")
async def get_player_lifetime_stats(
    account_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    result = await run_in_threadpool(svc.get_lifetime_stats, account_id, _shard(shard))
    return {"lifetimeStats": result.stats, "fromCache": result.from_cache}


@app.get("/api/pubg/players/{account_id}/matches")
async def get_player_matches(
    account_id: str,
    shard: Optional[PlatformShard] = None,
    limit: int = Query(default=20, ge=1, le=100),
    svc: PubgStatsService = Depends(get_service),
):
    player, matches = await run_in_threadpool(svc.get_recent_matches, account_id, limit, _shard(shard))
    if not matches:
        raise HTTPException(status_code=404, detail="No matches found for this player")
    return {
        "matches":    matches,
        "playerName": (player.get("attributes") or {}).get("name"),
        "count":      len(matches),
    }


@app.post("/api/pubg/players/{account_id}/sync")
async def sync_player(
    account_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    result = await run_in_threadpool(svc.force_sync, account_id, _shard(shard))
    return {
        "success":     True,
        "player":      result.player,
        "seasonId":    result.season_id,
        "seasonStats": result.season_stats,
        "timestamp":   result.synced_at.isoformat(),
    }


@app.get("/api/pubg/players/{account_id}/clan")
async def get_player_clan(
    account_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    clan = await run_in_threadpool(svc.get_player_clan, account_id, _shard(shard))
    return {"clan": clan, "fromCache": clan["found"]}


@app.get("/api/pubg/players/{account_id}/weapon-mastery")
async def get_weapon_mastery(
    account_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    return await run_in_threadpool(svc.get_weapon_mastery, account_id, _shard(shard))


@app.get("/api/pubg/players/{account_id}/survival-mastery")
async def get_survival_mastery(
    account_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    return await run_in_threadpool(svc.get_survival_mastery, account_id, _shard(shard))


# ── Seasons, matches, clans, leaderboards ─────────────────────────────────────


@app.get("/api/pubg/seasons")
async def get_seasons(
    shard: Optional[PlatformShard] = None,
    current: bool = False,
    svc: PubgStatsService = Depends(get_service),
):
    seasons = await run_in_threadpool(svc.get_seasons, _shard(shard))
    if not seasons:
        raise HTTPException(status_code=404, detail="No seasons found")
    current_season = resolve_season(seasons, CURRENT)
    if current:
        return {"currentSeason": current_season}
    return {"seasons": seasons, "currentSeason": current_season}


@app.get("/api/pubg/matches/{match_id}")
async def get_match(
    match_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    match = await run_in_threadpool(svc.get_match, match_id, _shard(shard))
    return {"match": match}


@app.get("/api/pubg/clans/{clan_id}")
async def get_clan(
    clan_id: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    clan, members = await run_in_threadpool(svc.get_clan, clan_id, _shard(shard))
    return {"clan": clan, "members": members}


@app.get("/api/pubg/leaderboards/{game_mode}")
async def get_leaderboard(
    game_mode: str,
    shard: Optional[PlatformShard] = None,
    svc: PubgStatsService = Depends(get_service),
):
    if game_mode not in GAME_MODES:
        raise HTTPException(status_code=422, detail=f"Unknown game mode: {game_mode}")
    return await run_in_threadpool(svc.get_leaderboard, game_mode, _shard(shard))


# ── Dev entry point ───────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
