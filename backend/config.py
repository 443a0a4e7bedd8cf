"""Environment-driven configuration for the PUBG API client and the app."""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum

from errors import ConfigError


class PlatformShard(str, Enum):
    STEAM      = "steam"
    KAKAO      = "kakao"
    XBOX       = "xbox"
    PSN        = "psn"
    STADIA     = "stadia"
    CONSOLE    = "console"
    TOURNAMENT = "tournament"


DEFAULT_BASE_URL = "https://api.pubg.com"
DEFAULT_SHARD = PlatformShard.STEAM.value

# Minimum time between two successful syncs of the same player.
SYNC_COOLDOWN_SECONDS = 300

GAME_MODES = ["solo", "solo-fpp", "duo", "duo-fpp", "squad", "squad-fpp"]


@dataclass(frozen=True)
class PubgApiConfig:
    api_key:          str
    base_url:         str   = DEFAULT_BASE_URL
    default_shard:    str   = DEFAULT_SHARD
    timeout_seconds:  float = 10.0
    match_batch_size: int   = 5

    @property
    def key_preview(self) -> str:
        return f"{self.api_key[:8]}..."


def _env(*names: str, default: str | None = None) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value.strip()
    return default


def load_pubg_config() -> PubgApiConfig:
    """Build the client config from the environment; the API key is mandatory."""
    api_key = _env("PUBG_OPEN_API_KEY")
    if not api_key:
        raise ConfigError(
            "PUBG API key is not configured. Add PUBG_OPEN_API_KEY to your .env file."
        )

    shard = _env("PUBG_DEFAULT_SHARD", "NEXT_PUBLIC_DEFAULT_SHARD", default=DEFAULT_SHARD).lower()
    try:
        PlatformShard(shard)
    except ValueError:
        supported = ", ".join(s.value for s in PlatformShard)
        raise ConfigError(f"Unsupported default shard '{shard}'. Supported values: {supported}")

    try:
        timeout = float(_env("HTTP_TIMEOUT_SECONDS", default="10"))
        batch_size = int(_env("MATCH_BATCH_SIZE", default="5"))
    except ValueError as exc:
        raise ConfigError(f"Invalid numeric setting: {exc}") from exc
    if batch_size <= 0:
        raise ConfigError("MATCH_BATCH_SIZE must be a positive integer")

    return PubgApiConfig(
        api_key=api_key,
        base_url=_env("PUBG_API_BASE_URL", default=DEFAULT_BASE_URL).rstrip("/"),
        default_shard=shard,
        timeout_seconds=timeout,
        match_batch_size=batch_size,
    )
