"""Exception taxonomy shared by the provider client, the store layer and the service."""

from __future__ import annotations


class PubgStatsError(Exception):
    """Base class for every error this backend raises on purpose."""


class ConfigError(PubgStatsError):
    pass


class RemoteError(PubgStatsError):
    """Non-2xx response, timeout or connection failure talking to the PUBG API."""

    def __init__(self, status_code: int | None, provider_message: str):
        self.status_code = status_code
        self.provider_message = provider_message
        super().__init__(f"PUBG API error status={status_code}: {provider_message}")

    @property
    def transient(self) -> bool:
        """True when a retry later could plausibly succeed."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class ParseError(PubgStatsError):
    pass


class NotFoundError(PubgStatsError):
    pass


class StoreError(PubgStatsError):
    pass


class RateLimited(PubgStatsError):
    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Sync cooldown active, retry after {retry_after_seconds}s")
