"""Fetcher registry — discover and instantiate health-data fetchers by provider."""

from __future__ import annotations

from typing import Type

import httpx

from healthbot.collectors.base import BaseFetcher
from healthbot.collectors.fitbit import FitbitFetcher
from healthbot.collectors.google_fit import GoogleFitFetcher
from healthbot.collectors.oura import OuraFetcher
from healthbot.models import ProviderId
from healthbot.retry import RetryPolicy
from healthbot.storage.tokens import TokenStore

# ── Registry ──────────────────────────────────────────────────

_REGISTRY: dict[ProviderId, Type[BaseFetcher]] = {
    ProviderId.GOOGLE_FIT: GoogleFitFetcher,
    ProviderId.FITBIT: FitbitFetcher,
    ProviderId.OURA: OuraFetcher,
}


def register_fetcher(provider: ProviderId, cls: Type[BaseFetcher]) -> None:
    """Register a new fetcher class for a provider."""
    _REGISTRY[provider] = cls


def get_fetcher(
    provider: ProviderId | str,
    tokens: TokenStore,
    policy: RetryPolicy | None = None,
    client: httpx.AsyncClient | None = None,
) -> BaseFetcher:
    """Instantiate and return the fetcher for *provider*.

    Raises :class:`ValueError` if no fetcher is registered.
    """
    try:
        cls = _REGISTRY.get(ProviderId(provider))
    except ValueError:
        cls = None
    if cls is None:
        name = provider.value if isinstance(provider, ProviderId) else provider
        raise ValueError(
            f"No fetcher registered for {name}. "
            f"Available: {[p.value for p in _REGISTRY]}"
        )
    return cls(tokens, policy=policy, client=client)


def available_providers() -> list[ProviderId]:
    """Return providers that have a registered fetcher."""
    return list(_REGISTRY.keys())
