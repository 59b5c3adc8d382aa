"""Provider registry — static OAuth settings plus per-provider request shaping.

Each provider is a :class:`ProviderConfig` record (endpoints, scope,
credentials) paired with a :class:`ProviderStrategy` that owns its quirks:

* **fitbit** — client credentials travel in an HTTP Basic header.
* **withings** — token calls need ``action=requesttoken`` and the token
  is nested under a ``body`` object in the response.
* **google_fit** — standard form POST; the callback relays the redirect
  URI back to the client because Google is strict about it matching.
* **oura**, **strava** — standard form POST.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any

from healthbot.config import Settings, get_settings
from healthbot.errors import ConfigurationError
from healthbot.models import ProviderId

# ── Static endpoint table ─────────────────────────────────────

_ENDPOINTS: dict[ProviderId, dict[str, str]] = {
    ProviderId.GOOGLE_FIT: {
        "authorization_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "token_url": "https://www.googleapis.com/oauth2/v4/token",
        "scope": (
            "https://www.googleapis.com/auth/fitness.activity.read "
            "https://www.googleapis.com/auth/fitness.body.read "
            "https://www.googleapis.com/auth/fitness.heart_rate.read "
            "https://www.googleapis.com/auth/fitness.sleep.read"
        ),
        "callback_segment": "google",
    },
    ProviderId.FITBIT: {
        "authorization_url": "https://www.fitbit.com/oauth2/authorize",
        "token_url": "https://api.fitbit.com/oauth2/token",
        "scope": "activity heartrate location nutrition profile settings sleep social weight",
        "callback_segment": "fitbit",
    },
    ProviderId.WITHINGS: {
        "authorization_url": "https://account.withings.com/oauth2_user/authorize2",
        "token_url": "https://wbsapi.withings.net/v2/oauth2",
        "scope": "user.info,user.metrics,user.activity,user.sleepevents",
        "callback_segment": "withings",
    },
    ProviderId.OURA: {
        "authorization_url": "https://cloud.ouraring.com/oauth/authorize",
        "token_url": "https://api.ouraring.com/oauth/token",
        "scope": "daily readiness sleep activity heart_rate",
        "callback_segment": "oura",
    },
    ProviderId.STRAVA: {
        "authorization_url": "https://www.strava.com/oauth/authorize",
        "token_url": "https://www.strava.com/oauth/token",
        "scope": "read,activity:read_all,profile:read_all",
        "callback_segment": "strava",
    },
}


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable OAuth settings for one provider."""

    id: ProviderId
    authorization_url: str
    token_url: str
    client_id: str
    client_secret: str
    scope: str
    redirect_uri: str
    callback_segment: str

    @property
    def configured(self) -> bool:
        return bool(self.client_id)

    @property
    def has_credentials(self) -> bool:
        """Both halves of the client credentials are present."""
        return bool(self.client_id and self.client_secret)


# ── Strategies ────────────────────────────────────────────────


class ProviderStrategy:
    """Default OAuth 2 token-request shaping: plain form POST."""

    relay_redirect_uri: bool = False

    def auth_headers(self, config: ProviderConfig) -> dict[str, str]:
        return {}

    def extra_body_params(self) -> dict[str, str]:
        return {}

    def unwrap_response(self, payload: dict[str, Any]) -> dict[str, Any]:
        return payload


class StandardStrategy(ProviderStrategy):
    pass


class GoogleStrategy(ProviderStrategy):
    relay_redirect_uri = True


class BasicAuthStrategy(ProviderStrategy):
    """Client id/secret sent as ``Authorization: Basic base64(id:secret)``."""

    def auth_headers(self, config: ProviderConfig) -> dict[str, str]:
        return {"Authorization": f"Basic {make_basic_auth(config.client_id, config.client_secret)}"}


class ActionParamStrategy(ProviderStrategy):
    """Withings: ``action=requesttoken`` and a response nested in ``body``."""

    def extra_body_params(self) -> dict[str, str]:
        return {"action": "requesttoken"}

    def unwrap_response(self, payload: dict[str, Any]) -> dict[str, Any]:
        body = payload.get("body")
        if isinstance(body, dict):
            return body
        return payload


_STRATEGIES: dict[ProviderId, ProviderStrategy] = {
    ProviderId.GOOGLE_FIT: GoogleStrategy(),
    ProviderId.FITBIT: BasicAuthStrategy(),
    ProviderId.WITHINGS: ActionParamStrategy(),
    ProviderId.OURA: StandardStrategy(),
    ProviderId.STRAVA: StandardStrategy(),
}

_DEFAULT_STRATEGY = StandardStrategy()


def make_basic_auth(client_id: str, client_secret: str) -> str:
    """Build an HTTP Basic Authorization header value."""
    return base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()


# ── Lookup ────────────────────────────────────────────────────


def parse_provider_id(device_id: str) -> ProviderId | None:
    try:
        return ProviderId(device_id)
    except ValueError:
        return None


def provider_for_segment(segment: str) -> ProviderId | None:
    """Map a callback path segment (``google``, ``fitbit``…) to a provider."""
    for provider_id, endpoints in _ENDPOINTS.items():
        if endpoints["callback_segment"] == segment:
            return provider_id
    return parse_provider_id(segment)


def get_strategy(provider_id: ProviderId | str) -> ProviderStrategy:
    parsed = parse_provider_id(provider_id) if isinstance(provider_id, str) else provider_id
    if parsed is None:
        return _DEFAULT_STRATEGY
    return _STRATEGIES.get(parsed, _DEFAULT_STRATEGY)


def build_provider_config(provider_id: ProviderId, settings: Settings) -> ProviderConfig:
    endpoints = _ENDPOINTS[provider_id]
    base = settings.public_base_url.rstrip("/")
    return ProviderConfig(
        id=provider_id,
        authorization_url=endpoints["authorization_url"],
        token_url=endpoints["token_url"],
        client_id=settings.client_id_for(provider_id.value),
        client_secret=settings.client_secret_for(provider_id.value),
        scope=endpoints["scope"],
        redirect_uri=f"{base}/api/oauth/callback/{endpoints['callback_segment']}",
        callback_segment=endpoints["callback_segment"],
    )


def load_provider_configs(settings: Settings | None = None) -> dict[ProviderId, ProviderConfig]:
    """Build the config record of every supported provider."""
    settings = settings or get_settings()
    return {pid: build_provider_config(pid, settings) for pid in ProviderId}


def get_provider(device_id: str, settings: Settings | None = None) -> ProviderConfig:
    """Return the config for *device_id*.

    Raises :class:`ConfigurationError` if the id is not a known provider.
    """
    provider_id = parse_provider_id(device_id)
    if provider_id is None:
        raise ConfigurationError(f"Unknown device: {device_id}")
    return build_provider_config(provider_id, settings or get_settings())
