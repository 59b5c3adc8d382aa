"""Token exchange service — authorization code (or refresh token) → tokens.

Runs server-side because it needs the provider client secret.  Request
shaping per provider lives in :mod:`healthbot.oauth.providers`; this
module only builds the common form body, sends it through the shared
:class:`~healthbot.retry.RetryPolicy` and normalises the answer.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from healthbot.config import Settings, get_settings
from healthbot.errors import ConfigurationError, InvalidRequestError, ProviderRejectedError
from healthbot.models import TokenResponse
from healthbot.oauth.providers import ProviderConfig, get_provider, get_strategy
from healthbot.retry import RetryPolicy

logger = structlog.get_logger(__name__)


class TokenExchangeService:
    """Exchange codes for tokens against any supported provider.

    Usage::

        service = TokenExchangeService()
        tokens = await service.exchange("fitbit", code, code_verifier, redirect_uri)

    Parameters
    ----------
    settings:
        Source of client credentials; defaults to :func:`get_settings`.
    client:
        Optional shared :class:`httpx.AsyncClient` (tests pass one built on
        :class:`httpx.MockTransport`).  When omitted a client is opened per
        call.
    policy:
        Retry policy; defaults to the ``oauth_*`` settings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._policy = policy or RetryPolicy.from_settings(self._settings)

    # ── Public API ────────────────────────────────────────────

    async def exchange(
        self,
        device_id: str,
        code: str,
        code_verifier: str | None = None,
        redirect_uri: str | None = None,
    ) -> TokenResponse:
        """Exchange an authorization *code* for a normalised token response.

        Raises
        ------
        InvalidRequestError
            ``device_id`` or ``code`` missing.
        ConfigurationError
            ``device_id`` is not a known provider, or its client
            credentials are not configured.
        ProviderRejectedError
            The provider answered with a non-2xx status.
        TransportError
            The provider could not be reached within the retry budget.
        """
        if not device_id or not code:
            raise InvalidRequestError("Missing required parameters")

        config = self._provider_with_credentials(device_id)
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or config.redirect_uri,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        if code_verifier:
            form["code_verifier"] = code_verifier

        return await self._request_token(config, form, requested_redirect_uri=form["redirect_uri"])

    async def refresh(self, device_id: str, refresh_token: str) -> TokenResponse:
        """Trade a refresh token for a new token pair.

        Only ever called on explicit request; stored tokens are never
        refreshed behind the caller's back.
        """
        if not device_id or not refresh_token:
            raise InvalidRequestError("Missing required parameters")

        config = self._provider_with_credentials(device_id)
        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
        }
        return await self._request_token(config, form)

    # ── Internals ─────────────────────────────────────────────

    def _provider_with_credentials(self, device_id: str) -> ProviderConfig:
        config = get_provider(device_id, self._settings)
        if not config.has_credentials:
            raise ConfigurationError(f"OAuth not configured for {device_id}")
        return config

    async def _request_token(
        self,
        config: ProviderConfig,
        form: dict[str, str],
        *,
        requested_redirect_uri: str | None = None,
    ) -> TokenResponse:
        strategy = get_strategy(config.id)
        body = {**form, **strategy.extra_body_params()}
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            **strategy.auth_headers(config),
        }

        resp = await self._policy.run(
            lambda: self._post(config.token_url, body, headers),
            operation=f"token.{config.id.value}",
        )

        if not resp.is_success:
            logger.error(
                "oauth.token_exchange_failed",
                device=config.id.value,
                status=resp.status_code,
                reason=resp.reason_phrase,
                body=resp.text,
                requested_redirect_uri=requested_redirect_uri,
                client_id_present=bool(config.client_id),
                client_secret_present=bool(config.client_secret),
            )
            raise ProviderRejectedError(resp.status_code, resp.text)

        try:
            payload = resp.json()
        except ValueError:
            logger.error("oauth.token_response_not_json", device=config.id.value)
            raise ProviderRejectedError(502, resp.text, message="Invalid token response") from None

        tokens = normalize_token_payload(strategy.unwrap_response(payload) if isinstance(payload, dict) else {})
        if tokens is None:
            logger.error("oauth.token_missing", device=config.id.value)
            raise ProviderRejectedError(502, resp.text, message="Invalid token response")

        logger.info(
            "oauth.token_exchanged",
            device=config.id.value,
            grant_type=form["grant_type"],
            expires_in=tokens.expires_in,
            has_refresh_token=bool(tokens.refresh_token),
        )
        return tokens

    async def _post(self, url: str, data: dict[str, str], headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, data=data, headers=headers)
        async with httpx.AsyncClient(timeout=self._policy.timeout) as client:
            return await client.post(url, data=data, headers=headers)


def normalize_token_payload(payload: dict[str, Any]) -> TokenResponse | None:
    """Pick the common fields out of an (already unwrapped) token payload."""
    access_token = payload.get("access_token")
    if not access_token:
        return None
    expires_in = payload.get("expires_in")
    return TokenResponse(
        access_token=access_token,
        refresh_token=payload.get("refresh_token"),
        expires_in=int(expires_in) if expires_in is not None else None,
        token_type=payload.get("token_type") or "Bearer",
        scope=payload.get("scope"),
    )
