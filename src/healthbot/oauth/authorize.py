"""Authorization URL builder (step 1 of the authorization-code flow)."""

from __future__ import annotations

from urllib.parse import urlencode

import structlog

from healthbot.config import Settings, get_settings
from healthbot.models import OAuthSession
from healthbot.oauth.pkce import PKCEPair
from healthbot.oauth.providers import build_provider_config, parse_provider_id
from healthbot.storage.sessions import SessionStore

logger = structlog.get_logger(__name__)


class AuthorizationUrlBuilder:
    """Assemble provider authorization URLs and remember the PKCE verifier.

    ``generate`` returns ``None`` when the integration is not configured
    (unknown provider or empty client id); it never raises for that case.
    """

    def __init__(self, sessions: SessionStore, settings: Settings | None = None) -> None:
        self._sessions = sessions
        self._settings = settings or get_settings()

    async def generate(self, device_id: str) -> str | None:
        provider_id = parse_provider_id(device_id)
        if provider_id is None:
            logger.warning("oauth.not_configured", device=device_id, reason="unknown_provider")
            return None

        config = build_provider_config(provider_id, self._settings)
        if not config.client_id:
            logger.warning("oauth.not_configured", device=device_id, reason="missing_client_id")
            return None

        pkce = PKCEPair.generate()
        # state carries the device id back through the provider redirect
        await self._sessions.save(
            OAuthSession(device_id=device_id, code_verifier=pkce.verifier, state=device_id)
        )

        params = {
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "response_type": "code",
            "scope": config.scope,
            "code_challenge": pkce.challenge,
            "code_challenge_method": pkce.method,
            "state": device_id,
            # ask for a refresh token and a fresh consent screen
            "access_type": "offline",
            "prompt": "consent",
        }
        logger.info("oauth.authorization_url_built", device=device_id)
        return f"{config.authorization_url}?{urlencode(params)}"
