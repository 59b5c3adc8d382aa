"""Provider redirect handling — relay ``code`` / ``error`` to the connect page.

No token exchange happens here and no secret is needed: the code is
forwarded to ``/connect``, which completes the flow through the
integration service.
"""

from __future__ import annotations

from typing import Mapping
from urllib.parse import urlencode

import structlog

from healthbot.oauth.providers import get_strategy, provider_for_segment

logger = structlog.get_logger(__name__)

NO_CODE_ERROR = "No authorization code received"


def _scheme_for(host: str) -> str:
    return "http" if "localhost" in host else "https"


def build_callback_redirect(
    provider_segment: str,
    query: Mapping[str, str],
    host: str,
    connect_path: str = "/connect",
) -> str:
    """Return the connect-page URL (path + query) to redirect the browser to.

    Parameters
    ----------
    provider_segment:
        Path segment the provider redirected to (``google``, ``fitbit``…).
    query:
        Query parameters of the provider redirect.
    host:
        ``Host`` header of the incoming request; used to rebuild the
        redirect URI for providers that must see it again at exchange time.
    """
    error = query.get("error")
    if error:
        description = query.get("error_description") or error
        logger.warning("oauth.callback_error", provider=provider_segment, error=error)
        return f"{connect_path}?{urlencode({'error': description, 'provider': provider_segment})}"

    code = query.get("code")
    if not code:
        logger.warning("oauth.callback_missing_code", provider=provider_segment)
        return f"{connect_path}?{urlencode({'error': NO_CODE_ERROR, 'provider': provider_segment})}"

    state = query.get("state")
    segment_provider = provider_for_segment(provider_segment)
    provider = state or (segment_provider.value if segment_provider else provider_segment)

    params = {"code": code, "provider": provider}
    if state:
        params["state"] = state
    if get_strategy(provider).relay_redirect_uri:
        params["redirectUri"] = f"{_scheme_for(host)}://{host}/api/oauth/callback/{provider_segment}"

    logger.info("oauth.callback_relayed", provider=provider)
    return f"{connect_path}?{urlencode(params)}"
