"""OAuth 2 routes.

Endpoints
~~~~~~~~~
* ``GET /api/oauth/authorize/{device_id}`` — authorization URL for the browser
* ``GET /api/oauth/callback/{provider}`` — provider redirect, relayed to ``/connect``
* ``POST /api/oauth/token`` — exchange a code for tokens (needs the client secret)
* ``POST /api/oauth/refresh/{device_id}`` — explicit token refresh
* ``GET /connect`` — finish the flow server-side and store the token
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from healthbot.api.dependencies import get_app_settings, get_integrations
from healthbot.api.schemas import TokenRequest
from healthbot.config import Settings
from healthbot.errors import InvalidRequestError
from healthbot.integrations import DeviceIntegrationService
from healthbot.oauth.callback import build_callback_redirect

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/oauth", tags=["oauth"])


@router.get("/authorize/{device_id}", summary="Build the provider authorization URL")
async def authorize(device_id: str, service: DeviceIntegrationService = Depends(get_integrations)):
    url = await service.authorization_url(device_id)
    if url is None:
        return JSONResponse(status_code=404, content={"error": f"OAuth not configured for {device_id}"})
    return {"authorization_url": url}


@router.get("/callback/{provider}", summary="Provider redirect target")
async def callback(provider: str, request: Request, settings: Settings = Depends(get_app_settings)):
    target = build_callback_redirect(
        provider,
        request.query_params,
        request.headers.get("host", ""),
        connect_path=settings.connect_path,
    )
    return RedirectResponse(target)


@router.post("/token", summary="Exchange an authorization code for tokens")
async def token(body: TokenRequest, service: DeviceIntegrationService = Depends(get_integrations)):
    response = await service.exchange.exchange(
        body.device_id or "",
        body.code or "",
        code_verifier=body.code_verifier,
        redirect_uri=body.redirect_uri,
    )
    return response.model_dump(exclude_none=True)


@router.post("/refresh/{device_id}", summary="Refresh stored tokens")
async def refresh(device_id: str, service: DeviceIntegrationService = Depends(get_integrations)):
    record = await service.refresh(device_id)
    return {
        "status": "refreshed",
        "device_id": device_id,
        "expires_at": record.expires_at.isoformat() if record.expires_at else None,
    }


async def connect_page(
    code: str | None = Query(None),
    provider: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    redirect_uri: str | None = Query(None, alias="redirectUri"),
    service: DeviceIntegrationService = Depends(get_integrations),
):
    """Landing page of the callback relay; mounted at ``settings.connect_path``."""
    if error:
        logger.warning("oauth.connect_error", provider=provider, error=error)
        return JSONResponse(status_code=400, content={"error": error, "provider": provider})
    if not code or not provider:
        raise InvalidRequestError("Missing required parameters")

    await service.complete_authorization(provider, code, state=state, redirect_uri=redirect_uri)
    status = await service.connection_status(provider)
    return {"connected": True, "device": status.model_dump(mode="json") if status else {"id": provider}}
