"""FastAPI application — OAuth relay, device status, health data, Bluetooth.

The lifespan wires the infrastructure in order:
- key-value storage (memory or SQLite)
- token / session / health-data stores, inside the integration service
- the Bluetooth manager
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Callable

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from healthbot.api.middleware import setup_middleware
from healthbot.api.routes.bluetooth import router as bluetooth_router
from healthbot.api.routes.devices import router as devices_router
from healthbot.api.routes.health_data import router as health_data_router
from healthbot.api.routes.oauth import connect_page, router as oauth_router
from healthbot.bluetooth.client import GattBackend
from healthbot.config import Settings, get_settings
from healthbot.errors import IntegrationError
from healthbot.integrations import DeviceIntegrationService
from healthbot.storage.database import dispose_engines, init_db
from healthbot.storage.kv import create_store

logger = structlog.get_logger(__name__)


async def _integration_error_handler(request: Request, exc: IntegrationError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("http.integration_error", path=request.url.path, status=exc.status_code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    settings: Settings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    bluetooth_backend: Callable[[], GattBackend] | None = None,
) -> FastAPI:
    """Build the application.

    ``http_client`` and ``bluetooth_backend`` replace the outbound HTTP
    client and the BLE backend factory (tests pass doubles).
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.storage_backend == "sqlite":
            await init_db(settings.database_url)
            logger.info("server.db_ready")
        kv = create_store(settings)

        service = DeviceIntegrationService(
            kv, settings, http_client=http_client, bluetooth_backend=bluetooth_backend
        )

        app.state.settings = settings
        app.state.integrations = service
        logger.info("server.started", storage=settings.storage_backend)

        yield

        await service.close()
        await kv.close()
        if settings.storage_backend == "sqlite":
            await dispose_engines()
        logger.info("server.stopped")

    app = FastAPI(
        title="HealthBot Device Integrations",
        description="OAuth 2 wearable providers, Bluetooth LE devices and local health data.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    setup_middleware(app, settings)
    app.add_exception_handler(IntegrationError, _integration_error_handler)

    app.include_router(oauth_router)
    app.include_router(devices_router)
    app.include_router(health_data_router)
    app.include_router(bluetooth_router)
    app.add_api_route(settings.connect_path, connect_page, methods=["GET"], tags=["oauth"])

    @app.get("/health", tags=["system"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
