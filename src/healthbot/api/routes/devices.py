"""Device catalog routes — status, disconnect and on-demand sync."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from healthbot.api.dependencies import get_integrations
from healthbot.api.schemas import SyncRequest
from healthbot.integrations import DeviceIntegrationService
from healthbot.models import DeviceConnection

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/devices", tags=["devices"])


@router.get("", summary="List devices with connection status", response_model=list[DeviceConnection])
async def list_devices(service: DeviceIntegrationService = Depends(get_integrations)):
    return await service.connection_statuses()


@router.delete("/{device_id}", summary="Disconnect a device")
async def disconnect_device(device_id: str, service: DeviceIntegrationService = Depends(get_integrations)):
    await service.disconnect(device_id)
    return {"status": "disconnected", "device_id": device_id}


@router.post("/{device_id}/sync", summary="Fetch readings from a provider")
async def sync_device(
    device_id: str,
    req: SyncRequest,
    service: DeviceIntegrationService = Depends(get_integrations),
):
    result = await service.sync(device_id, req.kind, req.start, req.end)
    if result.error is not None:
        logger.info("devices.sync_failed", device=device_id, kind=req.kind, error=result.error.message)
        return JSONResponse(
            status_code=result.error.status_code,
            content={**result.error.to_dict(), "device_id": device_id, "kind": req.kind},
        )
    return {
        "device_id": device_id,
        "kind": req.kind,
        "fetched": len(result.readings),
        "stored": result.stored,
    }
