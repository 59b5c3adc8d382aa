"""Bluetooth LE routes — start and stop streaming from a device class."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from healthbot.api.dependencies import get_integrations
from healthbot.bluetooth.client import DeviceClass
from healthbot.integrations import DeviceIntegrationService

router = APIRouter(prefix="/api/bluetooth", tags=["bluetooth"])


@router.post("/{device_class}/connect", summary="Scan, connect and stream")
async def connect(device_class: DeviceClass, service: DeviceIntegrationService = Depends(get_integrations)):
    name = await service.bluetooth.connect(device_class)
    return {"device_class": device_class.value, "device_name": name, "state": "streaming"}


@router.get("/{device_class}", summary="Streaming state of a device class")
async def status(device_class: DeviceClass, service: DeviceIntegrationService = Depends(get_integrations)):
    client = service.bluetooth.client(device_class)
    if client is None:
        return {"device_class": device_class.value, "state": "idle"}
    return {
        "device_class": device_class.value,
        "state": client.state.value,
        "device_name": client.device_name,
        "delivered": client.delivered,
        "dropped_samples": client.dropped_samples,
    }


@router.delete("/{device_class}", summary="Stop streaming and disconnect")
async def disconnect(device_class: DeviceClass, service: DeviceIntegrationService = Depends(get_integrations)):
    await service.bluetooth.disconnect(device_class)
    return {"device_class": device_class.value, "state": "disconnected"}
