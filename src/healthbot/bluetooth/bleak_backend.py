"""GATT backend built on *bleak* (BlueZ / CoreBluetooth / WinRT)."""

from __future__ import annotations

from typing import Callable

import structlog
from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from healthbot.bluetooth.client import DiscoveredDevice, GattBackend, GattSession
from healthbot.bluetooth.gatt import uuid16
from healthbot.errors import CapabilityError, IntegrationError

logger = structlog.get_logger(__name__)


class BleakGattSession(GattSession):
    def __init__(self, client: BleakClient) -> None:
        self._client = client

    async def require_characteristic(self, service: int, characteristic: int) -> None:
        svc = self._client.services.get_service(uuid16(service))
        if svc is None:
            raise IntegrationError(f"GATT service 0x{service:04X} not found", status_code=502)
        if svc.get_characteristic(uuid16(characteristic)) is None:
            raise IntegrationError(f"GATT characteristic 0x{characteristic:04X} not found", status_code=502)

    async def start_notify(self, characteristic: int, handler: Callable[[bytes], None]) -> None:
        try:
            await self._client.start_notify(uuid16(characteristic), lambda _sender, data: handler(bytes(data)))
        except BleakError as exc:
            raise IntegrationError("Failed to subscribe to notifications", str(exc), status_code=502) from exc

    async def stop_notify(self, characteristic: int) -> None:
        try:
            await self._client.stop_notify(uuid16(characteristic))
        except BleakError as exc:
            raise IntegrationError("Failed to unsubscribe", str(exc), status_code=502) from exc

    async def disconnect(self) -> None:
        try:
            await self._client.disconnect()
        except BleakError as exc:
            raise IntegrationError("Failed to disconnect", str(exc), status_code=502) from exc


class BleakGattBackend(GattBackend):
    """Scan and connect through the host's Bluetooth adapter."""

    def __init__(self) -> None:
        self._available: bool | None = None

    async def ensure_available(self) -> None:
        if self._available:
            return
        try:
            # a start/stop cycle fails fast when there is no usable adapter
            async with BleakScanner():
                pass
        except (BleakError, OSError) as exc:
            self._available = False
            logger.error("bluetooth.unavailable", error=str(exc))
            raise CapabilityError("Bluetooth LE is not supported on this host", str(exc)) from exc
        self._available = True

    async def request_device(
        self, service: int, optional_services: tuple[int, ...], timeout: float
    ) -> DiscoveredDevice | None:
        try:
            device = await BleakScanner.find_device_by_filter(
                lambda _dev, adv: uuid16(service) in [u.lower() for u in adv.service_uuids],
                timeout=timeout,
                service_uuids=[uuid16(service)],
            )
        except BleakError as exc:
            raise CapabilityError("Bluetooth scan failed", str(exc)) from exc
        if device is None:
            return None
        return DiscoveredDevice(address=device.address, name=device.name, handle=device)

    async def open(self, device: DiscoveredDevice, on_disconnect: Callable[[], None]) -> GattSession:
        client = BleakClient(device.handle or device.address, disconnected_callback=lambda _c: on_disconnect())
        try:
            await client.connect()
        except (BleakError, TimeoutError) as exc:
            raise IntegrationError("Failed to connect to GATT server", str(exc), status_code=502) from exc
        return BleakGattSession(client)
