"""Per-class Bluetooth clients wired to local health-data storage."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Callable

import structlog

from healthbot.bluetooth.client import (
    BluetoothDeviceClient,
    BluetoothState,
    DeviceClass,
    GattBackend,
    PROFILES,
)
from healthbot.models import HealthReading, utcnow
from healthbot.storage.kv import KeyValueStore
from healthbot.storage.readings import HealthDataStore

logger = structlog.get_logger(__name__)

_MARKER_PREFIX = "bluetooth_connected:"


def _default_backend() -> GattBackend:
    from healthbot.bluetooth.bleak_backend import BleakGattBackend

    return BleakGattBackend()


class BluetoothManager:
    """Own one :class:`BluetoothDeviceClient` per device class.

    Heart-rate and scale clients are independent and may stream at the
    same time.  Every decoded reading is stored through the
    :class:`HealthDataStore`; a connection marker (device name, connect
    time) is persisted so status survives a restart of the API process.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        readings: HealthDataStore,
        backend_factory: Callable[[], GattBackend] | None = None,
    ) -> None:
        self._kv = kv
        self._readings = readings
        self._backend_factory = backend_factory or _default_backend
        self._backend: GattBackend | None = None
        self._clients: dict[DeviceClass, BluetoothDeviceClient] = {}

    def client(self, device_class: DeviceClass) -> BluetoothDeviceClient | None:
        return self._clients.get(device_class)

    async def connect(self, device_class: DeviceClass) -> str:
        client = self._clients.get(device_class)
        if client is None or client.state == BluetoothState.DISCONNECTED:
            if self._backend is None:
                self._backend = self._backend_factory()
            client = BluetoothDeviceClient(device_class, self._backend, self._store_reading)
            self._clients[device_class] = client

        name = await client.connect()
        marker = {"deviceName": name, "connectedAt": utcnow().isoformat()}
        await self._kv.put(_MARKER_PREFIX + PROFILES[device_class].device_id, json.dumps(marker))
        return name

    async def disconnect(self, device_class: DeviceClass) -> None:
        client = self._clients.pop(device_class, None)
        if client is not None:
            await client.disconnect()
        await self._kv.delete(_MARKER_PREFIX + PROFILES[device_class].device_id)

    async def disconnect_all(self) -> None:
        for device_class in list(self._clients):
            client = self._clients.pop(device_class)
            await client.disconnect()

    async def status(self, device_class: DeviceClass) -> tuple[bool, datetime | None]:
        """(connected, connected_at) for the catalog entry of *device_class*."""
        client = self._clients.get(device_class)
        raw = await self._kv.get(_MARKER_PREFIX + PROFILES[device_class].device_id)
        connected_at = None
        if raw:
            try:
                connected_at = datetime.fromisoformat(json.loads(raw)["connectedAt"])
            except (ValueError, KeyError, TypeError):
                logger.warning("bluetooth.corrupt_marker", device_class=device_class.value)
        if client is not None:
            return client.is_streaming, connected_at
        return raw is not None, connected_at

    async def _store_reading(self, reading: HealthReading) -> None:
        await self._readings.store_health_data([reading])
