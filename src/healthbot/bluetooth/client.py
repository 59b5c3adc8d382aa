"""Bluetooth LE GATT client for heart-rate monitors and smart scales.

Each :class:`BluetoothDeviceClient` drives one device class through

    idle → scanning → connected → streaming → disconnected

Notifications are decoded on arrival and queued; a single consumer task
hands them to the caller's callback in the order the device sent them.
A malformed payload drops that one sample, never the subscription.  A
dropped GATT link moves the client to ``disconnected``; reconnecting is
always an explicit :meth:`connect` call.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog

from healthbot.bluetooth import gatt
from healthbot.devices import BLUETOOTH_HR_ID, BLUETOOTH_SCALE_ID
from healthbot.errors import DecodeError, IntegrationError
from healthbot.models import HealthReading, ReadingType, unit_for, utcnow

logger = structlog.get_logger(__name__)

ReadingCallback = Callable[[HealthReading], Awaitable[None]]


class BluetoothState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTED = "connected"
    STREAMING = "streaming"
    DISCONNECTED = "disconnected"


class DeviceClass(str, Enum):
    HEART_RATE = "heart_rate"
    SCALE = "scale"


# ── Profiles ──────────────────────────────────────────────────


def _heart_rate_reading(data: bytes) -> HealthReading:
    bpm = gatt.parse_heart_rate_measurement(data)
    return HealthReading(
        source=BLUETOOTH_HR_ID,
        timestamp=utcnow(),
        type=ReadingType.HEART_RATE,
        value=float(bpm),
        unit=unit_for(ReadingType.HEART_RATE),
    )


def _weight_reading(data: bytes) -> HealthReading:
    measurement = gatt.parse_weight_measurement(data)
    return HealthReading(
        source=BLUETOOTH_SCALE_ID,
        timestamp=utcnow(),
        type=ReadingType.WEIGHT,
        value=round(measurement.in_kg(), 3),
        unit=unit_for(ReadingType.WEIGHT),
        metadata={"measured": measurement.weight, "measured_unit": measurement.unit},
    )


@dataclass(frozen=True)
class DeviceProfile:
    device_id: str
    label: str
    service: int
    characteristic: int
    optional_services: tuple[int, ...]
    to_reading: Callable[[bytes], HealthReading]


PROFILES: dict[DeviceClass, DeviceProfile] = {
    DeviceClass.HEART_RATE: DeviceProfile(
        device_id=BLUETOOTH_HR_ID,
        label="Heart Rate Monitor",
        service=gatt.HEART_RATE_SERVICE,
        characteristic=gatt.HEART_RATE_MEASUREMENT,
        optional_services=(gatt.HEART_RATE_SERVICE,),
        to_reading=_heart_rate_reading,
    ),
    DeviceClass.SCALE: DeviceProfile(
        device_id=BLUETOOTH_SCALE_ID,
        label="Smart Scale",
        service=gatt.WEIGHT_SCALE_SERVICE,
        characteristic=gatt.WEIGHT_MEASUREMENT,
        optional_services=(gatt.WEIGHT_SCALE_SERVICE, gatt.BODY_COMPOSITION_SERVICE),
        to_reading=_weight_reading,
    ),
}


# ── Backend port ──────────────────────────────────────────────


@dataclass
class DiscoveredDevice:
    address: str
    name: str | None
    handle: Any = None


class GattSession(ABC):
    """An open GATT connection to one peripheral."""

    @abstractmethod
    async def require_characteristic(self, service: int, characteristic: int) -> None:
        """Raise :class:`IntegrationError` unless the characteristic exists."""

    @abstractmethod
    async def start_notify(self, characteristic: int, handler: Callable[[bytes], None]) -> None:
        """Subscribe *handler* to value-changed notifications."""

    @abstractmethod
    async def stop_notify(self, characteristic: int) -> None:
        """Unsubscribe from notifications."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the GATT connection."""


class GattBackend(ABC):
    """Platform access to Bluetooth LE."""

    @abstractmethod
    async def ensure_available(self) -> None:
        """Raise :class:`~healthbot.errors.CapabilityError` when BLE is unusable."""

    @abstractmethod
    async def request_device(
        self, service: int, optional_services: tuple[int, ...], timeout: float
    ) -> DiscoveredDevice | None:
        """Scan for a peripheral advertising *service*."""

    @abstractmethod
    async def open(self, device: DiscoveredDevice, on_disconnect: Callable[[], None]) -> GattSession:
        """Connect to the device's GATT server."""


# ── Client ────────────────────────────────────────────────────


class BluetoothDeviceClient:
    """Stream decoded measurements from one BLE device class.

    Usage::

        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, backend, on_reading)
        name = await client.connect()
        ...
        await client.disconnect()
    """

    def __init__(
        self,
        device_class: DeviceClass,
        backend: GattBackend,
        on_reading: ReadingCallback,
        *,
        scan_timeout: float = 10.0,
    ) -> None:
        self.device_class = device_class
        self.profile = PROFILES[device_class]
        self._backend = backend
        self._on_reading = on_reading
        self._scan_timeout = scan_timeout
        self._state = BluetoothState.IDLE
        self._session: GattSession | None = None
        self._queue: asyncio.Queue[HealthReading | None] = asyncio.Queue()
        self._pump: asyncio.Task | None = None
        self._link_lost_task: asyncio.Task | None = None
        self.device_name: str | None = None
        self.dropped_samples = 0
        self.delivered = 0

    @property
    def state(self) -> BluetoothState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return self._state == BluetoothState.STREAMING

    # ── Lifecycle ─────────────────────────────────────────────

    async def connect(self) -> str:
        """Scan, connect, subscribe; return the device name.

        Raises
        ------
        CapabilityError
            Bluetooth LE is not available on this host (not retried).
        IntegrationError
            No device found, the GATT service / characteristic is missing,
            or the link dropped before streaming started.
        """
        if self._state in (BluetoothState.CONNECTED, BluetoothState.STREAMING):
            return self.device_name or self.profile.label

        await self._settle_link_lost()
        await self._backend.ensure_available()

        self._state = BluetoothState.SCANNING
        logger.info("bluetooth.scanning", device_class=self.device_class.value)
        try:
            device = await self._backend.request_device(
                self.profile.service, self.profile.optional_services, self._scan_timeout
            )
        except IntegrationError:
            self._state = BluetoothState.IDLE
            raise
        if device is None:
            self._state = BluetoothState.IDLE
            raise IntegrationError(f"No {self.profile.label} found", status_code=404)

        self.device_name = device.name or self.profile.label
        logger.info("bluetooth.device_selected", device_class=self.device_class.value, name=self.device_name)

        session: GattSession | None = None
        try:
            session = await self._backend.open(device, self._handle_link_lost)
            self._raise_if_link_lost()
            self._session = session
            self._state = BluetoothState.CONNECTED
            await session.require_characteristic(self.profile.service, self.profile.characteristic)
            self._raise_if_link_lost()
            self._pump = asyncio.create_task(self._deliver())
            await session.start_notify(self.profile.characteristic, self._handle_notification)
            self._raise_if_link_lost()
        except IntegrationError:
            await self._teardown(session)
            raise

        self._state = BluetoothState.STREAMING
        logger.info("bluetooth.streaming", device_class=self.device_class.value, name=self.device_name)
        return self.device_name

    async def disconnect(self) -> None:
        """Stop streaming and close the link (explicit user action)."""
        if self._session is not None and self._state == BluetoothState.STREAMING:
            try:
                await self._session.stop_notify(self.profile.characteristic)
            except IntegrationError as exc:
                logger.warning("bluetooth.stop_notify_failed", error=exc.message)
        await self._teardown()
        logger.info("bluetooth.disconnected", device_class=self.device_class.value)

    async def _teardown(self, opened: GattSession | None = None) -> None:
        session = self._session or opened
        self._session = None
        self._state = BluetoothState.DISCONNECTED
        if session is not None:
            try:
                await session.disconnect()
            except IntegrationError as exc:
                logger.warning("bluetooth.disconnect_failed", error=exc.message)
        await self._stop_pump()
        await self._settle_link_lost()

    def _raise_if_link_lost(self) -> None:
        if self._state == BluetoothState.DISCONNECTED:
            raise IntegrationError(f"Connection to {self.profile.label} lost", status_code=502)

    async def _settle_link_lost(self) -> None:
        task, self._link_lost_task = self._link_lost_task, None
        if task is not None:
            await task

    async def _stop_pump(self) -> None:
        pump, self._pump = self._pump, None
        if pump is None:
            return
        # readings already queued are delivered before the pump exits
        self._queue.put_nowait(None)
        await pump

    # ── Notifications ─────────────────────────────────────────

    def _handle_notification(self, data: bytes) -> None:
        try:
            reading = self.profile.to_reading(bytes(data))
        except DecodeError as exc:
            self.dropped_samples += 1
            logger.warning(
                "bluetooth.sample_dropped",
                device_class=self.device_class.value,
                reason=exc.details or exc.message,
            )
            return
        self._queue.put_nowait(reading)

    def _handle_link_lost(self) -> None:
        if self._state == BluetoothState.DISCONNECTED:
            return
        logger.warning("bluetooth.connection_lost", device_class=self.device_class.value)
        self._session = None
        self._state = BluetoothState.DISCONNECTED
        if self._pump is not None:
            self._link_lost_task = asyncio.get_running_loop().create_task(self._stop_pump())

    async def _deliver(self) -> None:
        while True:
            reading = await self._queue.get()
            if reading is None:
                return
            await self._emit(reading)

    async def _emit(self, reading: HealthReading) -> None:
        try:
            await self._on_reading(reading)
            self.delivered += 1
        except Exception:
            logger.exception("bluetooth.callback_error", device_class=self.device_class.value)
