"""Tests for GATT decoding, the BLE client state machine and the manager."""

import asyncio

import pytest

from healthbot.bluetooth.client import (
    BluetoothDeviceClient,
    BluetoothState,
    DeviceClass,
    DiscoveredDevice,
    GattBackend,
    GattSession,
)
from healthbot.bluetooth.gatt import parse_heart_rate_measurement, parse_weight_measurement, uuid16
from healthbot.bluetooth.manager import BluetoothManager
from healthbot.errors import CapabilityError, DecodeError, IntegrationError
from healthbot.models import ReadingType

# ── Decoders ──────────────────────────────────────────────────


class TestHeartRateDecoding:
    def test_uint8(self):
        assert parse_heart_rate_measurement(bytes([0x00, 72])) == 72

    def test_uint16(self):
        assert parse_heart_rate_measurement(bytes([0x01, 72, 0x00])) == 72
        assert parse_heart_rate_measurement(bytes([0x01, 0x2C, 0x01])) == 300

    def test_extra_flag_bits_ignored(self):
        # sensor contact + energy expended flags, uint8 value
        assert parse_heart_rate_measurement(bytes([0x0E, 64, 0x10, 0x00])) == 64

    @pytest.mark.parametrize("payload", [b"", bytes([0x00]), bytes([0x01, 72])])
    def test_short_payload(self, payload):
        with pytest.raises(DecodeError):
            parse_heart_rate_measurement(payload)


class TestWeightDecoding:
    def test_si(self):
        # 14000 * 0.005 kg
        m = parse_weight_measurement(bytes([0x00, 0xB0, 0x36]))
        assert (m.weight, m.unit) == (70.0, "kg")
        assert m.in_kg() == 70.0

    def test_imperial(self):
        # 15000 * 0.01 lb
        m = parse_weight_measurement(bytes([0x01, 0x98, 0x3A]))
        assert (m.weight, m.unit) == (150.0, "lb")
        assert m.in_kg() == pytest.approx(68.039, abs=1e-3)

    def test_short_payload(self):
        with pytest.raises(DecodeError):
            parse_weight_measurement(bytes([0x00, 0xB0]))


def test_uuid16():
    assert uuid16(0x180D) == "0000180d-0000-1000-8000-00805f9b34fb"


# ── Fake backend ──────────────────────────────────────────────


class FakeSession(GattSession):
    def __init__(self, has_characteristic: bool = True, on_disconnect=None, drop_during: str | None = None) -> None:
        self.has_characteristic = has_characteristic
        self.on_disconnect = on_disconnect
        self.drop_during = drop_during
        self.handler = None
        self.notifying = False
        self.closed = False

    def _maybe_drop(self, step: str) -> None:
        if self.drop_during == step:
            self.on_disconnect()

    async def require_characteristic(self, service, characteristic):
        self._maybe_drop("require_characteristic")
        if not self.has_characteristic:
            raise IntegrationError("GATT characteristic not found", status_code=502)

    async def start_notify(self, characteristic, handler):
        self.characteristic = characteristic
        self.handler = handler
        self.notifying = True
        self._maybe_drop("start_notify")

    async def stop_notify(self, characteristic):
        self.notifying = False

    async def disconnect(self):
        self.closed = True

    def push(self, data: bytes) -> None:
        self.handler(data)


class FakeBackend(GattBackend):
    def __init__(self, *, available=True, device_name="Polar H10", has_characteristic=True, drop_during=None):
        self.available = available
        self.device_name = device_name
        self.has_characteristic = has_characteristic
        self.drop_during = drop_during
        self.sessions: list[FakeSession] = []
        self.on_disconnect = None

    async def ensure_available(self):
        if not self.available:
            raise CapabilityError("Bluetooth LE is not supported on this host")

    async def request_device(self, service, optional_services, timeout):
        if self.device_name is None:
            return None
        return DiscoveredDevice(address="AA:BB:CC:DD:EE:FF", name=self.device_name)

    async def open(self, device, on_disconnect):
        self.on_disconnect = on_disconnect
        session = FakeSession(self.has_characteristic, on_disconnect, self.drop_during)
        self.sessions.append(session)
        return session


class Collector:
    def __init__(self, fail_first: bool = False) -> None:
        self.values: list[float] = []
        self.fail_first = fail_first

    async def __call__(self, reading):
        if self.fail_first:
            self.fail_first = False
            raise RuntimeError("callback blew up")
        self.values.append(reading.value)


# ── Client ────────────────────────────────────────────────────


class TestBluetoothClient:
    async def test_connect_and_stream_in_order(self):
        backend, collector = FakeBackend(), Collector()
        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, backend, collector)
        assert client.state == BluetoothState.IDLE

        assert await client.connect() == "Polar H10"
        assert client.state == BluetoothState.STREAMING

        session = backend.sessions[0]
        for bpm in (60, 61, 62, 63):
            session.push(bytes([0x00, bpm]))
        await client.disconnect()

        assert collector.values == [60.0, 61.0, 62.0, 63.0]
        assert client.state == BluetoothState.DISCONNECTED
        assert session.closed and not session.notifying

    async def test_malformed_sample_is_dropped(self):
        backend, collector = FakeBackend(), Collector()
        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, backend, collector)
        await client.connect()

        backend.sessions[0].push(bytes([0x00]))
        backend.sessions[0].push(bytes([0x00, 80]))
        await client.disconnect()

        assert client.dropped_samples == 1
        assert collector.values == [80.0]

    async def test_callback_error_does_not_stop_stream(self):
        backend, collector = FakeBackend(), Collector(fail_first=True)
        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, backend, collector)
        await client.connect()

        backend.sessions[0].push(bytes([0x00, 70]))
        backend.sessions[0].push(bytes([0x00, 71]))
        await client.disconnect()

        assert collector.values == [71.0]
        assert client.delivered == 1

    async def test_scale_reports_kilograms(self):
        backend, collector = FakeBackend(device_name="Scale"), Collector()
        client = BluetoothDeviceClient(DeviceClass.SCALE, backend, collector)
        await client.connect()
        backend.sessions[0].push(bytes([0x01, 0x98, 0x3A]))
        await client.disconnect()
        assert collector.values == [pytest.approx(68.039, abs=1e-3)]

    async def test_link_loss_does_not_reconnect(self):
        backend, collector = FakeBackend(), Collector()
        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, backend, collector)
        await client.connect()
        backend.sessions[0].push(bytes([0x00, 90]))

        backend.on_disconnect()
        assert client.state == BluetoothState.DISCONNECTED
        for _ in range(5):
            await asyncio.sleep(0)

        assert collector.values == [90.0]
        assert len(backend.sessions) == 1

        # reconnecting is an explicit call
        await client.connect()
        assert client.state == BluetoothState.STREAMING
        assert len(backend.sessions) == 2
        await client.disconnect()

    async def test_no_device_found(self):
        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, FakeBackend(device_name=None), Collector())
        with pytest.raises(IntegrationError) as exc_info:
            await client.connect()
        assert exc_info.value.status_code == 404
        assert client.state == BluetoothState.IDLE

    async def test_unsupported_host(self):
        client = BluetoothDeviceClient(DeviceClass.SCALE, FakeBackend(available=False), Collector())
        with pytest.raises(CapabilityError):
            await client.connect()
        assert client.state == BluetoothState.IDLE

    async def test_missing_characteristic(self):
        backend = FakeBackend(has_characteristic=False)
        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, backend, Collector())
        with pytest.raises(IntegrationError):
            await client.connect()
        assert client.state == BluetoothState.DISCONNECTED
        assert backend.sessions[0].closed

    async def test_link_lost_while_subscribing(self):
        backend = FakeBackend(drop_during="start_notify")
        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, backend, Collector())

        with pytest.raises(IntegrationError) as exc_info:
            await client.connect()

        assert exc_info.value.status_code == 502
        assert client.state == BluetoothState.DISCONNECTED
        assert not client.is_streaming
        assert client._pump is None
        assert client._link_lost_task is None
        assert backend.sessions[0].closed

    async def test_link_lost_while_discovering_services(self):
        backend = FakeBackend(drop_during="require_characteristic")
        client = BluetoothDeviceClient(DeviceClass.HEART_RATE, backend, Collector())

        with pytest.raises(IntegrationError, match="lost"):
            await client.connect()

        assert client.state == BluetoothState.DISCONNECTED
        assert client._pump is None
        assert not backend.sessions[0].notifying

        # a later explicit connect starts cleanly
        backend.drop_during = None
        assert await client.connect() == "Polar H10"
        assert client.state == BluetoothState.STREAMING
        await client.disconnect()


# ── Manager ───────────────────────────────────────────────────


class TestBluetoothManager:
    async def test_readings_are_stored_and_marker_kept(self, kv, readings):
        backend = FakeBackend()
        manager = BluetoothManager(kv, readings, backend_factory=lambda: backend)

        assert await manager.connect(DeviceClass.HEART_RATE) == "Polar H10"
        connected, connected_at = await manager.status(DeviceClass.HEART_RATE)
        assert connected and connected_at is not None

        backend.sessions[0].push(bytes([0x00, 72]))
        await manager.disconnect(DeviceClass.HEART_RATE)

        stored = await readings.get_by_type(ReadingType.HEART_RATE)
        assert [(r.source, r.value, r.unit) for r in stored] == [("web_bluetooth_hr", 72.0, "bpm")]
        assert await manager.status(DeviceClass.HEART_RATE) == (False, None)

    async def test_classes_are_independent(self, kv, readings):
        backend = FakeBackend()
        manager = BluetoothManager(kv, readings, backend_factory=lambda: backend)
        await manager.connect(DeviceClass.HEART_RATE)
        await manager.connect(DeviceClass.SCALE)

        await manager.disconnect(DeviceClass.SCALE)
        assert manager.client(DeviceClass.HEART_RATE).is_streaming
        await manager.disconnect_all()
