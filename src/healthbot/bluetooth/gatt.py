"""Bluetooth SIG GATT identifiers and measurement decoders.

Layouts (little-endian):

* Heart Rate Measurement (0x2A37) — byte 0 flags; bit 0 set means the
  value is a ``uint16`` at offset 1, otherwise a ``uint8`` at offset 1.
* Weight Measurement (0x2A9D) — byte 0 flags; bit 0 set means imperial
  (resolution 0.01 lb), otherwise SI (resolution 0.005 kg); the raw
  ``uint16`` weight is at offset 1.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from healthbot.errors import DecodeError

# ── Assigned numbers ──────────────────────────────────────────

HEART_RATE_SERVICE = 0x180D
WEIGHT_SCALE_SERVICE = 0x181D
BLOOD_PRESSURE_SERVICE = 0x1810
GLUCOSE_SERVICE = 0x1808
HEALTH_THERMOMETER_SERVICE = 0x1809
BODY_COMPOSITION_SERVICE = 0x181B

HEART_RATE_MEASUREMENT = 0x2A37
WEIGHT_MEASUREMENT = 0x2A9D
BLOOD_PRESSURE_MEASUREMENT = 0x2A35
GLUCOSE_MEASUREMENT = 0x2A18
TEMPERATURE_MEASUREMENT = 0x2A1C
BODY_COMPOSITION_MEASUREMENT = 0x2A9C

_SIG_BASE_SUFFIX = "-0000-1000-8000-00805f9b34fb"

LB_RESOLUTION = 0.01
KG_RESOLUTION = 0.005
KG_PER_LB = 0.45359237


def uuid16(value: int) -> str:
    """Expand a 16-bit assigned number to the full 128-bit UUID string."""
    return f"0000{value:04x}{_SIG_BASE_SUFFIX}"


# ── Decoders ──────────────────────────────────────────────────


def _require(data: bytes, size: int, what: str) -> None:
    if len(data) < size:
        raise DecodeError(f"Malformed {what}", f"expected at least {size} bytes, got {len(data)}")


def parse_heart_rate_measurement(data: bytes | bytearray) -> int:
    """Return beats per minute from a Heart Rate Measurement payload."""
    _require(data, 2, "heart rate measurement")
    flags = data[0]
    if flags & 0x01:
        _require(data, 3, "heart rate measurement")
        return struct.unpack_from("<H", data, 1)[0]
    return data[1]


@dataclass(frozen=True)
class WeightMeasurement:
    weight: float
    unit: str  # "kg" or "lb"

    def in_kg(self) -> float:
        if self.unit == "lb":
            return self.weight * KG_PER_LB
        return self.weight


def parse_weight_measurement(data: bytes | bytearray) -> WeightMeasurement:
    """Decode a Weight Measurement payload into weight and unit."""
    _require(data, 3, "weight measurement")
    flags = data[0]
    raw = struct.unpack_from("<H", data, 1)[0]
    if flags & 0x01:
        return WeightMeasurement(weight=round(raw * LB_RESOLUTION, 3), unit="lb")
    return WeightMeasurement(weight=round(raw * KG_RESOLUTION, 3), unit="kg")
