"""Shared Pydantic models used across the integration layer."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

# ── Enums ─────────────────────────────────────────────────────


class ProviderId(str, Enum):
    """OAuth 2 providers with a token-exchange integration."""

    GOOGLE_FIT = "google_fit"
    FITBIT = "fitbit"
    WITHINGS = "withings"
    OURA = "oura"
    STRAVA = "strava"


class ReadingType(str, Enum):
    """Categories of health readings kept in local storage."""

    HEART_RATE = "heart_rate"
    STEPS = "steps"
    SLEEP = "sleep"
    WEIGHT = "weight"
    BLOOD_GLUCOSE = "blood_glucose"
    BLOOD_PRESSURE = "blood_pressure"
    OXYGEN = "oxygen"
    TEMPERATURE = "temperature"
    ACTIVITY = "activity"
    NUTRITION = "nutrition"


class ConnectionType(str, Enum):
    OAUTH = "oauth"
    WEB_BLUETOOTH = "web-bluetooth"
    MANUAL = "manual"


# One unit per reading type, applied by every fetcher and decoder.
UNITS: dict[ReadingType, str] = {
    ReadingType.STEPS: "steps",
    ReadingType.HEART_RATE: "bpm",
    ReadingType.SLEEP: "minutes",
    ReadingType.WEIGHT: "kg",
    ReadingType.BLOOD_GLUCOSE: "mg/dL",
    ReadingType.BLOOD_PRESSURE: "mmHg",
    ReadingType.OXYGEN: "%",
    ReadingType.TEMPERATURE: "°C",
    ReadingType.ACTIVITY: "score",
    ReadingType.NUTRITION: "kcal",
}


def unit_for(reading_type: ReadingType | str) -> str:
    """Return the canonical unit for a reading type (``""`` if unknown)."""
    try:
        return UNITS[ReadingType(reading_type)]
    except ValueError:
        return ""


def utcnow() -> datetime:
    return datetime.now(UTC)


# ── Health data ───────────────────────────────────────────────


class HealthReading(BaseModel):
    """A single normalised reading from a provider, a BLE device or manual entry."""

    source: str
    timestamp: datetime
    type: ReadingType
    value: float
    unit: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def key(self) -> tuple[str, str, str]:
        """Deduplication key: (source, timestamp, type)."""
        return (self.source, self.timestamp.isoformat(), self.type.value)


# ── OAuth ─────────────────────────────────────────────────────


class TokenRecord(BaseModel):
    """Stored credentials for one connected provider."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


class TokenResponse(BaseModel):
    """Normalised body returned by the token endpoint."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"
    scope: str | None = None

    def to_record(self, now: datetime | None = None) -> TokenRecord:
        expires_at = None
        if self.expires_in:
            expires_at = (now or utcnow()) + timedelta(seconds=self.expires_in)
        return TokenRecord(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expires_at=expires_at,
            token_type=self.token_type,
            scope=self.scope,
        )


class OAuthSession(BaseModel):
    """Pending authorization round-trip, keyed by device id."""

    device_id: str
    code_verifier: str
    state: str
    created_at: datetime = Field(default_factory=utcnow)


# ── Presentation ──────────────────────────────────────────────


class DeviceConnection(BaseModel):
    """Connection status of a catalog device, derived from tokens / BLE state."""

    id: str
    name: str
    description: str = ""
    connection_type: ConnectionType
    connected: bool = False
    last_sync: datetime | None = None
    metrics: list[str] = Field(default_factory=list)
    supported_features: list[str] = Field(default_factory=list)
