"""Request / response models shared across API route modules."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from healthbot.models import ReadingType


class TokenRequest(BaseModel):
    """Body of ``POST /api/oauth/token`` (camelCase, as sent by the web client).

    Every field is optional here so missing values surface as the
    integration layer's own ``400 Missing required parameters``.
    """

    model_config = ConfigDict(populate_by_name=True)

    device_id: str | None = Field(None, alias="deviceId")
    code: str | None = None
    code_verifier: str | None = Field(None, alias="codeVerifier")
    redirect_uri: str | None = Field(None, alias="redirectUri")


class SyncRequest(BaseModel):
    kind: str
    start: datetime | None = None
    end: datetime | None = None


class ManualReadingRequest(BaseModel):
    type: ReadingType
    value: float
    unit: str | None = None  # defaults to the canonical unit for ``type``
    timestamp: datetime | None = None
    metadata: dict[str, Any] = {}
