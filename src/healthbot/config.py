"""Centralised application settings loaded from environment / .env file."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_DEFAULT_DB_URL = f"sqlite+aiosqlite:///{_PROJECT_ROOT / 'data' / 'healthbot.db'}"


class Settings(BaseSettings):
    """All runtime configuration for the HealthBot device-integration service.

    Values are read from environment variables first, then from a *.env* file
    located at the project root.  Client IDs are public values (they end up
    in authorization URLs); client secrets are server-only and are never
    returned by any endpoint or written to the log.
    """

    model_config = SettingsConfigDict(
        env_file=str(_PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── OAuth 2 provider credentials ──────────────────────────
    google_fit_client_id: str = ""
    google_fit_client_secret: str = ""
    fitbit_client_id: str = ""
    fitbit_client_secret: str = ""
    withings_client_id: str = ""
    withings_client_secret: str = ""
    oura_client_id: str = ""
    oura_client_secret: str = ""
    strava_client_id: str = ""
    strava_client_secret: str = ""

    # ── OAuth flow ────────────────────────────────────────────
    public_base_url: str = "http://localhost:8000"  # origin of redirect URIs
    connect_path: str = "/connect"

    # ── Outbound HTTP behaviour ───────────────────────────────
    oauth_max_attempts: int = 3
    oauth_request_timeout: float = 15.0
    oauth_backoff_seconds: float = 1.0
    oauth_backoff: Literal["exponential", "fixed"] = "exponential"
    data_request_timeout: float = 30.0

    # ── Storage ───────────────────────────────────────────────
    storage_backend: Literal["memory", "sqlite"] = "sqlite"
    database_url: str = _DEFAULT_DB_URL
    health_data_max_records: int = 1000

    # ── API server ────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = int(os.getenv("PORT", "8000"))
    api_secret_key: str = "change-me-to-a-random-secret"
    cors_origins: str = "*"  # comma-separated origins, or "*" for all

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    def client_id_for(self, provider_id: str) -> str:
        return getattr(self, f"{provider_id}_client_id", "")

    def client_secret_for(self, provider_id: str) -> str:
        return getattr(self, f"{provider_id}_client_secret", "")


@lru_cache
def get_settings() -> Settings:
    """Return a cached :class:`Settings` singleton."""
    return Settings()
