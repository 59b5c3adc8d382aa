"""FastAPI dependencies backed by objects built in the server lifespan."""

from __future__ import annotations

from fastapi import Request

from healthbot.config import Settings
from healthbot.integrations import DeviceIntegrationService


def get_integrations(request: Request) -> DeviceIntegrationService:
    return request.app.state.integrations


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings
