"""Tests for the end-to-end device integration flow."""

from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from healthbot.errors import InvalidRequestError, NotConnectedError
from healthbot.integrations import DeviceIntegrationService
from healthbot.models import ConnectionType, ReadingType, TokenRecord


class FakeProviders:
    """Answers token requests and Oura data requests."""

    def __init__(self) -> None:
        self.token_forms: list[dict[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/token") or "oauth2" in request.url.path:
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.token_forms.append(form)
            if form["grant_type"] == "refresh_token":
                return httpx.Response(200, json={"access_token": "fresh", "expires_in": 3600})
            return httpx.Response(
                200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 3600}
            )
        if request.url.path == "/v2/usercollection/sleep":
            return httpx.Response(
                200,
                json={"data": [{"day": "2024-03-01", "total_sleep_duration": 25200, "score": 80}]},
            )
        return httpx.Response(404, text="not found")


@pytest.fixture
def providers() -> FakeProviders:
    return FakeProviders()


@pytest.fixture
def service(kv, settings, policy, providers, mock_http) -> DeviceIntegrationService:
    return DeviceIntegrationService(kv, settings, http_client=mock_http(providers), policy=policy)


class TestAuthorizationFlow:
    async def test_complete_uses_stored_verifier(self, service, providers):
        await service.authorization_url("oura")
        session = await service.sessions.peek("oura")

        record = await service.complete_authorization("oura", "the-code", state="oura")

        assert record.access_token == "at"
        assert providers.token_forms[0]["code_verifier"] == session.code_verifier
        assert await service.tokens.is_valid("oura")
        # the pending session is consumed
        assert await service.sessions.peek("oura") is None

    async def test_without_pending_session(self, service):
        with pytest.raises(InvalidRequestError, match="No pending authorization"):
            await service.complete_authorization("oura", "the-code")

    async def test_state_mismatch(self, service, providers):
        await service.authorization_url("fitbit")
        with pytest.raises(InvalidRequestError, match="state"):
            await service.complete_authorization("fitbit", "the-code", state="oura")
        assert providers.token_forms == []
        # a mismatched callback does not burn the pending session
        assert await service.sessions.peek("fitbit") is not None

    async def test_unconfigured_provider(self, service):
        assert await service.authorization_url("strava") is None


class TestRefresh:
    async def test_keeps_refresh_token_when_omitted(self, service, providers):
        await service.tokens.put("oura", TokenRecord(access_token="old", refresh_token="keep-me"))
        record = await service.refresh("oura")

        assert record.access_token == "fresh"
        assert record.refresh_token == "keep-me"
        assert providers.token_forms[0]["refresh_token"] == "keep-me"

    async def test_without_refresh_token(self, service):
        with pytest.raises(NotConnectedError):
            await service.refresh("oura")


class TestSync:
    async def test_sync_stores_readings(self, service):
        await service.tokens.put("oura", TokenRecord(access_token="at"))
        result = await service.sync(
            "oura", "sleep", datetime(2024, 3, 1, tzinfo=UTC), datetime(2024, 3, 2, tzinfo=UTC)
        )

        assert result.ok
        assert result.stored == 1
        stored = await service.readings.get_by_type(ReadingType.SLEEP)
        assert stored[0].value == 420.0

        again = await service.sync(
            "oura", "sleep", datetime(2024, 3, 1, tzinfo=UTC), datetime(2024, 3, 2, tzinfo=UTC)
        )
        assert again.stored == 0

    async def test_not_connected_is_reported(self, service):
        result = await service.sync("fitbit", "steps")
        assert isinstance(result.error, NotConnectedError)
        assert result.readings == []

    async def test_provider_without_fetcher(self, service):
        result = await service.sync("strava", "steps")
        assert result.error is not None
        assert result.error.status_code == 400


class TestStatuses:
    async def test_catalog_status(self, service):
        expired = datetime.now(UTC) - timedelta(minutes=5)
        await service.tokens.put("fitbit", TokenRecord(access_token="a"))
        await service.tokens.put("oura", TokenRecord(access_token="b", expires_at=expired))

        statuses = {s.id: s for s in await service.connection_statuses()}

        assert statuses["fitbit"].connected
        assert not statuses["oura"].connected
        assert not statuses["web_bluetooth_hr"].connected
        assert statuses["web_bluetooth_hr"].connection_type == ConnectionType.WEB_BLUETOOTH
        assert statuses["manual_entry"].connected
        assert len(statuses) == 8

    async def test_disconnect_clears_token(self, service):
        await service.tokens.put("fitbit", TokenRecord(access_token="a"))
        await service.disconnect("fitbit")
        assert not await service.tokens.is_valid("fitbit")
