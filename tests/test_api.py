"""Tests for the FastAPI server endpoints."""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from healthbot.api.server import create_app

from test_bluetooth import FakeBackend


def _provider_handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "www.googleapis.com" and request.url.path == "/oauth2/v4/token":
        return httpx.Response(
            200,
            json={"access_token": "at", "refresh_token": "rt", "expires_in": 3600, "token_type": "Bearer"},
        )
    if request.url.host == "api.fitbit.com":
        return httpx.Response(400, text='{"errors": [{"errorType": "invalid_grant"}]}')
    return httpx.Response(200, json={"access_token": "generic"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend(device_name="HRM Pro")


@pytest.fixture
async def client(settings, mock_http, backend):
    """Async test client with lifespan (startup / shutdown) fully executed."""
    app = create_app(settings, http_client=mock_http(_provider_handler), bluetooth_backend=lambda: backend)
    async with LifespanManager(app) as manager:
        transport = ASGITransport(app=manager.app)
        async with AsyncClient(transport=transport, base_url="http://localhost:8000") as c:
            yield c


async def test_health(client: AsyncClient):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── OAuth ─────────────────────────────────────────────────────


class TestTokenEndpoint:
    async def test_google_fit_exchange(self, client: AsyncClient):
        resp = await client.post(
            "/api/oauth/token",
            json={
                "deviceId": "google_fit",
                "code": "auth-code",
                "codeVerifier": "v" * 43,
                "redirectUri": "http://localhost:8000/api/oauth/callback/google",
            },
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "access_token": "at",
            "refresh_token": "rt",
            "expires_in": 3600,
            "token_type": "Bearer",
        }

    async def test_missing_parameters(self, client: AsyncClient):
        resp = await client.post("/api/oauth/token", json={"deviceId": "fitbit"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Missing required parameters"}

    async def test_unknown_device(self, client: AsyncClient):
        resp = await client.post("/api/oauth/token", json={"deviceId": "garmin", "code": "c"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Unknown device: garmin"

    async def test_provider_status_passed_through(self, client: AsyncClient):
        resp = await client.post("/api/oauth/token", json={"deviceId": "fitbit", "code": "c"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Token exchange failed"
        assert "invalid_grant" in body["details"]


class TestAuthorizeAndConnect:
    async def test_authorize_url(self, client: AsyncClient):
        resp = await client.get("/api/oauth/authorize/oura")
        assert resp.status_code == 200
        assert resp.json()["authorization_url"].startswith("https://cloud.ouraring.com/oauth/authorize?")

    async def test_authorize_unconfigured(self, client: AsyncClient):
        resp = await client.get("/api/oauth/authorize/strava")
        assert resp.status_code == 404
        assert resp.json() == {"error": "OAuth not configured for strava"}

    async def test_callback_redirects_to_connect(self, client: AsyncClient):
        resp = await client.get("/api/oauth/callback/google", params={"code": "abc", "state": "google_fit"})
        assert resp.status_code == 307
        location = urlsplit(resp.headers["location"])
        params = {k: v[0] for k, v in parse_qs(location.query).items()}
        assert location.path == "/connect"
        assert params["provider"] == "google_fit"
        assert params["redirectUri"] == "http://localhost:8000/api/oauth/callback/google"

    async def test_full_flow(self, client: AsyncClient):
        await client.get("/api/oauth/authorize/oura")
        callback = await client.get("/api/oauth/callback/oura", params={"code": "abc", "state": "oura"})

        resp = await client.get(callback.headers["location"])
        assert resp.status_code == 200
        assert resp.json()["connected"] is True

        devices = {d["id"]: d for d in (await client.get("/api/devices")).json()}
        assert devices["oura"]["connected"] is True

        assert (await client.delete("/api/devices/oura")).status_code == 200
        devices = {d["id"]: d for d in (await client.get("/api/devices")).json()}
        assert devices["oura"]["connected"] is False

    async def test_connect_error_echo(self, client: AsyncClient):
        resp = await client.get("/connect", params={"error": "User denied access", "provider": "fitbit"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "User denied access"

    async def test_connect_without_session(self, client: AsyncClient):
        resp = await client.get("/connect", params={"code": "abc", "provider": "oura"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "No pending authorization"


# ── Devices / health data ─────────────────────────────────────


async def test_sync_not_connected(client: AsyncClient):
    resp = await client.post("/api/devices/fitbit/sync", json={"kind": "steps"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Not connected to Fitbit"


async def test_manual_entry_and_queries(client: AsyncClient):
    resp = await client.post(
        "/api/health-data",
        json={"type": "weight", "value": 72.4, "timestamp": "2024-03-01T07:30:00Z"},
    )
    assert resp.status_code == 201
    assert resp.json()["reading"]["unit"] == "kg"
    assert resp.json()["reading"]["source"] == "manual_entry"

    readings = (await client.get("/api/health-data", params={"type": "weight"})).json()
    assert [r["value"] for r in readings] == [72.4]
    assert (await client.get("/api/health-data", params={"type": "steps"})).json() == []

    latest = await client.get("/api/health-data/latest/weight")
    assert latest.json()["value"] == 72.4
    assert (await client.get("/api/health-data/latest/sleep")).status_code == 404


async def test_bluetooth_connect_and_disconnect(client: AsyncClient, backend: FakeBackend):
    resp = await client.post("/api/bluetooth/heart_rate/connect")
    assert resp.status_code == 200
    assert resp.json()["device_name"] == "HRM Pro"

    devices = {d["id"]: d for d in (await client.get("/api/devices")).json()}
    assert devices["web_bluetooth_hr"]["connected"] is True

    resp = await client.delete("/api/bluetooth/heart_rate")
    assert resp.json()["state"] == "disconnected"


async def test_bluetooth_unsupported(settings):
    app = create_app(settings, bluetooth_backend=lambda: FakeBackend(available=False))
    async with LifespanManager(app) as manager:
        async with AsyncClient(transport=ASGITransport(app=manager.app), base_url="http://test") as c:
            resp = await c.post("/api/bluetooth/scale/connect")
    assert resp.status_code == 503
    assert resp.json()["error"] == "Bluetooth LE is not supported on this host"


# ── API key gate ──────────────────────────────────────────────


async def test_api_key_required_when_configured(settings):
    secured = settings.model_copy(update={"api_secret_key": "s3cret"})
    app = create_app(secured)
    async with LifespanManager(app) as manager:
        async with AsyncClient(transport=ASGITransport(app=manager.app), base_url="http://test") as c:
            assert (await c.get("/api/devices")).status_code == 401
            assert (await c.get("/api/devices", headers={"X-API-Key": "s3cret"})).status_code == 200
            assert (await c.get("/api/devices", headers={"Authorization": "Bearer s3cret"})).status_code == 200
            assert (await c.get("/health")).status_code == 200
            # the provider redirect never carries the key
            callback = await c.get("/api/oauth/callback/fitbit", params={"error": "access_denied"})
            assert callback.status_code == 307
