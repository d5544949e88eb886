"""Tests for operator authentication and the admin routes.

Covers:
- hash_admin_key determinism and output format
- validate_admin_key with valid, missing, and invalid keys
- Integration: admin routes reject missing/invalid keys when enabled
- Integration: stats, blacklist, whitelist and limit-clearing routes
"""

from typing import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from chatguard.app import create_app
from chatguard.auth import AdminAuthError, hash_admin_key, validate_admin_key
from chatguard.config import AdminConfig, GuardConfig, Policy
from chatguard.guard import AntiSpamGuard

# --- Unit tests for the auth module ---


class TestHashAdminKey:
    """Tests for the hash_admin_key helper."""

    def test_deterministic(self) -> None:
        assert hash_admin_key("test") == hash_admin_key("test")

    def test_returns_hex_sha256(self) -> None:
        result = hash_admin_key("anything")
        assert len(result) == 64
        int(result, 16)  # Should not raise


class TestValidateAdminKey:
    def test_valid_key_returns_operator(self) -> None:
        assert validate_admin_key("s3cret", {"ops": hash_admin_key("s3cret")}) == "ops"

    def test_missing_key_raises(self) -> None:
        with pytest.raises(AdminAuthError, match="Missing"):
            validate_admin_key(None, {"ops": "abc"})

    def test_invalid_key_raises(self) -> None:
        with pytest.raises(AdminAuthError, match="Invalid"):
            validate_admin_key("wrong", {"ops": hash_admin_key("right")})

    def test_no_configured_keys_rejects_everything(self) -> None:
        with pytest.raises(AdminAuthError, match="Invalid"):
            validate_admin_key("anything", {})

    def test_matches_the_right_operator(self) -> None:
        keys = {"alice": hash_admin_key("a-key"), "bob": hash_admin_key("b-key")}
        assert validate_admin_key("b-key", keys) == "bob"

    def test_error_detail_does_not_echo_key(self) -> None:
        with pytest.raises(AdminAuthError) as excinfo:
            validate_admin_key("leaky-secret", {"ops": hash_admin_key("right")})
        assert "leaky-secret" not in excinfo.value.detail


# --- Integration tests against the FastAPI app ---

ADMIN_KEY = "operator-key-1"


def _guard(clock, *, auth_enabled: bool) -> AntiSpamGuard:
    config = GuardConfig(
        api=Policy(window_seconds=60, max_count=2, block_duration_seconds=300),
        admin=AdminConfig(enabled=auth_enabled, api_keys={"ops": hash_admin_key(ADMIN_KEY)}),
        whitelist=["127.0.0.1"],
    )
    return AntiSpamGuard(config, clock=clock)


@pytest_asyncio.fixture()
async def admin_client(clock) -> AsyncIterator[AsyncClient]:
    app = create_app(_guard(clock, auth_enabled=True))
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://test", headers={"X-Admin-Key": ADMIN_KEY}
    ) as c:
        yield c


@pytest.mark.asyncio
async def test_missing_key_returns_401(clock) -> None:
    transport = ASGITransport(app=create_app(_guard(clock, auth_enabled=True)))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/admin/stats")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "ADMIN_AUTH_FAILED"


@pytest.mark.asyncio
async def test_invalid_key_returns_401(clock) -> None:
    transport = ASGITransport(app=create_app(_guard(clock, auth_enabled=True)))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/admin/stats", headers={"X-Admin-Key": "nope"})
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_auth_disabled_allows_requests(clock) -> None:
    transport = ASGITransport(app=create_app(_guard(clock, auth_enabled=False)))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/admin/stats")
    assert resp.status_code == 200


@pytest.mark.asyncio
async def test_stats_route(admin_client: AsyncClient) -> None:
    await admin_client.get("/v1/health", headers={"X-Forwarded-For": "10.0.0.1"})
    resp = await admin_client.get("/admin/stats")

    assert resp.status_code == 200
    tracked = resp.json()["tracked"]
    assert tracked["api"] == 1
    assert tracked["whitelisted_ips"] == 1
    assert tracked["socket"] == 0


@pytest.mark.asyncio
async def test_ip_blacklist_roundtrip(admin_client: AsyncClient, clock) -> None:
    resp = await admin_client.post(
        "/admin/blacklist/ip", json={"ip": "10.0.0.7", "reason": "abuse", "duration_seconds": 120}
    )
    assert resp.json() == {"changed": True}

    blocked = await admin_client.get("/v1/health", headers={"X-Forwarded-For": "10.0.0.7"})
    assert blocked.status_code == 403

    clock.advance(20)
    info = (await admin_client.get("/admin/blacklist")).json()
    assert info["ips"][0]["ip"] == "10.0.0.7"
    assert info["ips"][0]["remaining_seconds"] == 100

    resp = await admin_client.request("DELETE", "/admin/blacklist/ip", json={"ip": "10.0.0.7"})
    assert resp.json() == {"changed": True}
    resp = await admin_client.request("DELETE", "/admin/blacklist/ip", json={"ip": "10.0.0.7"})
    assert resp.json() == {"changed": False}

    allowed = await admin_client.get("/v1/health", headers={"X-Forwarded-For": "10.0.0.7"})
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_user_blacklist_routes(admin_client: AsyncClient) -> None:
    user = {"session_id": "sess", "chat_user": "u1"}
    resp = await admin_client.post("/admin/blacklist/user", json=dict(user, reason="abuse"))
    assert resp.status_code == 200

    screened = await admin_client.post("/v1/messages/inbound", json=user)
    assert screened.json()["action"] == "suppress"

    info = (await admin_client.get("/admin/blacklist")).json()
    assert info["users"][0]["chat_user"] == "u1"
    assert info["users"][0]["remaining_seconds"] == 24 * 60 * 60

    resp = await admin_client.request("DELETE", "/admin/blacklist/user", json=user)
    assert resp.json() == {"changed": True}


@pytest.mark.asyncio
async def test_whitelist_routes(admin_client: AsyncClient) -> None:
    headers = {"X-Forwarded-For": "10.0.0.8"}
    await admin_client.post("/admin/whitelist", json={"ip": "10.0.0.8"})
    for _ in range(5):
        assert (await admin_client.get("/v1/health", headers=headers)).status_code == 200

    resp = await admin_client.request("DELETE", "/admin/whitelist", json={"ip": "10.0.0.8"})
    assert resp.json() == {"changed": True}
    for _ in range(2):
        assert (await admin_client.get("/v1/health", headers=headers)).status_code == 200
    assert (await admin_client.get("/v1/health", headers=headers)).status_code == 429


@pytest.mark.asyncio
async def test_clear_limits_route(admin_client: AsyncClient) -> None:
    headers = {"X-Forwarded-For": "10.0.0.9"}
    for _ in range(3):
        await admin_client.get("/v1/health", headers=headers)
    assert (await admin_client.get("/v1/health", headers=headers)).status_code == 429

    resp = await admin_client.request("DELETE", "/admin/limits")
    assert resp.json() == {"changed": True}
    assert (await admin_client.get("/v1/health", headers=headers)).status_code == 200
