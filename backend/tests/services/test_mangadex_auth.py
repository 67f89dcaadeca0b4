"""Tests for MangaDex token management."""

from __future__ import annotations

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from app.core.config import Settings
from app.services.mangadex_auth import MangaDexAuth
from tests.fixtures.mangadex import FakeMangaDex

TOKEN_PATH = "/realms/mangadex/protocol/openid-connect/token"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        MANGADEX_USERNAME="reader",
        MANGADEX_PASSWORD="secret",
        MANGADEX_CLIENT_ID="client",
        MANGADEX_CLIENT_SECRET="shh",
    )


@pytest.fixture
def token_server() -> FakeMangaDex:
    return FakeMangaDex()


def _form(request: httpx.Request) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


@pytest.mark.asyncio
async def test_disabled_without_credentials(token_server):
    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, Settings())
        assert not auth.enabled
        assert await auth.access_token() is None
    assert token_server.calls == []


@pytest.mark.asyncio
async def test_password_grant_then_cached(settings, token_server, fake_clock):
    token_server.json(
        TOKEN_PATH, {"access_token": "a1", "refresh_token": "r1", "expires_in": 900}
    )

    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, settings, clock=fake_clock)
        assert await auth.access_token() == "a1"

    (call,) = token_server.calls
    form = _form(call)
    assert form["grant_type"] == "password"
    assert form["username"] == "reader"
    assert form["client_id"] == "client"


@pytest.mark.asyncio
async def test_refresh_grant_near_expiry(settings, token_server, fake_clock):
    token_server.add(
        TOKEN_PATH,
        httpx.Response(200, json={"access_token": "a1", "refresh_token": "r1", "expires_in": 900}),
        httpx.Response(200, json={"access_token": "a2", "expires_in": 900}),
    )

    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, settings, clock=fake_clock)
        assert await auth.access_token() == "a1"
        fake_clock.advance(880)
        assert await auth.access_token() == "a2"

    second = _form(token_server.calls[1])
    assert second["grant_type"] == "refresh_token"
    assert second["refresh_token"] == "r1"


@pytest.mark.asyncio
async def test_failed_refresh_falls_back_to_password(settings, token_server, fake_clock):
    token_server.add(
        TOKEN_PATH,
        httpx.Response(200, json={"access_token": "a1", "refresh_token": "r1", "expires_in": 60}),
        httpx.Response(400, json={"error": "invalid_grant"}),
        httpx.Response(200, json={"access_token": "a3", "expires_in": 900}),
    )

    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, settings, clock=fake_clock)
        await auth.access_token()
        fake_clock.advance(61)
        assert await auth.access_token() == "a3"

    grants = [_form(call)["grant_type"] for call in token_server.calls]
    assert grants == ["password", "refresh_token", "password"]


@pytest.mark.asyncio
async def test_auth_failure_yields_no_token(settings, token_server):
    token_server.json(TOKEN_PATH, {"error": "invalid_client"}, status_code=401)

    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, settings)
        assert await auth.access_token() is None


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_request(settings, token_server):
    token_server.json(TOKEN_PATH, {"access_token": "a1", "expires_in": 900})

    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, settings)
        tokens = await asyncio.gather(*(auth.access_token() for _ in range(5)))

    assert tokens == ["a1"] * 5
    assert len(token_server.calls) == 1


@pytest.mark.asyncio
async def test_refresh_reuses_token_swapped_by_another_caller(settings, token_server):
    token_server.add(
        TOKEN_PATH,
        httpx.Response(200, json={"access_token": "a1", "expires_in": 900}),
        httpx.Response(200, json={"access_token": "a2", "expires_in": 900}),
    )

    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, settings)
        await auth.access_token()
        assert await auth.refresh("a1") == "a2"
        assert await auth.refresh("a1") == "a2"

    assert len(token_server.calls) == 2


@pytest.mark.asyncio
async def test_auth_outage_does_not_block_concurrent_callers(
    settings, token_server, fake_clock
):
    token_server.json(TOKEN_PATH, {"error": "unavailable"}, status_code=503)

    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, settings, clock=fake_clock)
        tokens = await asyncio.gather(*(auth.access_token() for _ in range(5)))
        assert await auth.refresh(None) is None

    assert tokens == [None] * 5
    assert len(token_server.calls) == 1


@pytest.mark.asyncio
async def test_grant_is_retried_after_cooldown(settings, token_server, fake_clock):
    token_server.add(
        TOKEN_PATH,
        httpx.Response(503, json={"error": "unavailable"}),
        httpx.Response(200, json={"access_token": "a1", "expires_in": 900}),
    )

    async with httpx.AsyncClient(transport=token_server.transport()) as http:
        auth = MangaDexAuth(http, settings, clock=fake_clock)
        assert await auth.access_token() is None
        fake_clock.advance(settings.mangadex_auth_retry_cooldown_seconds - 1)
        assert await auth.access_token() is None
        fake_clock.advance(1)
        assert await auth.access_token() == "a1"

    assert len(token_server.calls) == 2
