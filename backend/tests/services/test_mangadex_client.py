"""Tests for the MangaDex HTTP client."""

from __future__ import annotations

import email.utils

import httpx
import pytest

from app.core.config import Settings
from app.services.mangadex_auth import MangaDexAuth
from app.services.mangadex_client import (
    DEFAULT_RETRY_AFTER_SECONDS,
    MangaDexClient,
    UpstreamRequest,
    parse_retry_after,
    serialize_params,
)
from app.services.mangadex_errors import (
    UpstreamRejectedError,
    UpstreamUnavailableError,
    ValidationFailedError,
)
from app.services.mangadex_retry import RetryPolicy
from tests.fixtures.mangadex import (
    MANGA_ID,
    FakeMangaDex,
    create_test_manga,
    entity,
    error_body,
)

TOKEN_PATH = "/realms/mangadex/protocol/openid-connect/token"


class TestSerializeParams:
    def test_lists_use_bracket_suffix(self):
        pairs = serialize_params({"includes": ["cover_art", "author"]})
        assert pairs == [("includes[]", "cover_art"), ("includes[]", "author")]

    def test_mappings_use_sub_keys(self):
        pairs = serialize_params({"order": {"followedCount": "desc"}})
        assert pairs == [("order[followedCount]", "desc")]

    def test_booleans_are_lowercase_and_none_dropped(self):
        pairs = serialize_params({"hasAvailableChapters": True, "title": None, "limit": 10})
        assert pairs == [("hasAvailableChapters", "true"), ("limit", "10")]


class TestParseRetryAfter:
    def test_seconds(self):
        response = httpx.Response(429, headers={"Retry-After": "3"})
        assert parse_retry_after(response) == 3.0

    def test_ratelimit_header_as_unix_timestamp(self):
        response = httpx.Response(429, headers={"X-RateLimit-Retry-After": "1700000005"})
        assert parse_retry_after(response, now=1_700_000_000.0) == 5.0

    def test_http_date(self):
        date = email.utils.formatdate(1_700_000_010.0, usegmt=True)
        response = httpx.Response(429, headers={"Retry-After": date})
        assert parse_retry_after(response, now=1_700_000_000.0) == 10.0

    @pytest.mark.parametrize("value", ["soon", "-1"])
    def test_unusable_values(self, value):
        response = httpx.Response(429, headers={"Retry-After": value})
        assert parse_retry_after(response) is None

    def test_missing_header(self):
        assert parse_retry_after(httpx.Response(429)) is None


@pytest.mark.asyncio
async def test_fetch_returns_json_and_sends_params(mangadex, mangadex_client):
    mangadex.json(f"/manga/{MANGA_ID}", entity(create_test_manga()))

    body = await mangadex_client.fetch(
        UpstreamRequest(f"/manga/{MANGA_ID}", {"includes": ["cover_art"]})
    )

    assert body["data"]["id"] == MANGA_ID
    (call,) = mangadex.calls
    assert call.url.params.get_list("includes[]") == ["cover_art"]


@pytest.mark.asyncio
async def test_server_errors_are_retried(mangadex, mangadex_client, fake_sleep):
    mangadex.add(
        "/manga",
        httpx.Response(503, json=error_body(503, "Service Unavailable")),
        httpx.Response(200, json={"result": "ok", "data": []}),
    )

    body = await mangadex_client.fetch(UpstreamRequest("/manga"))

    assert body["result"] == "ok"
    assert len(mangadex.calls_to("/manga")) == 2
    assert fake_sleep.delays == [0.01]


@pytest.mark.asyncio
async def test_server_errors_exhaust_retries(mangadex, mangadex_client, fake_sleep):
    mangadex.json("/manga", error_body(500, "Internal"), status_code=500)

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await mangadex_client.fetch(UpstreamRequest("/manga"))

    assert exc_info.value.status_code == 500
    assert len(mangadex.calls_to("/manga")) == 3
    assert len(fake_sleep.delays) == 2


@pytest.mark.asyncio
async def test_rate_limit_waits_for_retry_after(mangadex, mangadex_client, fake_sleep):
    mangadex.add(
        "/manga",
        httpx.Response(429, json=error_body(429, "Too Many"), headers={"Retry-After": "0.5"}),
        httpx.Response(200, json={"result": "ok"}),
    )

    await mangadex_client.fetch(UpstreamRequest("/manga"))

    assert fake_sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_rate_limit_without_header_uses_default(mangadex, mangadex_client, fake_sleep):
    mangadex.add(
        "/manga",
        httpx.Response(429, json=error_body(429, "Too Many")),
        httpx.Response(200, json={"result": "ok"}),
    )

    await mangadex_client.fetch(UpstreamRequest("/manga"))

    assert fake_sleep.delays == [DEFAULT_RETRY_AFTER_SECONDS]


@pytest.mark.asyncio
async def test_long_retry_after_fails_immediately(mangadex, mangadex_client, fake_sleep):
    mangadex.json(
        "/manga", error_body(429, "Too Many"), status_code=429, headers={"Retry-After": "60"}
    )

    with pytest.raises(UpstreamUnavailableError):
        await mangadex_client.fetch(UpstreamRequest("/manga"))

    assert len(mangadex.calls) == 1
    assert fake_sleep.delays == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status_code", [400, 403, 404, 410])
async def test_client_errors_are_not_retried(status_code, mangadex, mangadex_client):
    mangadex.json("/chapter/x", error_body(status_code), status_code=status_code)

    with pytest.raises(UpstreamRejectedError) as exc_info:
        await mangadex_client.fetch(UpstreamRequest("/chapter/x"))

    assert exc_info.value.status_code == status_code
    assert exc_info.value.body["result"] == "error"
    assert len(mangadex.calls) == 1


@pytest.mark.asyncio
async def test_timeout_is_retried_then_unavailable(mangadex, mangadex_client, fake_sleep):
    def _timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    mangadex.add("/manga", _timeout)

    with pytest.raises(UpstreamUnavailableError, match="timed out"):
        await mangadex_client.fetch(UpstreamRequest("/manga"))

    assert len(mangadex.calls) == 3


@pytest.mark.asyncio
async def test_connection_error_is_retried(mangadex, mangadex_client):
    def _refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    mangadex.add("/manga", _refused, httpx.Response(200, json={"result": "ok"}))

    assert await mangadex_client.fetch(UpstreamRequest("/manga")) == {"result": "ok"}


@pytest.mark.asyncio
async def test_non_json_body_fails_validation(mangadex, mangadex_client):
    mangadex.add("/manga", httpx.Response(200, text="<html>maintenance</html>"))

    with pytest.raises(ValidationFailedError) as exc_info:
        await mangadex_client.fetch(UpstreamRequest("/manga", endpoint="manga_list"))

    assert exc_info.value.schema_name == "manga_list"
    assert exc_info.value.errors[0].kind == "json_invalid"


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once(mangadex, fake_sleep):
    settings = Settings(
        MANGADEX_USERNAME="reader",
        MANGADEX_PASSWORD="secret",
        MANGADEX_CLIENT_ID="client",
        MANGADEX_CLIENT_SECRET="shh",
    )
    mangadex.add(
        TOKEN_PATH,
        httpx.Response(200, json={"access_token": "first", "expires_in": 900}),
        httpx.Response(200, json={"access_token": "second", "expires_in": 900}),
    )
    mangadex.add(
        "/manga",
        httpx.Response(401, json=error_body(401, "Unauthorized")),
        httpx.Response(200, json={"result": "ok"}),
    )

    async with httpx.AsyncClient(
        base_url=settings.mangadex_api_base_url, transport=mangadex.transport()
    ) as http:
        client = MangaDexClient(
            http,
            retry_policy=RetryPolicy(max_attempts=1),
            auth=MangaDexAuth(http, settings),
            sleep=fake_sleep,
        )
        assert await client.fetch(UpstreamRequest("/manga")) == {"result": "ok"}

    manga_calls = mangadex.calls_to("/manga")
    assert [call.headers["Authorization"] for call in manga_calls] == [
        "Bearer first",
        "Bearer second",
    ]
    assert len(mangadex.calls_to(TOKEN_PATH)) == 2
