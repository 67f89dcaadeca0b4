"""Async client for the MangaDex REST API.

``MangaDexClient.fetch`` is the only network entry point. It returns parsed
JSON or raises one of the typed errors from ``mangadex_errors``:

- timeouts, connection failures, 5xx and 429 are retried under the configured
  ``RetryPolicy`` and end as ``UpstreamUnavailableError``
- any other 4xx fails at once with ``UpstreamRejectedError``
- a body that is not JSON raises ``ValidationFailedError``
"""

from __future__ import annotations

import asyncio
import email.utils
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.core.config import Settings
from app.core.metrics import observe_mangadex_request, record_mangadex_retry
from app.core.telemetry import add_traceparent_header
from app.services.mangadex_auth import MangaDexAuth
from app.services.mangadex_errors import (
    FieldError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
    ValidationFailedError,
)
from app.services.mangadex_retry import (
    RetryPolicy,
    SleepFunc,
    TransientUpstreamError,
    call_with_retry,
)

logger = logging.getLogger(__name__)

# Used when MangaDex answers 429 without telling us how long to wait
DEFAULT_RETRY_AFTER_SECONDS = 1.0
# Values above this are absolute unix timestamps rather than a delay
_EPOCH_THRESHOLD = 1_000_000_000

ParamValue = str | int | float | bool | None | list[Any] | tuple[Any, ...] | dict[str, Any]


@dataclass(frozen=True, slots=True)
class UpstreamRequest:
    """One outbound call: path, query parameters and extra headers."""

    path: str
    params: Mapping[str, ParamValue] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    endpoint: str = ""

    @property
    def label(self) -> str:
        """Low-cardinality name for metrics and logs."""
        return self.endpoint or self.path


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def serialize_params(params: Mapping[str, ParamValue]) -> list[tuple[str, str]]:
    """Encode query parameters the way MangaDex expects.

    Lists become ``key[]=a&key[]=b``, mappings become ``key[sub]=v``, booleans
    are lowercase and ``None`` values are dropped.
    """
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((f"{key}[]", _scalar(item)) for item in value if item is not None)
        elif isinstance(value, dict):
            pairs.extend(
                (f"{key}[{sub}]", _scalar(item))
                for sub, item in value.items()
                if item is not None
            )
        else:
            pairs.append((key, _scalar(value)))
    return pairs


def parse_retry_after(
    response: httpx.Response, now: float | None = None
) -> float | None:
    """Seconds to wait according to ``Retry-After`` or ``X-RateLimit-Retry-After``.

    Accepts delays in seconds, unix timestamps and HTTP dates.
    """
    raw = response.headers.get("retry-after") or response.headers.get(
        "x-ratelimit-retry-after"
    )
    if raw is None:
        return None
    now = time.time() if now is None else now

    try:
        value = float(raw)
    except ValueError:
        try:
            parsed = email.utils.parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            return None
        return max(0.0, parsed.timestamp() - now)

    if value < 0:
        return None
    if value > _EPOCH_THRESHOLD:
        return max(0.0, value - now)
    return value


def _error_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


class MangaDexClient:
    """Async wrapper for the MangaDex API with retry and authentication."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        retry_policy: RetryPolicy | None = None,
        auth: MangaDexAuth | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._http = http
        self._retry_policy = retry_policy or RetryPolicy()
        self._auth = auth
        self._sleep = sleep

    async def fetch(self, request: UpstreamRequest) -> Any:
        """Issue ``request`` and return the decoded JSON body."""
        start = time.perf_counter()

        def _on_retry(
            attempt: int, error: TransientUpstreamError, delay: float
        ) -> None:
            record_mangadex_retry(request.label, error.reason)
            logger.warning(
                "MangaDex %s failed (%s, attempt %s); retrying in %.2fs",
                request.label,
                error,
                attempt + 1,
                delay,
            )

        try:
            payload = await call_with_retry(
                lambda: self._send(request),
                policy=self._retry_policy,
                sleep=self._sleep,
                on_retry=_on_retry,
            )
        except UpstreamRejectedError as exc:
            result = "not_found" if exc.status_code == 404 else "rejected"
            observe_mangadex_request(request.label, result, time.perf_counter() - start)
            raise
        except UpstreamUnavailableError:
            observe_mangadex_request(
                request.label, "unavailable", time.perf_counter() - start
            )
            raise
        except ValidationFailedError:
            observe_mangadex_request(
                request.label, "invalid_body", time.perf_counter() - start
            )
            raise

        observe_mangadex_request(request.label, "success", time.perf_counter() - start)
        return payload

    async def _send(self, request: UpstreamRequest, *, allow_reauth: bool = True) -> Any:
        headers = dict(request.headers)
        token = await self._auth.access_token() if self._auth else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        headers = add_traceparent_header(headers)

        try:
            response = await self._http.get(
                request.path,
                params=serialize_params(request.params),
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise TransientUpstreamError(
                f"MangaDex {request.label} timed out", reason="timeout"
            ) from exc
        except httpx.TransportError as exc:
            raise TransientUpstreamError(
                f"MangaDex {request.label} connection failed: {exc}",
                reason="connection",
            ) from exc

        status_code = response.status_code

        if (
            status_code == 401
            and allow_reauth
            and self._auth is not None
            and self._auth.enabled
        ):
            logger.info("MangaDex rejected the access token; refreshing")
            await self._auth.refresh(token)
            return await self._send(request, allow_reauth=False)

        if status_code == 429:
            retry_after = parse_retry_after(response)
            raise TransientUpstreamError(
                f"MangaDex {request.label} rate limited",
                reason="rate_limited",
                status_code=status_code,
                retry_after=(
                    retry_after if retry_after is not None else DEFAULT_RETRY_AFTER_SECONDS
                ),
            )

        if status_code >= 500:
            raise TransientUpstreamError(
                f"MangaDex {request.label} returned HTTP {status_code}",
                reason="server_error",
                status_code=status_code,
            )

        if status_code >= 400:
            raise UpstreamRejectedError(status_code, body=_error_body(response))

        try:
            return response.json()
        except ValueError as exc:
            raise ValidationFailedError(
                request.label,
                (FieldError("<root>", "response body is not valid JSON", "json_invalid"),),
            ) from exc


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create the pooled HTTP client shared by every MangaDex call."""
    return httpx.AsyncClient(
        base_url=settings.mangadex_api_base_url,
        timeout=httpx.Timeout(settings.mangadex_timeout_seconds),
        headers={
            "User-Agent": settings.mangadex_user_agent,
            "Accept": "application/json",
        },
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
    )


__all__ = [
    "MangaDexClient",
    "UpstreamRequest",
    "build_http_client",
    "parse_retry_after",
    "serialize_params",
]
