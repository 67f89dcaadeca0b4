"""Bearer token management for the MangaDex personal API client."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import httpx

from app.core.config import Settings

logger = logging.getLogger(__name__)

# Access tokens live 15 minutes; refresh slightly early so in-flight requests
# do not race the expiry.
_DEFAULT_EXPIRES_IN = 900
_EXPIRY_MARGIN_SECONDS = 30


@dataclass(frozen=True, slots=True)
class TokenSet:
    access_token: str
    refresh_token: str | None
    expires_at: float


class MangaDexAuth:
    """Obtain and refresh tokens with the OAuth password grant.

    Concurrent callers share one token request through an ``asyncio.Lock``.
    Failures are logged and yield no token: MangaDex serves the public catalog
    anonymously, so requests continue without an Authorization header. After a
    failure no new grant is attempted until the cooldown elapses, and callers
    get ``None`` without waiting on the lock.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        settings: Settings,
        *,
        clock=time.monotonic,
    ) -> None:
        self._http = http
        self._settings = settings
        self._clock = clock
        self._tokens: TokenSet | None = None
        self._retry_not_before = 0.0
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._settings.mangadex_credentials_configured

    def _is_fresh(self, tokens: TokenSet | None) -> bool:
        return tokens is not None and tokens.expires_at - _EXPIRY_MARGIN_SECONDS > (
            self._clock()
        )

    def _cooling_down(self) -> bool:
        return self._clock() < self._retry_not_before

    async def access_token(self) -> str | None:
        """Return a valid access token, authenticating if needed."""
        if not self.enabled:
            return None
        if self._is_fresh(self._tokens):
            return self._tokens.access_token  # type: ignore[union-attr]
        if self._cooling_down():
            return None

        async with self._lock:
            if not self._is_fresh(self._tokens):
                if self._cooling_down():
                    return None
                self._tokens = await self._renew(self._tokens)
            return self._tokens.access_token if self._tokens else None

    async def refresh(self, rejected_token: str | None) -> str | None:
        """Replace a token MangaDex rejected with 401.

        When another coroutine already swapped the token, the new one is reused
        instead of hitting the auth server again.
        """
        if not self.enabled:
            return None
        async with self._lock:
            current = self._tokens
            if current is not None and current.access_token != rejected_token:
                return current.access_token
            if self._cooling_down():
                return None
            self._tokens = await self._renew(current)
            return self._tokens.access_token if self._tokens else None

    async def _renew(self, previous: TokenSet | None) -> TokenSet | None:
        tokens = await self._obtain(previous)
        if tokens is None:
            cooldown = self._settings.mangadex_auth_retry_cooldown_seconds
            self._retry_not_before = self._clock() + cooldown
            logger.warning(
                "MangaDex authentication unavailable; sending anonymous requests for %.0fs",
                cooldown,
            )
        return tokens

    async def _obtain(self, previous: TokenSet | None) -> TokenSet | None:
        if previous is not None and previous.refresh_token:
            tokens = await self._request_token(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": previous.refresh_token,
                },
                previous_refresh=previous.refresh_token,
            )
            if tokens is not None:
                return tokens
            logger.info("MangaDex token refresh failed; falling back to password grant")

        return await self._request_token(
            {
                "grant_type": "password",
                "username": self._settings.mangadex_username or "",
                "password": self._settings.mangadex_password or "",
            }
        )

    async def _request_token(
        self, form: dict[str, str], previous_refresh: str | None = None
    ) -> TokenSet | None:
        form = {
            **form,
            "client_id": self._settings.mangadex_client_id or "",
            "client_secret": self._settings.mangadex_client_secret or "",
        }
        try:
            response = await self._http.post(
                self._settings.mangadex_auth_url,
                data=form,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
            response.raise_for_status()
            body = response.json()
            access_token = body["access_token"]
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "MangaDex %s grant failed: %s", form["grant_type"], exc
            )
            return None

        expires_in = body.get("expires_in") or _DEFAULT_EXPIRES_IN
        return TokenSet(
            access_token=access_token,
            refresh_token=body.get("refresh_token", previous_refresh),
            expires_at=self._clock() + float(expires_in),
        )


__all__ = ["MangaDexAuth", "TokenSet"]
