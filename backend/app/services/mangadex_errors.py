"""Exceptions raised by the MangaDex catalog proxy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class CatalogError(Exception):
    """Base error for catalog proxy failures."""


class UpstreamError(CatalogError):
    """Raised when MangaDex could not deliver a usable response."""


class UpstreamUnavailableError(UpstreamError):
    """Raised on timeouts, connection failures, 5xx and exhausted 429 retries."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamRejectedError(UpstreamError):
    """Raised when MangaDex answers with a non-retryable 4xx."""

    def __init__(self, status_code: int, body: Any = None) -> None:
        super().__init__(f"MangaDex rejected the request with HTTP {status_code}.")
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True, slots=True)
class FieldError:
    """One schema violation, located by its path in the payload."""

    location: str
    message: str
    kind: str

    def to_dict(self) -> dict[str, str]:
        return {"location": self.location, "message": self.message, "kind": self.kind}


class ValidationFailedError(CatalogError):
    """Raised when an upstream payload does not match its schema."""

    def __init__(self, schema_name: str, errors: tuple[FieldError, ...]) -> None:
        super().__init__(
            f"{schema_name} payload failed validation with {len(errors)} error(s)."
        )
        self.schema_name = schema_name
        self.errors = errors


class CacheUnavailableError(CatalogError):
    """Raised when the cache backend cannot be reached."""


class InvalidRequestError(CatalogError):
    """Raised when caller-supplied parameters are invalid."""


__all__ = [
    "CacheUnavailableError",
    "CatalogError",
    "FieldError",
    "InvalidRequestError",
    "UpstreamError",
    "UpstreamRejectedError",
    "UpstreamUnavailableError",
    "ValidationFailedError",
]
