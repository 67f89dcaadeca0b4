"""Protocol and result primitives for the catalog proxy flows."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.api.v1.shared.cache_keys import catalog_cache_key
from app.models.catalog import CatalogModel, Envelope
from app.services.cache_ttl_config import CacheCategory
from app.services.mangadex_client import MangaDexClient, UpstreamRequest
from app.services.mangadex_mapping import NormalizeContext
from app.services.mangadex_schemas import validate

logger = logging.getLogger(__name__)

S = TypeVar("S")

CACHE_STATUS_HEADER = "X-Cache-Status"

# Fixed per resource, so they never distinguish two requests.
_UNKEYED_PARAMS = frozenset({"includes"})


def request_key_params(params: Mapping[str, Any]) -> dict[str, Any]:
    """Upstream params minus the ones every request of a resource shares."""
    return {key: value for key, value in params.items() if key not in _UNKEYED_PARAMS}


@dataclass
class ProxyResult:
    """Envelope plus the HTTP status and cache status it should be sent with."""

    envelope: Envelope[Any]
    status_code: int = 200
    cache_status: str = "miss"
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def success(cls, data: Any, *, cached: bool, cache_status: str) -> ProxyResult:
        return cls(
            envelope=Envelope.ok(data, cached=cached),
            status_code=200,
            cache_status=cache_status,
        )

    @classmethod
    def failure(
        cls,
        status_code: int,
        message: str,
        *,
        debug: dict[str, Any] | None = None,
    ) -> ProxyResult:
        return cls(
            envelope=Envelope.fail(message, debug=debug),
            status_code=status_code,
            cache_status="error",
        )

    @classmethod
    def empty_page(cls, *, limit: int, offset: int) -> ProxyResult:
        """Successful empty listing returned without touching cache or upstream."""
        return cls.success(
            {"items": [], "limit": limit, "offset": offset, "total": 0},
            cached=False,
            cache_status="bypass",
        )

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            content=self.envelope.to_content(),
            status_code=self.status_code,
            headers={CACHE_STATUS_HEADER: self.cache_status, **self.headers},
        )


class CatalogResource(ABC, Generic[S]):
    """One cacheable catalog read: how to fetch, validate, normalize and store it.

    Subclasses are built per request with that request's parameters.
    """

    cache_name: str
    category: CacheCategory
    schema: ClassVar[type[BaseModel]]
    model: ClassVar[type[CatalogModel]]

    def __init__(self, context: NormalizeContext) -> None:
        self.context = context

    @abstractmethod
    def build_request(self) -> UpstreamRequest:
        """Describe the primary upstream call."""
        ...

    @abstractmethod
    def normalize(self, payload: S) -> Any:
        """Turn the validated payload into catalog DTOs."""
        ...

    def cache_category(self) -> CacheCategory:
        """TTL category for this read; may depend on request parameters."""
        return self.category

    def key_params(self) -> Mapping[str, Any]:
        """Parameters that identify this request in the cache."""
        return request_key_params(self.build_request().params)

    def cache_key(self) -> str:
        return catalog_cache_key(
            self.cache_name, {**self.key_params(), "locale": self.context.locale}
        )

    async def fetch(self, client: MangaDexClient) -> S:
        """Fetch and validate. Override for composite reads."""
        return await self.fetch_validated(client, self.build_request(), self.schema)

    async def fetch_validated(
        self,
        client: MangaDexClient,
        request: UpstreamRequest,
        schema: type[BaseModel],
    ) -> Any:
        raw = await client.fetch(request)
        return validate(schema, raw).unwrap(schema.__name__)

    async def on_fresh(self, payload: S, data: Any) -> None:
        """Hook run after a fresh result was stored."""
        return None

    async def fallback(self) -> Any | None:
        """Serialized data to serve when upstream is unavailable, if any."""
        return None


__all__ = ["CACHE_STATUS_HEADER", "CatalogResource", "ProxyResult"]
