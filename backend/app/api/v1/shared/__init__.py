"""Shared utilities for API v1 endpoints.

This package provides the catalog proxy, its resources, and the helpers
used across the catalog endpoint modules.
"""

from app.api.v1.shared.cache_manager import CatalogProxy, get_catalog_proxy
from app.api.v1.shared.cache_protocols import (
    CACHE_STATUS_HEADER,
    CatalogResource,
    ProxyResult,
)
from app.api.v1.shared.dependencies import content_ratings, get_normalize_context
from app.api.v1.shared.errors import error_response, invalid_request_response

__all__ = [
    # Proxy
    "CatalogProxy",
    "CatalogResource",
    "ProxyResult",
    "CACHE_STATUS_HEADER",
    "get_catalog_proxy",
    # Dependencies
    "get_normalize_context",
    "content_ratings",
    # Error handling
    "error_response",
    "invalid_request_response",
]
