"""
Cache key generation for catalog endpoints.

Keys are ``<endpoint>:<name>=<value>&...`` with parameter names sorted and
values normalized, so logically equivalent requests share one entry:

- ``None``, empty strings and empty collections are dropped
- strings are stripped and lowercased
- list values are de-duplicated and sorted (filters are sets)
- mappings render as sorted ``field:value`` pairs
- values are URL-encoded, so ``one piece`` becomes ``one+piece``
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote_plus

_SAFE_CHARS = ",:"


def _normalize_scalar(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip().lower()
    return text or None


def normalize_key_value(value: Any) -> str | None:
    """Canonical string form of one parameter value, or None to omit it."""
    if isinstance(value, Mapping):
        pairs = sorted(
            f"{str(name).strip().lower()}:{normalized}"
            for name, item in value.items()
            if (normalized := _normalize_scalar(item)) is not None
        )
        return ",".join(pairs) or None
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(
            {normalized for item in value if (normalized := _normalize_scalar(item))}
        )
        return ",".join(items) or None
    return _normalize_scalar(value)


def catalog_cache_key(endpoint: str, params: Mapping[str, Any] | None = None) -> str:
    """Generate the cache key for ``endpoint`` called with ``params``.

    Args:
        endpoint: Stable endpoint identifier such as ``search`` or ``manga``
        params: Request parameters after defaults have been applied

    Returns:
        Standardized cache key string
    """
    segments = []
    for name in sorted(params or {}):
        normalized = normalize_key_value(params[name])  # type: ignore[index]
        if normalized is None:
            continue
        segments.append(f"{name}={quote_plus(normalized, safe=_SAFE_CHARS)}")
    return f"{endpoint}:{'&'.join(segments)}"


__all__ = ["catalog_cache_key", "normalize_key_value"]
