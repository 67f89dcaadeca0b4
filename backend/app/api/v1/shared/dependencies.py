"""
Shared dependency injection functions for API endpoints.
"""

from typing import Annotated

from fastapi import Depends, Query

from app.core.config import Settings, get_settings
from app.services.mangadex_mapping import NormalizeContext

from .constants import LOCALE_PATTERN


def get_normalize_context(
    locale: Annotated[
        str | None,
        Query(
            pattern=LOCALE_PATTERN,
            description="Display language for titles and descriptions "
            "(defaults to DEFAULT_LOCALE).",
        ),
    ] = None,
    settings: Settings = Depends(get_settings),
) -> NormalizeContext:
    """Build the normalizer context for the requested locale."""
    return NormalizeContext(
        locale=(locale or settings.default_locale).lower(),
        uploads_base_url=settings.mangadex_uploads_base_url,
    )


def content_ratings(
    requested: list[str] | None, settings: Settings
) -> list[str]:
    """Requested content ratings, or the configured default set."""
    return list(requested) if requested else list(settings.default_content_ratings)
