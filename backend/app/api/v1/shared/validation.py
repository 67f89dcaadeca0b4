"""Input validation utilities for catalog endpoints."""

from app.services.mangadex_errors import InvalidRequestError

MANGA_ORDER_FIELDS = frozenset(
    {
        "title",
        "year",
        "createdAt",
        "updatedAt",
        "latestUploadedChapter",
        "followedCount",
        "relevance",
        "rating",
    }
)
CHAPTER_ORDER_FIELDS = frozenset(
    {"createdAt", "updatedAt", "publishAt", "readableAt", "volume", "chapter"}
)
ORDER_DIRECTIONS = frozenset({"asc", "desc"})

# Queries shorter than this are answered with an empty page
MIN_QUERY_LENGTH = 2


def parse_order(
    value: str | None,
    allowed_fields: frozenset[str] = MANGA_ORDER_FIELDS,
) -> dict[str, str] | None:
    """Parse ``field:direction`` into MangaDex's ``order[field]=direction`` form.

    Raises:
        InvalidRequestError: On an unknown field or direction.
    """
    if value is None or not value.strip():
        return None
    field, _, direction = value.strip().partition(":")
    direction = direction.lower() or "desc"
    if field not in allowed_fields:
        raise InvalidRequestError(
            f"Invalid order field '{field}'. Valid options are: "
            f"{', '.join(sorted(allowed_fields))}"
        )
    if direction not in ORDER_DIRECTIONS:
        raise InvalidRequestError(
            f"Invalid order direction '{direction}'. Use 'asc' or 'desc'"
        )
    return {field: direction}


def is_short_query(query: str | None) -> bool:
    """True when a free-text query is too short to be worth an upstream call."""
    return query is None or len(query.strip()) < MIN_QUERY_LENGTH


def validate_content_ratings(ratings: list[str] | None) -> None:
    """Validate content rating filters."""
    if not ratings:
        return None
    allowed = {"safe", "suggestive", "erotica", "pornographic"}
    invalid = sorted(set(ratings) - allowed)
    if invalid:
        raise InvalidRequestError(
            f"Invalid content rating: {', '.join(invalid)}. "
            f"Valid options are: {sorted(allowed)}"
        )
    return None


def validate_tag_mode(mode: str | None) -> None:
    """Validate an included/excluded tag mode."""
    if mode is not None and mode.upper() not in {"AND", "OR"}:
        raise InvalidRequestError(f"Invalid tag mode '{mode}'. Use 'AND' or 'OR'")
    return None
