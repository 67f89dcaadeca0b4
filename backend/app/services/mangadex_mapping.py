"""Pure mapping from validated MangaDex payloads to catalog entities."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TypeVar

from app.services.mangadex_dto import (
    Author,
    Chapter,
    ChapterPages,
    Group,
    Manga,
    MangaStatistics,
    Page,
    RelationshipRef,
    Tag,
)
from app.services.mangadex_schemas import (
    AtHomeResponse,
    AuthorData,
    ChapterData,
    CollectionResponse,
    GroupData,
    MangaData,
    MangaStatisticsData,
    Relationship,
    TagData,
)

FALLBACK_LOCALE = "en"

UNTITLED = "Untitled"
NO_DESCRIPTION = "No Description"
UNKNOWN_TAG = "Unknown Tag"
UNKNOWN_AUTHOR = "Unknown Author"
UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_GROUP = "Unknown Group"
UNKNOWN = "Unknown"
ONESHOT = "Oneshot"

STATUS_TEXT: dict[str, str] = {
    "ongoing": "Ongoing",
    "completed": "Completed",
    "hiatus": "On Hiatus",
    "cancelled": "Cancelled",
}

CONTENT_RATING_TEXT: dict[str, str] = {
    "safe": "Safe",
    "suggestive": "Suggestive",
    "erotica": "Erotica",
    "pornographic": "Pornographic",
}

DEMOGRAPHIC_TEXT: dict[str, str] = {
    "shounen": "Shounen",
    "shoujo": "Shoujo",
    "josei": "Josei",
    "seinen": "Seinen",
}

T = TypeVar("T")
S = TypeVar("S")


@dataclass(frozen=True, slots=True)
class NormalizeContext:
    """Request-scoped inputs the normalizer needs besides the payload."""

    locale: str
    uploads_base_url: str = "https://uploads.mangadex.org"


def resolve_localized(
    values: Mapping[str, str | None] | None,
    locale: str,
    placeholder: str,
) -> str:
    """Pick one display string: requested locale, English, first available, placeholder."""
    if not values:
        return placeholder
    for candidate in (locale.lower(), FALLBACK_LOCALE):
        value = values.get(candidate)
        if value:
            return value
    for value in values.values():
        if value:
            return value
    return placeholder


def status_text(status: str | None) -> str:
    return STATUS_TEXT.get(status or "", UNKNOWN)


def content_rating_text(rating: str | None) -> str:
    return CONTENT_RATING_TEXT.get(rating or "", UNKNOWN)


def demographic_text(demographic: str | None) -> str:
    if not demographic:
        return "None"
    return DEMOGRAPHIC_TEXT.get(demographic, UNKNOWN)


def chapter_label(volume: str | None, chapter: str | None, title: str | None) -> str:
    """Build ``Vol. 1 Ch. 2: Title``; a chapter with none of these is a oneshot."""
    parts = []
    if volume:
        parts.append(f"Vol. {volume}")
    if chapter:
        parts.append(f"Ch. {chapter}")
    numbering = " ".join(parts)
    if title:
        return f"{numbering}: {title}" if numbering else title
    return numbering or ONESHOT


def cover_url(
    uploads_base_url: str, manga_id: str, file_name: str, size: int | None = None
) -> str:
    base = f"{uploads_base_url.rstrip('/')}/covers/{manga_id}/{file_name}"
    return f"{base}.{size}.jpg" if size else base


def find_relationships(
    relationships: Iterable[Relationship], rel_type: str
) -> list[Relationship]:
    return [rel for rel in relationships if rel.type == rel_type]


def project_refs(
    relationships: Iterable[Relationship], rel_type: str, placeholder: str
) -> list[RelationshipRef]:
    """Project relationships of one type into id/name pairs."""
    return [
        RelationshipRef(
            id=rel.id,
            name=(rel.attributes.name if rel.attributes else None) or placeholder,
        )
        for rel in find_relationships(relationships, rel_type)
    ]


def _join_names(refs: list[RelationshipRef], placeholder: str) -> str:
    return ", ".join(ref.name for ref in refs) or placeholder


def map_tag(data: TagData, locale: str) -> Tag:
    """Map a validated tag to its catalog entity."""
    description = resolve_localized(data.attributes.description, locale, "")
    return Tag(
        id=data.id,
        name=resolve_localized(data.attributes.name, locale, UNKNOWN_TAG),
        group=data.attributes.group,
        description=description or None,
    )


def map_statistics(manga_id: str, data: MangaStatisticsData) -> MangaStatistics:
    rating = data.rating
    return MangaStatistics(
        manga_id=manga_id,
        rating_average=rating.average if rating else None,
        rating_bayesian=rating.bayesian if rating else None,
        follows=data.follows or 0,
        comment_count=data.comments.replies_count if data.comments else 0,
    )


def map_manga(
    data: MangaData,
    context: NormalizeContext,
    statistics: MangaStatistics | None = None,
) -> Manga:
    """Map a validated manga to its catalog entity."""
    attributes = data.attributes
    locale = context.locale

    authors = project_refs(data.relationships, "author", UNKNOWN_AUTHOR)
    artists = project_refs(data.relationships, "artist", UNKNOWN_ARTIST)

    cover_file_name = None
    for rel in find_relationships(data.relationships, "cover_art"):
        if rel.attributes and rel.attributes.file_name:
            cover_file_name = rel.attributes.file_name
            break

    alt_titles = [
        value
        for alt in attributes.alt_titles
        for value in alt.values()
        if value
    ]

    return Manga(
        id=data.id,
        title=resolve_localized(attributes.title, locale, UNTITLED),
        alt_titles=alt_titles,
        description=resolve_localized(attributes.description, locale, NO_DESCRIPTION),
        status=attributes.status,
        status_text=status_text(attributes.status),
        content_rating=attributes.content_rating,
        content_rating_text=content_rating_text(attributes.content_rating),
        demographic=attributes.publication_demographic,
        demographic_text=demographic_text(attributes.publication_demographic),
        original_language=attributes.original_language,
        year=attributes.year,
        last_volume=attributes.last_volume or None,
        last_chapter=attributes.last_chapter or None,
        tags=[map_tag(tag, locale) for tag in attributes.tags],
        authors=authors,
        artists=artists,
        author_name=_join_names(authors, UNKNOWN_AUTHOR),
        artist_name=_join_names(artists, UNKNOWN_ARTIST),
        cover_file_name=cover_file_name,
        cover_url=(
            cover_url(context.uploads_base_url, data.id, cover_file_name, 512)
            if cover_file_name
            else None
        ),
        cover_thumbnail_url=(
            cover_url(context.uploads_base_url, data.id, cover_file_name, 256)
            if cover_file_name
            else None
        ),
        available_languages=[
            lang for lang in attributes.available_translated_languages if lang
        ],
        latest_uploaded_chapter=attributes.latest_uploaded_chapter,
        created_at=attributes.created_at,
        updated_at=attributes.updated_at,
        statistics=statistics,
    )


def map_chapter(
    data: ChapterData,
    context: NormalizeContext,
    cover_urls: Mapping[str, str] | None = None,
) -> Chapter:
    """Map a validated chapter to its catalog entity.

    ``cover_urls`` maps manga ids to thumbnail URLs for listings that show a
    cover next to each chapter.
    """
    attributes = data.attributes

    manga_rels = find_relationships(data.relationships, "manga")
    manga_id = manga_rels[0].id if manga_rels else None
    manga_title = None
    if manga_rels and manga_rels[0].attributes and manga_rels[0].attributes.title:
        manga_title = resolve_localized(
            manga_rels[0].attributes.title, context.locale, UNTITLED
        )

    groups = project_refs(data.relationships, "scanlation_group", UNKNOWN_GROUP)
    group = groups[0] if groups else None

    return Chapter(
        id=data.id,
        manga_id=manga_id,
        manga_title=manga_title,
        volume=attributes.volume,
        chapter=attributes.chapter,
        title=attributes.title or None,
        label=chapter_label(attributes.volume, attributes.chapter, attributes.title),
        translated_language=attributes.translated_language,
        pages=attributes.pages,
        external_url=attributes.external_url,
        group=group,
        group_name=group.name if group else UNKNOWN_GROUP,
        publish_at=attributes.publish_at,
        readable_at=attributes.readable_at,
        manga_cover_url=(cover_urls or {}).get(manga_id) if manga_id else None,
    )


def map_author(data: AuthorData, locale: str) -> Author:
    attributes = data.attributes
    biography = resolve_localized(attributes.biography, locale, "")
    return Author(
        id=data.id,
        name=attributes.name or UNKNOWN_AUTHOR,
        image_url=attributes.image_url,
        biography=biography or None,
        twitter=attributes.twitter,
        pixiv=attributes.pixiv,
        website=attributes.website,
        manga_ids=[rel.id for rel in find_relationships(data.relationships, "manga")],
    )


def map_group(data: GroupData, locale: str) -> Group:
    attributes = data.attributes
    leaders = project_refs(data.relationships, "leader", UNKNOWN)
    return Group(
        id=data.id,
        name=attributes.name or UNKNOWN_GROUP,
        alt_names=[
            name
            for name in (
                resolve_localized(alt, locale, "") for alt in attributes.alt_names
            )
            if name
        ],
        description=attributes.description or None,
        website=attributes.website,
        official=attributes.official,
        verified=attributes.verified,
        focused_languages=list(attributes.focused_languages or []),
        leader=leaders[0] if leaders else None,
        member_count=len(find_relationships(data.relationships, "member")),
    )


def map_chapter_pages(chapter_id: str, payload: AtHomeResponse) -> ChapterPages:
    """Expand at-home file names into full page URLs."""
    base = payload.base_url.rstrip("/")
    chapter_hash = payload.chapter.hash
    return ChapterPages(
        chapter_id=chapter_id,
        base_url=base,
        hash=chapter_hash,
        pages=[f"{base}/data/{chapter_hash}/{name}" for name in payload.chapter.data],
        pages_data_saver=[
            f"{base}/data-saver/{chapter_hash}/{name}"
            for name in payload.chapter.data_saver
        ],
    )


def map_page(
    collection: CollectionResponse[S], mapper: Callable[[S], T]
) -> Page[T]:
    """Map every item of a collection while keeping its pagination metadata."""
    return Page(
        items=[mapper(item) for item in collection.data],
        limit=collection.limit,
        offset=collection.offset,
        total=collection.total,
    )
