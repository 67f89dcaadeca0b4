"""Normalized catalog entities produced from validated MangaDex payloads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, List, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class RelationshipRef:
    """Resolved reference to a related entity (author, artist, group, manga)."""

    id: str
    name: str


@dataclass(frozen=True)
class Tag:
    """Catalog tag with its display name resolved."""

    id: str
    name: str
    group: str
    description: str | None = None


@dataclass(frozen=True)
class MangaStatistics:
    """Community statistics for one manga."""

    manga_id: str
    rating_average: float | None
    rating_bayesian: float | None
    follows: int
    comment_count: int


@dataclass(frozen=True)
class Manga:
    """Manga with localized strings resolved and relationships projected."""

    id: str
    title: str
    alt_titles: List[str]
    description: str
    status: str
    status_text: str
    content_rating: str
    content_rating_text: str
    demographic: str | None
    demographic_text: str
    original_language: str
    year: int | None
    last_volume: str | None
    last_chapter: str | None
    tags: List[Tag]
    authors: List[RelationshipRef]
    artists: List[RelationshipRef]
    author_name: str
    artist_name: str
    cover_file_name: str | None
    cover_url: str | None
    cover_thumbnail_url: str | None
    available_languages: List[str]
    latest_uploaded_chapter: str | None
    created_at: datetime | None
    updated_at: datetime | None
    statistics: MangaStatistics | None = None


@dataclass(frozen=True)
class Chapter:
    """Chapter with display label and scanlation group resolved."""

    id: str
    manga_id: str | None
    manga_title: str | None
    volume: str | None
    chapter: str | None
    title: str | None
    label: str
    translated_language: str
    pages: int
    external_url: str | None
    group: RelationshipRef | None
    group_name: str
    publish_at: datetime | None
    readable_at: datetime | None
    manga_cover_url: str | None = None


@dataclass(frozen=True)
class Author:
    """Author or artist profile."""

    id: str
    name: str
    image_url: str | None
    biography: str | None
    twitter: str | None
    pixiv: str | None
    website: str | None
    manga_ids: List[str]


@dataclass(frozen=True)
class Group:
    """Scanlation group profile."""

    id: str
    name: str
    alt_names: List[str]
    description: str | None
    website: str | None
    official: bool
    verified: bool
    focused_languages: List[str]
    leader: RelationshipRef | None
    member_count: int


@dataclass(frozen=True)
class ChapterPages:
    """Page image URLs for a chapter from its at-home delivery node."""

    chapter_id: str
    base_url: str
    hash: str
    pages: List[str]
    pages_data_saver: List[str]


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a paginated listing."""

    items: List[T]
    limit: int
    offset: int
    total: int
