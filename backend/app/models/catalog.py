"""Outgoing catalog models and the response envelope.

Normalized DTOs are re-validated through these models before they are cached
or returned, so a normalizer bug surfaces as a validation error here instead
of reaching a browser.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class CatalogModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, extra="forbid")

    @classmethod
    def from_dto(cls, dto: Any):
        return cls.model_validate(dto)


class RelationshipRef(CatalogModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class Tag(CatalogModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, description="Name in the requested locale.")
    group: str
    description: str | None = None


class MangaStatistics(CatalogModel):
    manga_id: str
    rating_average: float | None = Field(None, ge=0, le=10)
    rating_bayesian: float | None = Field(None, ge=0, le=10)
    follows: int = Field(..., ge=0)
    comment_count: int = Field(..., ge=0)


class Manga(CatalogModel):
    id: str = Field(..., min_length=1, description="MangaDex manga UUID.")
    title: str = Field(..., min_length=1)
    alt_titles: list[str]
    description: str
    status: str
    status_text: str = Field(..., min_length=1)
    content_rating: str
    content_rating_text: str = Field(..., min_length=1)
    demographic: str | None
    demographic_text: str = Field(..., min_length=1)
    original_language: str
    year: int | None = Field(None, ge=1800, le=2200)
    last_volume: str | None
    last_chapter: str | None
    tags: list[Tag]
    authors: list[RelationshipRef]
    artists: list[RelationshipRef]
    author_name: str = Field(..., min_length=1)
    artist_name: str = Field(..., min_length=1)
    cover_file_name: str | None
    cover_url: str | None = Field(None, description="512px cover thumbnail URL.")
    cover_thumbnail_url: str | None = Field(
        None, description="256px cover thumbnail URL."
    )
    available_languages: list[str]
    latest_uploaded_chapter: str | None
    created_at: datetime | None
    updated_at: datetime | None
    statistics: MangaStatistics | None = None


class Chapter(CatalogModel):
    id: str = Field(..., min_length=1)
    manga_id: str | None
    manga_title: str | None
    volume: str | None
    chapter: str | None
    title: str | None
    label: str = Field(..., min_length=1, description="e.g. 'Vol. 1 Ch. 2: Title'.")
    translated_language: str
    pages: int = Field(..., ge=0)
    external_url: str | None
    group: RelationshipRef | None
    group_name: str = Field(..., min_length=1)
    publish_at: datetime | None
    readable_at: datetime | None
    manga_cover_url: str | None = None


class Author(CatalogModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    image_url: str | None
    biography: str | None
    twitter: str | None
    pixiv: str | None
    website: str | None
    manga_ids: list[str]


class Group(CatalogModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    alt_names: list[str]
    description: str | None
    website: str | None
    official: bool
    verified: bool
    focused_languages: list[str]
    leader: RelationshipRef | None
    member_count: int = Field(..., ge=0)


class ChapterPages(CatalogModel):
    chapter_id: str
    base_url: str = Field(..., min_length=1)
    hash: str
    pages: list[str]
    pages_data_saver: list[str]


ItemT = TypeVar("ItemT", bound=CatalogModel)


class Page(CatalogModel, Generic[ItemT]):
    items: list[ItemT]
    limit: int = Field(..., ge=0)
    offset: int = Field(..., ge=0)
    total: int = Field(..., ge=0)


DataT = TypeVar("DataT")


class Envelope(BaseModel, Generic[DataT]):
    """Uniform response shape for every catalog endpoint, errors included."""

    success: bool
    data: DataT | None = None
    cached: bool = False
    message: str | None = None
    debug: dict[str, Any] | None = Field(
        None, description="Diagnostics, only outside production."
    )

    @classmethod
    def ok(cls, data: DataT, *, cached: bool) -> "Envelope[DataT]":
        return cls(success=True, data=data, cached=cached)

    @classmethod
    def fail(
        cls, message: str, *, debug: dict[str, Any] | None = None
    ) -> "Envelope[Any]":
        return cls(success=False, data=None, cached=False, message=message, debug=debug)

    def to_content(self) -> dict[str, Any]:
        """JSON body: ``message`` only when set, ``debug`` only when present."""
        content = self.model_dump(mode="json", exclude={"debug"})
        if content["message"] is None:
            del content["message"]
        if self.debug is not None:
            content["debug"] = self.debug
        return content
