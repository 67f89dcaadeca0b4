"""Declarative schemas for MangaDex responses and the validation boundary.

Raw JSON from MangaDex never travels past ``validate``: callers get either a
typed model or every field error found in the payload.

Structural discriminators (``result``, ``response``, entity ``type``) are closed
sets and reject unexpected values. Display enums such as ``status`` or
``contentRating`` are kept as strings so the normalizer can map values it does
not know to an ``Unknown`` label instead of failing the whole payload.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Annotated, Any, Generic, Literal, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from app.services.mangadex_errors import FieldError, ValidationFailedError


def _empty_list_as_dict(value: Any) -> Any:
    # MangaDex serializes an empty localized map as [] instead of {}
    if isinstance(value, list) and not value:
        return {}
    return value


LocalizedString = Annotated[dict[str, str | None], BeforeValidator(_empty_list_as_dict)]


class UpstreamModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class RelationshipAttributes(UpstreamModel):
    """Subset of expanded relationship attributes (``includes[]``) we read."""

    name: str | None = None
    file_name: str | None = None
    title: LocalizedString | None = None


class Relationship(UpstreamModel):
    id: str
    type: str
    related: str | None = None
    attributes: RelationshipAttributes | None = None


class TagAttributes(UpstreamModel):
    name: LocalizedString
    description: LocalizedString = {}
    group: str


class TagData(UpstreamModel):
    id: str
    type: Literal["tag"]
    attributes: TagAttributes
    relationships: list[Relationship] = []


class MangaAttributes(UpstreamModel):
    title: LocalizedString
    alt_titles: list[LocalizedString] = []
    description: LocalizedString = {}
    original_language: str
    last_volume: str | None = None
    last_chapter: str | None = None
    publication_demographic: str | None = None
    status: str
    year: int | None = None
    content_rating: str
    tags: list[TagData] = []
    available_translated_languages: list[str | None] = []
    latest_uploaded_chapter: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class MangaData(UpstreamModel):
    id: str
    type: Literal["manga"]
    attributes: MangaAttributes
    relationships: list[Relationship] = []


class ChapterAttributes(UpstreamModel):
    volume: str | None = None
    chapter: str | None = None
    title: str | None = None
    translated_language: str
    external_url: str | None = None
    pages: int = 0
    publish_at: datetime | None = None
    readable_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChapterData(UpstreamModel):
    id: str
    type: Literal["chapter"]
    attributes: ChapterAttributes
    relationships: list[Relationship] = []


class AuthorAttributes(UpstreamModel):
    name: str
    image_url: str | None = None
    biography: LocalizedString = {}
    twitter: str | None = None
    pixiv: str | None = None
    website: str | None = None
    created_at: datetime | None = None


class AuthorData(UpstreamModel):
    id: str
    type: Literal["author", "artist"]
    attributes: AuthorAttributes
    relationships: list[Relationship] = []


class GroupAttributes(UpstreamModel):
    name: str
    alt_names: list[LocalizedString] = []
    website: str | None = None
    description: str | None = None
    official: bool = False
    verified: bool = False
    focused_languages: list[str] | None = None
    created_at: datetime | None = None


class GroupData(UpstreamModel):
    id: str
    type: Literal["scanlation_group"]
    attributes: GroupAttributes
    relationships: list[Relationship] = []


EntityT = TypeVar("EntityT", bound=UpstreamModel)


class CollectionResponse(UpstreamModel, Generic[EntityT]):
    result: Literal["ok"]
    response: Literal["collection"]
    data: list[EntityT]
    limit: int
    offset: int
    total: int


class EntityResponse(UpstreamModel, Generic[EntityT]):
    result: Literal["ok"]
    response: Literal["entity"]
    data: EntityT


class StatisticsRating(UpstreamModel):
    average: float | None = None
    bayesian: float | None = None


class StatisticsComments(UpstreamModel):
    thread_id: int | None = None
    replies_count: int = 0


class MangaStatisticsData(UpstreamModel):
    comments: StatisticsComments | None = None
    rating: StatisticsRating | None = None
    follows: int | None = None


class StatisticsResponse(UpstreamModel):
    result: Literal["ok"]
    statistics: dict[str, MangaStatisticsData]


class AtHomeChapter(UpstreamModel):
    hash: str
    data: list[str]
    data_saver: list[str]


class AtHomeResponse(UpstreamModel):
    result: Literal["ok"]
    base_url: str
    chapter: AtHomeChapter


MangaCollection = CollectionResponse[MangaData]
MangaEntity = EntityResponse[MangaData]
ChapterCollection = CollectionResponse[ChapterData]
ChapterEntity = EntityResponse[ChapterData]
TagCollection = CollectionResponse[TagData]
AuthorCollection = CollectionResponse[AuthorData]
AuthorEntity = EntityResponse[AuthorData]
GroupCollection = CollectionResponse[GroupData]
GroupEntity = EntityResponse[GroupData]


# =============================================================================
# Validation boundary
# =============================================================================

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True, slots=True)
class ValidationResult(Generic[SchemaT]):
    """Either a typed value or the complete list of field errors."""

    value: SchemaT | None = None
    errors: tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors

    def unwrap(self, schema_name: str) -> SchemaT:
        if not self.ok:
            raise ValidationFailedError(schema_name, self.errors)
        assert self.value is not None
        return self.value


def _format_location(loc: tuple[int | str, ...]) -> str:
    parts: list[str] = []
    for item in loc:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        else:
            parts.append(f".{item}" if parts else item)
    return "".join(parts) or "<root>"


def validate(schema: type[SchemaT], raw: Any) -> ValidationResult[SchemaT]:
    """Validate ``raw`` against ``schema`` without raising.

    Every failing field is reported, not only the first.
    """
    try:
        return ValidationResult(value=schema.model_validate(raw))
    except ValidationError as exc:
        errors = tuple(
            FieldError(
                location=_format_location(tuple(error["loc"])),
                message=error["msg"],
                kind=error["type"],
            )
            for error in exc.errors(include_url=False)
        )
        return ValidationResult(errors=errors)


__all__ = [
    "AtHomeResponse",
    "AuthorCollection",
    "AuthorData",
    "AuthorEntity",
    "ChapterCollection",
    "ChapterData",
    "ChapterEntity",
    "CollectionResponse",
    "EntityResponse",
    "GroupCollection",
    "GroupData",
    "GroupEntity",
    "LocalizedString",
    "MangaCollection",
    "MangaData",
    "MangaEntity",
    "MangaStatisticsData",
    "Relationship",
    "StatisticsResponse",
    "TagCollection",
    "TagData",
    "ValidationResult",
    "validate",
]
