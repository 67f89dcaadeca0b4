"""Concrete catalog resources for each MangaDex read the API exposes."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from app.models.catalog import (
    Author,
    Chapter,
    ChapterPages,
    Group,
    Manga,
    MangaStatistics,
    Page,
    Tag,
)
from app.services import mangadex_dto as dto
from app.services.cache_ttl_config import CacheCategory
from app.services.mangadex_client import MangaDexClient, ParamValue, UpstreamRequest
from app.services.mangadex_errors import CatalogError, UpstreamRejectedError
from app.services.mangadex_mapping import (
    UNKNOWN_TAG,
    NormalizeContext,
    cover_url,
    find_relationships,
    map_author,
    map_chapter,
    map_chapter_pages,
    map_group,
    map_manga,
    map_page,
    map_statistics,
    map_tag,
    resolve_localized,
)
from app.services.mangadex_schemas import (
    AtHomeResponse,
    AuthorCollection,
    AuthorEntity,
    ChapterCollection,
    ChapterEntity,
    GroupCollection,
    GroupEntity,
    MangaCollection,
    MangaEntity,
    StatisticsResponse,
    TagCollection,
)

from .cache_protocols import CatalogResource, request_key_params

if TYPE_CHECKING:
    from app.persistence.repositories import TagRepository

logger = logging.getLogger(__name__)

MANGA_INCLUDES = ["cover_art", "author", "artist"]
CHAPTER_INCLUDES = ["scanlation_group", "manga"]
FEED_INCLUDES = ["scanlation_group"]
AUTHOR_INCLUDES = ["manga"]
GROUP_INCLUDES = ["leader", "member"]

Params = Mapping[str, ParamValue]


class MangaListResource(CatalogResource[MangaCollection]):
    """Any ``GET /manga`` listing: search, popular, latest, author works."""

    category = CacheCategory.MANGA_LIST
    schema = MangaCollection
    model = Page[Manga]

    def __init__(
        self, context: NormalizeContext, cache_name: str, params: Params
    ) -> None:
        super().__init__(context)
        self.cache_name = cache_name
        self.params = {"includes": MANGA_INCLUDES, **params}

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest("/manga", self.params, endpoint="manga_list")

    def normalize(self, payload: MangaCollection) -> dto.Page[dto.Manga]:
        return map_page(payload, lambda item: map_manga(item, self.context))


class RandomMangaResource(CatalogResource[MangaEntity]):
    cache_name = "random"
    category = CacheCategory.NO_STORE
    schema = MangaEntity
    model = Manga

    def __init__(self, context: NormalizeContext, params: Params) -> None:
        super().__init__(context)
        self.params = {"includes": MANGA_INCLUDES, **params}

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest("/manga/random", self.params, endpoint="manga_random")

    def normalize(self, payload: MangaEntity) -> dto.Manga:
        return map_manga(payload.data, self.context)


class MangaDetailResource(
    CatalogResource[tuple[MangaEntity, StatisticsResponse | None]]
):
    """One manga, optionally merged with its statistics.

    With statistics the entry follows the statistics TTL, which is shorter.
    A failed statistics call fails the whole read.
    """

    cache_name = "manga"
    category = CacheCategory.MANGA
    schema = MangaEntity
    model = Manga

    def __init__(
        self,
        context: NormalizeContext,
        manga_id: str,
        include_statistics: bool = False,
    ) -> None:
        super().__init__(context)
        self.manga_id = manga_id
        self.include_statistics = include_statistics

    def cache_category(self) -> CacheCategory:
        if self.include_statistics:
            return CacheCategory.STATISTICS
        return CacheCategory.MANGA

    def key_params(self) -> Params:
        return {"id": self.manga_id, "include_statistics": self.include_statistics}

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest(
            f"/manga/{self.manga_id}",
            {"includes": MANGA_INCLUDES},
            endpoint="manga_detail",
        )

    async def fetch(
        self, client: MangaDexClient
    ) -> tuple[MangaEntity, StatisticsResponse | None]:
        entity = await self.fetch_validated(client, self.build_request(), MangaEntity)
        statistics = None
        if self.include_statistics:
            statistics = await self.fetch_validated(
                client, statistics_request(self.manga_id), StatisticsResponse
            )
        return entity, statistics

    def normalize(
        self, payload: tuple[MangaEntity, StatisticsResponse | None]
    ) -> dto.Manga:
        entity, statistics = payload
        stats = None
        if statistics is not None and self.manga_id in statistics.statistics:
            stats = map_statistics(self.manga_id, statistics.statistics[self.manga_id])
        return map_manga(entity.data, self.context, statistics=stats)


def statistics_request(manga_id: str) -> UpstreamRequest:
    return UpstreamRequest(
        f"/statistics/manga/{manga_id}", endpoint="manga_statistics"
    )


class MangaStatisticsResource(CatalogResource[StatisticsResponse]):
    cache_name = "statistics"
    category = CacheCategory.STATISTICS
    schema = StatisticsResponse
    model = MangaStatistics

    def __init__(self, context: NormalizeContext, manga_id: str) -> None:
        super().__init__(context)
        self.manga_id = manga_id

    def key_params(self) -> Params:
        return {"id": self.manga_id}

    def build_request(self) -> UpstreamRequest:
        return statistics_request(self.manga_id)

    def normalize(self, payload: StatisticsResponse) -> dto.MangaStatistics:
        data = payload.statistics.get(self.manga_id)
        if data is None:
            # MangaDex answers 200 with an empty map for unknown ids
            raise UpstreamRejectedError(404, {"statistics": {}})
        return map_statistics(self.manga_id, data)


class MangaFeedResource(CatalogResource[ChapterCollection]):
    cache_name = "manga_feed"
    category = CacheCategory.CHAPTER
    schema = ChapterCollection
    model = Page[Chapter]

    def __init__(
        self, context: NormalizeContext, manga_id: str, params: Params
    ) -> None:
        super().__init__(context)
        self.manga_id = manga_id
        self.params = {
            "includes": FEED_INCLUDES,
            "order": {"chapter": "desc"},
            **params,
        }

    def key_params(self) -> Params:
        return {"id": self.manga_id, **request_key_params(self.params)}

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest(
            f"/manga/{self.manga_id}/feed", self.params, endpoint="manga_feed"
        )

    def normalize(self, payload: ChapterCollection) -> dto.Page[dto.Chapter]:
        return map_page(payload, lambda item: map_chapter(item, self.context))


class ChapterResource(CatalogResource[ChapterEntity]):
    cache_name = "chapter"
    category = CacheCategory.CHAPTER
    schema = ChapterEntity
    model = Chapter

    def __init__(self, context: NormalizeContext, chapter_id: str) -> None:
        super().__init__(context)
        self.chapter_id = chapter_id

    def key_params(self) -> Params:
        return {"id": self.chapter_id}

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest(
            f"/chapter/{self.chapter_id}",
            {"includes": CHAPTER_INCLUDES},
            endpoint="chapter",
        )

    def normalize(self, payload: ChapterEntity) -> dto.Chapter:
        return map_chapter(payload.data, self.context)


class ChapterPagesResource(CatalogResource[AtHomeResponse]):
    """At-home server URLs rotate per request, so they are never cached."""

    cache_name = "chapter_pages"
    category = CacheCategory.NO_STORE
    schema = AtHomeResponse
    model = ChapterPages

    def __init__(self, context: NormalizeContext, chapter_id: str) -> None:
        super().__init__(context)
        self.chapter_id = chapter_id

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest(
            f"/at-home/server/{self.chapter_id}", endpoint="at_home"
        )

    def normalize(self, payload: AtHomeResponse) -> dto.ChapterPages:
        return map_chapter_pages(self.chapter_id, payload)


class LatestChaptersResource(
    CatalogResource[tuple[ChapterCollection, dict[str, str]]]
):
    """Latest chapters with each manga's cover fetched in one bulk call.

    Covers are decoration: if the bulk manga call fails the chapters are
    still returned, without covers.
    """

    cache_name = "latest_chapters"
    category = CacheCategory.LATEST_CHAPTERS
    schema = ChapterCollection
    model = Page[Chapter]

    def __init__(self, context: NormalizeContext, params: Params) -> None:
        super().__init__(context)
        self.params = {
            "includes": CHAPTER_INCLUDES,
            "order": {"readableAt": "desc"},
            **params,
        }

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest("/chapter", self.params, endpoint="latest_chapters")

    async def fetch(
        self, client: MangaDexClient
    ) -> tuple[ChapterCollection, dict[str, str]]:
        chapters = await self.fetch_validated(
            client, self.build_request(), ChapterCollection
        )
        manga_ids = list(
            dict.fromkeys(
                rel.id
                for chapter in chapters.data
                for rel in find_relationships(chapter.relationships, "manga")
            )
        )
        if not manga_ids:
            return chapters, {}

        try:
            return chapters, await self._fetch_covers(client, manga_ids)
        except CatalogError as exc:
            logger.warning(
                "Cover lookup for %d manga failed, serving chapters without covers: %s",
                len(manga_ids),
                exc,
            )
            return chapters, {}

    async def _fetch_covers(
        self, client: MangaDexClient, manga_ids: list[str]
    ) -> dict[str, str]:
        params: dict[str, ParamValue] = {
            "ids": manga_ids,
            "includes": ["cover_art"],
            "limit": len(manga_ids),
        }
        if "contentRating" in self.params:
            params["contentRating"] = self.params["contentRating"]
        collection = await self.fetch_validated(
            client,
            UpstreamRequest("/manga", params, endpoint="manga_covers"),
            MangaCollection,
        )
        covers: dict[str, str] = {}
        for manga in collection.data:
            for rel in find_relationships(manga.relationships, "cover_art"):
                if rel.attributes and rel.attributes.file_name:
                    covers[manga.id] = cover_url(
                        self.context.uploads_base_url,
                        manga.id,
                        rel.attributes.file_name,
                        256,
                    )
                    break
        return covers

    def normalize(
        self, payload: tuple[ChapterCollection, dict[str, str]]
    ) -> dto.Page[dto.Chapter]:
        chapters, covers = payload
        return map_page(
            chapters, lambda item: map_chapter(item, self.context, cover_urls=covers)
        )


class TagListResource(CatalogResource[TagCollection]):
    """Tag taxonomy, mirrored to the database and served from it as a fallback."""

    cache_name = "tags"
    category = CacheCategory.TAGS
    schema = TagCollection
    model = Page[Tag]

    def __init__(
        self, context: NormalizeContext, repository: TagRepository | None = None
    ) -> None:
        super().__init__(context)
        self.repository = repository

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest("/manga/tag", endpoint="tags")

    def normalize(self, payload: TagCollection) -> dto.Page[dto.Tag]:
        return map_page(payload, lambda item: map_tag(item, self.context.locale))

    async def on_fresh(self, payload: TagCollection, data: Any) -> None:
        if self.repository is not None:
            await self.repository.upsert_tags(payload.data)

    async def fallback(self) -> Any | None:
        if self.repository is None:
            return None
        rows = await self.repository.get_all_tags()
        if not rows:
            return None
        locale = self.context.locale
        tags = []
        for row in rows:
            description = resolve_localized(row.descriptions, locale, "")
            tags.append(
                dto.Tag(
                    id=row.tag_id,
                    name=resolve_localized(row.names, locale, UNKNOWN_TAG),
                    group=row.group,
                    description=description or None,
                )
            )
        page = dto.Page(items=tags, limit=len(tags), offset=0, total=len(tags))
        return self.model.from_dto(page).model_dump(mode="json")


class AuthorResource(CatalogResource[AuthorEntity]):
    cache_name = "author"
    category = CacheCategory.AUTHOR
    schema = AuthorEntity
    model = Author

    def __init__(self, context: NormalizeContext, author_id: str) -> None:
        super().__init__(context)
        self.author_id = author_id

    def key_params(self) -> Params:
        return {"id": self.author_id}

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest(
            f"/author/{self.author_id}",
            {"includes": AUTHOR_INCLUDES},
            endpoint="author",
        )

    def normalize(self, payload: AuthorEntity) -> dto.Author:
        return map_author(payload.data, self.context.locale)


class AuthorSearchResource(CatalogResource[AuthorCollection]):
    cache_name = "author_search"
    category = CacheCategory.AUTHOR
    schema = AuthorCollection
    model = Page[Author]

    def __init__(self, context: NormalizeContext, params: Params) -> None:
        super().__init__(context)
        self.params = dict(params)

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest("/author", self.params, endpoint="author_search")

    def normalize(self, payload: AuthorCollection) -> dto.Page[dto.Author]:
        return map_page(payload, lambda item: map_author(item, self.context.locale))


class GroupResource(CatalogResource[GroupEntity]):
    cache_name = "group"
    category = CacheCategory.GROUP
    schema = GroupEntity
    model = Group

    def __init__(self, context: NormalizeContext, group_id: str) -> None:
        super().__init__(context)
        self.group_id = group_id

    def key_params(self) -> Params:
        return {"id": self.group_id}

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest(
            f"/group/{self.group_id}", {"includes": GROUP_INCLUDES}, endpoint="group"
        )

    def normalize(self, payload: GroupEntity) -> dto.Group:
        return map_group(payload.data, self.context.locale)


class GroupSearchResource(CatalogResource[GroupCollection]):
    cache_name = "group_search"
    category = CacheCategory.GROUP
    schema = GroupCollection
    model = Page[Group]

    def __init__(self, context: NormalizeContext, params: Params) -> None:
        super().__init__(context)
        self.params = dict(params)

    def build_request(self) -> UpstreamRequest:
        return UpstreamRequest("/group", self.params, endpoint="group_search")

    def normalize(self, payload: GroupCollection) -> dto.Page[dto.Group]:
        return map_page(payload, lambda item: map_group(item, self.context.locale))


__all__ = [
    "AuthorResource",
    "AuthorSearchResource",
    "ChapterPagesResource",
    "ChapterResource",
    "GroupResource",
    "GroupSearchResource",
    "LatestChaptersResource",
    "MangaDetailResource",
    "MangaFeedResource",
    "MangaListResource",
    "MangaStatisticsResource",
    "RandomMangaResource",
    "TagListResource",
]
