from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.persistence import models
from app.services.mangadex_schemas import TagData

logger = logging.getLogger(__name__)


@dataclass(slots=True, kw_only=True)
class TagPayload:
    tag_id: str
    group: str
    names: dict[str, Any] = field(default_factory=dict)
    descriptions: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_upstream(cls, data: TagData) -> TagPayload:
        return cls(
            tag_id=data.id,
            group=data.attributes.group,
            names=dict(data.attributes.name),
            descriptions=dict(data.attributes.description),
        )


class TagRepository:
    """Repository for the persisted tag taxonomy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert_tags(self, tags: Iterable[TagData | TagPayload]) -> int:
        """Insert or update tags. Returns the number of rows written."""
        payloads = [
            tag if isinstance(tag, TagPayload) else TagPayload.from_upstream(tag)
            for tag in tags
        ]
        if not payloads:
            return 0

        rows = [
            {
                "tag_id": payload.tag_id,
                "group": payload.group,
                "names": payload.names,
                "descriptions": payload.descriptions,
            }
            for payload in payloads
        ]
        stmt = insert(models.CatalogTag).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[models.CatalogTag.tag_id],
            set_={
                "group": stmt.excluded.group,
                "names": stmt.excluded.names,
                "descriptions": stmt.excluded.descriptions,
                "updated_at": func.now(),
            },
        )
        await self._session.execute(stmt)
        await self._session.commit()
        logger.info("Persisted %d catalog tags", len(rows))
        return len(rows)

    async def get_all_tags(self) -> list[models.CatalogTag]:
        """Get all tags ordered by group, then id."""
        stmt = select(models.CatalogTag).order_by(
            models.CatalogTag.group, models.CatalogTag.tag_id
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_tags(self) -> int:
        stmt = select(func.count(models.CatalogTag.tag_id))
        result = await self._session.execute(stmt)
        return result.scalar() or 0
