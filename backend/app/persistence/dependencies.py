from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_session
from app.persistence.repositories import TagRepository


async def get_tag_repository(
    session: AsyncSession = Depends(get_session),
) -> TagRepository:
    """FastAPI dependency that yields a configured TagRepository."""
    return TagRepository(session)
