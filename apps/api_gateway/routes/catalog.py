from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from libs.data.repositories import CatalogRepository

from ..dependencies import get_category_cache, get_session_dep
from ..schemas import CategoryResponse
from ..services.catalog.cache import CategoryCache

router = APIRouter()


@router.get("", response_model=list[CategoryResponse])
async def list_categories(
    session: AsyncSession = Depends(get_session_dep),
    cache: CategoryCache = Depends(get_category_cache),
):
    async def load() -> list[CategoryResponse]:
        categories = await CatalogRepository(session).list_tree()
        return [CategoryResponse.model_validate(category) for category in categories]

    return await cache.get(load)
