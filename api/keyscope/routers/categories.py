"""
Category browsing API.

GET /categories/tree                   - Three-level tree with distinct keyword counts
GET /categories/by-type/{hpk|rk}       - Top-level categories holding HPK or RK data
"""
import json
from typing import Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from keyscope.config import get_settings
from keyscope.database import get_db
from keyscope.dependencies import (
    cache_key, catalog_version, get_cached, get_redis, parse_keyword_type, set_cached,
)
from keyscope.schemas import CategoryNode, CategoryTreeResponse, KeywordType
from keyscope.services.categories import get_category_tree, get_type_categories
from keyscope.services.query import coerce_search_metric
from keyscope.services.search import count_distinct_keywords

router = APIRouter(prefix="/categories", tags=["categories"])
settings = get_settings()


# ─── GET /categories/tree ───
@router.get("/tree", response_model=CategoryTreeResponse)
async def category_tree(
    upload_period: Optional[str] = None,
    search_metric: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    metric = coerce_search_metric(search_metric)

    # Check cache
    version = await catalog_version(redis)
    ck = cache_key("category_tree", period=upload_period, metric=metric.value, version=version)
    cached = await get_cached(ck, redis)
    if cached:
        return json.loads(cached)

    nodes = await db.run_sync(get_category_tree, upload_period, metric.value)
    total = await db.run_sync(count_distinct_keywords, upload_period, metric.value)
    response = CategoryTreeResponse(categories=nodes, total_unique_keywords=total)

    await set_cached(ck, response.model_dump_json(), settings.CATEGORY_CACHE_TTL, redis)
    return response


# ─── GET /categories/by-type/{keyword_type} ───
@router.get("/by-type/{keyword_type}", response_model=list[CategoryNode])
async def categories_by_type(
    keyword_type: str,
    db: AsyncSession = Depends(get_db),
):
    kind = parse_keyword_type(keyword_type)
    if kind == KeywordType.regular:
        raise HTTPException(400, "Type-restricted categories are available for hpk and rk only")
    return await db.run_sync(get_type_categories, kind)
