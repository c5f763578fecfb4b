"""
Keyword search API.

GET /keywords/search                  - Filtered, deduplicated, sorted keyword page
GET /keywords/periods/{keyword_type}  - Upload periods with display labels
"""
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from keyscope.config import get_settings
from keyscope.database import get_db
from keyscope.dependencies import check_rate_limit, parse_keyword_type
from keyscope.schemas import (
    FormattedPeriod, KeywordFilters, KeywordOut, PaginatedResponse, PaginationMeta,
)
from keyscope.services.query import parse_sort
from keyscope.services.search import normalize_paging, search_keywords
from keyscope.services.uploads import list_formatted_periods
from keyscope.services.usage import track_activity

router = APIRouter(prefix="/keywords", tags=["keywords"])
settings = get_settings()


# ─── GET /keywords/search ───
@router.get("/search", response_model=PaginatedResponse)
async def search(
    q: Optional[str] = None,
    category: Optional[str] = None,
    sub_category_1: Optional[str] = None,
    sub_category_2: Optional[str] = None,
    upload_period: Optional[str] = None,
    search_metric: str = "top",
    sort: Optional[str] = Query(None, description='e.g. "-search_volume,keyword"'),
    page: int = 1,
    page_size: int = settings.DEFAULT_PAGE_SIZE,
    claims: Optional[dict] = Depends(check_rate_limit),
    db: AsyncSession = Depends(get_db),
):
    """Search keywords. One row per distinct keyword; `total` counts distinct keywords."""
    filters = KeywordFilters(
        query=q,
        category=category,
        sub_category_1=sub_category_1,
        sub_category_2=sub_category_2,
        upload_period=upload_period,
        search_metric=search_metric,
    )
    page, page_size = normalize_paging(page, page_size)
    result = await db.run_sync(search_keywords, filters, parse_sort(sort), page, page_size)
    data = [KeywordOut.model_validate(row) for row in result.rows]

    await db.run_sync(
        track_activity,
        "search",
        {"query": q, "search_metric": search_metric, "upload_period": upload_period, "total": result.total},
        claims.get("sub") if claims else None,
    )

    total_pages = math.ceil(result.total / page_size) if result.total else 0
    return PaginatedResponse(
        data=data,
        pagination=PaginationMeta(
            page=page,
            page_size=page_size,
            total=result.total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        ),
    )


# ─── GET /keywords/periods/{keyword_type} ───
@router.get("/periods/{keyword_type}", response_model=list[FormattedPeriod])
async def periods(
    keyword_type: str,
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(list_formatted_periods, parse_keyword_type(keyword_type))
