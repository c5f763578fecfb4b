"""
Deduplicating keyword search.

Pipeline: filter (SQL) -> dedupe_by_keyword -> sort -> paginate. The total
is the number of distinct keyword texts matching the filters, which is
exactly the length of the deduplicated list.
"""
from typing import Optional, Sequence, Tuple

import structlog
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from keyscope.config import get_settings
from keyscope.models import KeywordRecord
from keyscope.schemas import KeywordFilters, SortSpec
from keyscope.services.dedup import SearchPage, dedupe_by_keyword, paginate
from keyscope.services.query import build_conditions, coerce_search_metric, resolve_sort, sort_rows

logger = structlog.get_logger()
settings = get_settings()


def normalize_paging(page, page_size) -> Tuple[int, int]:
    """Clamp paging inputs instead of rejecting them."""
    if page is None or page < 1:
        if page is not None:
            logger.warning("search: page below 1, using 1", page=page)
        page = 1
    if page_size is None or page_size < 1:
        if page_size is not None:
            logger.warning("search: invalid page_size, using default", page_size=page_size)
        page_size = settings.DEFAULT_PAGE_SIZE
    elif page_size > settings.MAX_PAGE_SIZE:
        logger.warning("search: page_size capped", page_size=page_size, max=settings.MAX_PAGE_SIZE)
        page_size = settings.MAX_PAGE_SIZE
    return page, page_size


def search_keywords(
    session: Session,
    filters: KeywordFilters,
    sort: Optional[Sequence[SortSpec]] = None,
    page: int = 1,
    page_size: int = 20,
) -> SearchPage:
    page, page_size = normalize_paging(page, page_size)
    metric = coerce_search_metric(filters.search_metric)
    specs = resolve_sort(sort, metric)

    stmt = (
        select(KeywordRecord)
        .where(*build_conditions(filters))
        .order_by(KeywordRecord.keyword, KeywordRecord.search_volume.desc(), KeywordRecord.id)
    )
    candidates = session.execute(stmt).scalars().all()

    unique_rows = dedupe_by_keyword(candidates)
    ordered = sort_rows(unique_rows, specs)
    result = SearchPage(rows=paginate(ordered, page, page_size), total=len(ordered))

    logger.debug(
        "search: complete",
        metric=metric.value,
        candidates=len(candidates),
        total=result.total,
        page=page,
        page_size=page_size,
    )
    return result


def count_distinct_keywords(
    session: Session,
    upload_period: Optional[str] = None,
    search_metric: Optional[str] = None,
) -> int:
    """Distinct keyword texts among active rows of the selected period and type."""
    filters = KeywordFilters(upload_period=upload_period, search_metric=coerce_search_metric(search_metric).value)
    stmt = select(func.count(func.distinct(KeywordRecord.keyword))).where(*build_conditions(filters))
    return session.execute(stmt).scalar() or 0
