"""
Filter predicates and sort specifications shared by search, category and
period queries. Every read path builds its WHERE clause here so the
distinct-keyword counts they report always agree.
"""
from decimal import Decimal, InvalidOperation
from functools import cmp_to_key
from typing import Callable, List, Optional, Sequence

import structlog
from sqlalchemy import and_

from keyscope.models import KeywordRecord
from keyscope.schemas import KeywordFilters, KeywordType, SearchMetric, SortDirection, SortSpec

logger = structlog.get_logger()

# Public sort names (and camelCase aliases used by the web client) -> model attribute
SORT_FIELDS = {
    "keyword": "keyword",
    "rank": "rank",
    "search_volume": "search_volume",
    "product_click_score": "product_click_score",
    "sku_sales_score": "sku_sales_score",
    "available_products": "available_products",
    "average_price": "average_price",
    "ctr_score": "ctr_score",
    "ctor_score": "ctor_score",
    "searchVolume": "search_volume",
    "productClickScore": "product_click_score",
    "skuSalesScore": "sku_sales_score",
    "availableProducts": "available_products",
    "averagePrice": "average_price",
    "ctrScore": "ctr_score",
    "ctorScore": "ctor_score",
}

DECIMAL_TEXT_FIELDS = {
    "product_click_score", "sku_sales_score", "average_price", "ctr_score", "ctor_score",
}

DEFAULT_SORT = {
    SearchMetric.top: [SortSpec(field="search_volume", direction=SortDirection.desc)],
    SearchMetric.rising: [SortSpec(field="ctr_score", direction=SortDirection.desc)],
    SearchMetric.high_potential: [SortSpec(field="sku_sales_score", direction=SortDirection.desc)],
}

METRIC_FOR_TYPE = {
    KeywordType.regular: SearchMetric.top,
    KeywordType.hpk: SearchMetric.high_potential,
    KeywordType.rk: SearchMetric.rising,
}


def coerce_search_metric(value) -> SearchMetric:
    """Anything that isn't "high-potential" or "rising" means regular keywords."""
    if isinstance(value, SearchMetric):
        return value
    try:
        return SearchMetric(value) if value else SearchMetric.top
    except ValueError:
        logger.warning("query: unknown search metric, using top", search_metric=value)
        return SearchMetric.top


def type_predicate(metric) -> list:
    """Exactly one of regular / hpk / rk is always selected."""
    metric = coerce_search_metric(metric)
    if metric == SearchMetric.high_potential:
        return [KeywordRecord.is_hpk == True]
    if metric == SearchMetric.rising:
        return [KeywordRecord.is_rk == True]
    return [KeywordRecord.is_hpk == False, KeywordRecord.is_rk == False]


def partition_predicate(upload_period: str, keyword_type: KeywordType) -> list:
    return [
        KeywordRecord.upload_period == upload_period,
        KeywordRecord.is_active == True,
        *type_predicate(METRIC_FOR_TYPE[KeywordType(keyword_type)]),
    ]


def _present(value: Optional[str]) -> bool:
    return value is not None and value.strip() != ""


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_conditions(filters: KeywordFilters) -> list:
    conditions = [KeywordRecord.is_active == True]

    if _present(filters.query):
        pattern = f"%{_escape_like(filters.query.strip())}%"
        conditions.append(KeywordRecord.keyword.ilike(pattern, escape="\\"))

    # Each level filters independently; callers send ancestors along with descendants
    if _present(filters.category):
        conditions.append(KeywordRecord.category == filters.category)
    if _present(filters.sub_category_1):
        conditions.append(KeywordRecord.sub_category_1 == filters.sub_category_1)
    if _present(filters.sub_category_2):
        conditions.append(KeywordRecord.sub_category_2 == filters.sub_category_2)

    if filters.upload_period:
        conditions.append(KeywordRecord.upload_period == filters.upload_period)

    conditions.extend(type_predicate(filters.search_metric))
    return conditions


def where_clause(filters: KeywordFilters):
    return and_(*build_conditions(filters))


# ─── Sorting ───

def parse_sort(sort: Optional[str]) -> List[SortSpec]:
    """Parse "-search_volume,keyword" into sort specs ("-" means descending).

    Unknown fields are dropped with a warning; the caller falls back to the
    metric default when nothing valid remains.
    """
    specs = []
    if not sort:
        return specs
    for token in sort.split(","):
        token = token.strip()
        if not token:
            continue
        direction = SortDirection.asc
        if token[0] in "+-":
            direction = SortDirection.desc if token[0] == "-" else SortDirection.asc
            token = token[1:]
        if token not in SORT_FIELDS:
            logger.warning("query: ignoring unknown sort field", field=token)
            continue
        specs.append(SortSpec(field=SORT_FIELDS[token], direction=direction))
    return specs


def resolve_sort(sort: Optional[Sequence[SortSpec]], metric) -> List[SortSpec]:
    valid = []
    for spec in sort or []:
        field = SORT_FIELDS.get(spec.field)
        if field is None:
            logger.warning("query: ignoring unknown sort field", field=spec.field)
            continue
        valid.append(SortSpec(field=field, direction=spec.direction))
    return valid or list(DEFAULT_SORT[coerce_search_metric(metric)])


def to_decimal(value) -> Optional[Decimal]:
    """Numeric value of a score stored as text; None for blanks and junk like "N/A"."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = Decimal(text)
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def sort_value(row, field: str):
    value = getattr(row, field)
    if field in DECIMAL_TEXT_FIELDS:
        return to_decimal(value)
    return value


def _compare(a, b) -> int:
    return (a > b) - (a < b)


def make_comparator(specs: Sequence[SortSpec]) -> Callable:
    """Comparator for rows: nulls last in either direction, then keyword and id ascending."""
    def compare(left, right) -> int:
        for spec in specs:
            lv, rv = sort_value(left, spec.field), sort_value(right, spec.field)
            if lv is None and rv is None:
                continue
            if lv is None:
                return 1
            if rv is None:
                return -1
            result = _compare(lv, rv)
            if result:
                return -result if spec.direction == SortDirection.desc else result
        return _compare(left.keyword, right.keyword) or _compare(left.id, right.id)

    return compare


def sort_rows(rows, specs: Sequence[SortSpec]) -> list:
    return sorted(rows, key=cmp_to_key(make_comparator(specs)))
