"""
Category rollup over the keyword text labels.

Each level is grouped independently with COUNT(DISTINCT keyword), so a
node's count is what a user filtering search at that node would see as the
total. Deeper levels only count fully qualified paths, so no node can exist
without its parent.
"""
from typing import List, Optional

import structlog
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from keyscope.models import KeywordRecord
from keyscope.schemas import CategoryNode, KeywordFilters, KeywordType, SearchMetric
from keyscope.services.query import METRIC_FOR_TYPE, build_conditions, coerce_search_metric

logger = structlog.get_logger()

PATH_SEPARATOR = "::"


def node_id(*segments: str) -> str:
    return PATH_SEPARATOR.join(segments)


def _non_empty(column) -> list:
    return [column.isnot(None), column != ""]


def _base_conditions(upload_period: Optional[str], metric: SearchMetric) -> list:
    filters = KeywordFilters(upload_period=upload_period or None, search_metric=metric.value)
    return build_conditions(filters) + _non_empty(KeywordRecord.category)


def _grouped_counts(session: Session, columns: list, conditions: list):
    distinct_keywords = func.count(func.distinct(KeywordRecord.keyword))
    stmt = select(*columns, distinct_keywords).where(*conditions).group_by(*columns)
    return session.execute(stmt).all()


def _sort_nodes(nodes: List[CategoryNode]) -> List[CategoryNode]:
    return sorted(nodes, key=lambda n: (n.level, -n.keyword_count, n.id))


def get_category_tree(
    session: Session,
    upload_period: Optional[str] = None,
    search_metric: Optional[str] = None,
) -> List[CategoryNode]:
    """Flat three-level category tree, roots first, biggest nodes first within a level."""
    metric = coerce_search_metric(search_metric)
    base = _base_conditions(upload_period, metric)
    nodes: List[CategoryNode] = []

    for category, count in _grouped_counts(session, [KeywordRecord.category], base):
        nodes.append(CategoryNode(id=node_id(category), name=category, level=0, keyword_count=count))

    level1 = base + _non_empty(KeywordRecord.sub_category_1)
    for category, sub1, count in _grouped_counts(
        session, [KeywordRecord.category, KeywordRecord.sub_category_1], level1
    ):
        nodes.append(CategoryNode(
            id=node_id(category, sub1),
            name=sub1,
            parent_id=node_id(category),
            level=1,
            keyword_count=count,
        ))

    level2 = level1 + _non_empty(KeywordRecord.sub_category_2)
    for category, sub1, sub2, count in _grouped_counts(
        session,
        [KeywordRecord.category, KeywordRecord.sub_category_1, KeywordRecord.sub_category_2],
        level2,
    ):
        nodes.append(CategoryNode(
            id=node_id(category, sub1, sub2),
            name=sub2,
            parent_id=node_id(category, sub1),
            level=2,
            keyword_count=count,
        ))

    logger.debug("categories: tree built", period=upload_period, metric=metric.value, nodes=len(nodes))
    return _sort_nodes(nodes)


def get_type_categories(session: Session, keyword_type: KeywordType) -> List[CategoryNode]:
    """Top-level categories that actually hold HPK (or RK) data, by name."""
    keyword_type = KeywordType(keyword_type)
    if keyword_type == KeywordType.regular:
        raise ValueError("type-restricted categories exist for hpk and rk only")

    base = _base_conditions(None, METRIC_FOR_TYPE[keyword_type])
    rows = _grouped_counts(session, [KeywordRecord.category], base)
    nodes = [
        CategoryNode(id=node_id(category), name=category, level=0, keyword_count=count)
        for category, count in rows
    ]
    return sorted(nodes, key=lambda n: n.name)
