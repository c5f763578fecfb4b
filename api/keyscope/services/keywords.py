"""Single keyword row reads and edits (admin corrections)."""
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from keyscope.models import KeywordRecord
from keyscope.schemas import KeywordUpdate
from keyscope.services.ingest import parse_score

logger = structlog.get_logger()

SCORE_FIELDS = ("product_click_score", "sku_sales_score", "ctr_score", "ctor_score", "average_price")


def get_keyword(session: Session, keyword_id: int) -> Optional[KeywordRecord]:
    return session.execute(
        select(KeywordRecord).where(KeywordRecord.id == keyword_id)
    ).scalar_one_or_none()


def update_keyword(session: Session, keyword_id: int, changes: KeywordUpdate) -> Optional[KeywordRecord]:
    """Apply the provided scoring fields. Scores are cleaned like imported ones.

    Raises ValueError for a score that isn't a number.
    """
    record = get_keyword(session, keyword_id)
    if record is None:
        return None

    fields = changes.model_dump(exclude_unset=True)
    for field, value in fields.items():
        if field in SCORE_FIELDS:
            value = parse_score(value, field)
        elif value is None and field in ("search_volume", "available_products"):
            continue
        setattr(record, field, value)
    record.updated_at = datetime.utcnow()
    session.commit()
    session.refresh(record)

    logger.info("keywords: row updated", keyword_id=keyword_id, fields=sorted(fields))
    return record


def deactivate_keyword(session: Session, keyword_id: int) -> Optional[KeywordRecord]:
    record = get_keyword(session, keyword_id)
    if record is None:
        return None
    if record.is_active:
        record.is_active = False
        record.updated_at = datetime.utcnow()
        session.commit()
        session.refresh(record)
        logger.info("keywords: row deactivated", keyword_id=keyword_id)
    return record
