"""
Upload period lifecycle: replace, delete and list (period, keyword type)
partitions of the keyword table.

Replace is deactivate-then-insert:
  1. validate every row, collecting row-level errors
  2. deactivate the partition's active rows and commit
  3. insert the valid rows in chunks, one commit per chunk

A chunk that fails is rolled back on its own and reported; earlier chunks
stay committed. Re-running the same upload is always safe because step 2
retires whatever the previous run left behind.
"""
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
from uuid import UUID

import structlog
from dateutil import parser as date_parser
from slugify import slugify
from sqlalchemy import select, update, func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from keyscope.config import get_settings
from keyscope.models import Category, KeywordRecord
from keyscope.schemas import (
    BatchFailure, FormattedPeriod, IngestRowError, KeywordType,
    PeriodSummary, ReplaceResult, UploadBatch,
)
from keyscope.services.categories import PATH_SEPARATOR
from keyscope.services.ingest import clean_label, parse_count, parse_optional_int, parse_score
from keyscope.services.periods import UploadPeriod, format_period, parse_date_range
from keyscope.services.query import partition_predicate

logger = structlog.get_logger()
settings = get_settings()

SCORE_FIELDS = ("product_click_score", "sku_sales_score", "ctr_score", "ctor_score", "average_price")
TYPE_FLAGS = {
    KeywordType.regular: (False, False),
    KeywordType.hpk: (True, False),
    KeywordType.rk: (False, True),
}


def _flags_type(is_hpk: bool, is_rk: bool) -> KeywordType:
    if is_hpk:
        return KeywordType.hpk
    if is_rk:
        return KeywordType.rk
    return KeywordType.regular


# ─── Row validation ───

def _parse_date(value, field: str) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date_parser.parse(str(value)).date()
    except (ValueError, OverflowError):
        raise ValueError(f"{field}: not a date ({value!r})")


def _observation_window(raw: Dict[str, Any], period: UploadPeriod) -> Tuple[Optional[date], Optional[date]]:
    """Explicit dates first, then the export's "Date" range, then the period key."""
    start = _parse_date(raw.get("start_date"), "start_date")
    end = _parse_date(raw.get("end_date"), "end_date")
    if start or end:
        return start, end
    window = parse_date_range(raw.get("date"))
    if window:
        return window
    return period.date_bounds()


def validate_row(raw: Dict[str, Any], upload_period: str, keyword_type: KeywordType) -> Dict[str, Any]:
    """Clean one incoming row into KeywordRecord column values.

    Raises ValueError with a readable reason when the row is unusable.
    Partition columns come from the call, never from the row.
    """
    keyword = clean_label(raw.get("keyword"))
    if not keyword:
        raise ValueError("keyword is required")

    category = clean_label(raw.get("category"))
    sub_category_1 = clean_label(raw.get("sub_category_1"))
    sub_category_2 = clean_label(raw.get("sub_category_2"))
    if sub_category_2 and not sub_category_1:
        raise ValueError("sub_category_2 given without sub_category_1")
    labels = {"category": category, "sub_category_1": sub_category_1, "sub_category_2": sub_category_2}
    for name, label in labels.items():
        if label and PATH_SEPARATOR in label:
            raise ValueError(f"{name}: may not contain \"{PATH_SEPARATOR}\"")

    values = {
        "keyword": keyword,
        "search_volume": parse_count(raw.get("search_volume"), "search_volume"),
        "available_products": parse_count(raw.get("available_products"), "available_products"),
        "category": category,
        "sub_category_1": sub_category_1,
        "sub_category_2": sub_category_2,
    }
    for field in SCORE_FIELDS:
        values[field] = parse_score(raw.get(field), field)

    # Only rising keywords carry a rank
    rank = parse_optional_int(raw.get("rank"), "rank")
    values["rank"] = rank if keyword_type == KeywordType.rk else None

    start, end = _observation_window(raw, UploadPeriod.parse(upload_period))
    is_hpk, is_rk = TYPE_FLAGS[keyword_type]
    values.update(
        upload_period=upload_period,
        is_hpk=is_hpk,
        is_rk=is_rk,
        is_active=True,
        start_date=start,
        end_date=end,
    )
    return values


def validate_rows(
    rows: Iterable[Dict[str, Any]], upload_period: str, keyword_type: KeywordType
) -> Tuple[List[Tuple[int, Dict[str, Any]]], List[IngestRowError]]:
    valid, errors = [], []
    for index, raw in enumerate(rows):
        try:
            valid.append((index, validate_row(raw or {}, upload_period, keyword_type)))
        except ValueError as e:
            keyword = raw.get("keyword") if isinstance(raw, dict) else None
            errors.append(IngestRowError(
                row_index=index,
                keyword=str(keyword) if keyword is not None else None,
                reason=str(e),
            ))
    if errors:
        logger.warning("uploads: rows rejected", period=upload_period, type=keyword_type.value,
                       rejected=len(errors), first=errors[0].reason)
    return valid, errors


# ─── Legacy category references ───

def category_slug(name: str) -> str:
    return slugify(name, replacements=[["&", "and"]])


class CategoryResolver:
    """Category name -> id lookups for one upload, creating missing categories."""

    def __init__(self, session: Session):
        self.session = session
        self._cache: Dict[str, UUID] = {}

    def resolve(self, name: Optional[str]) -> Optional[UUID]:
        if not name:
            return None
        if name in self._cache:
            return self._cache[name]

        category = self.session.execute(
            select(Category).where(Category.name == name, Category.level == 0).limit(1)
        ).scalar_one_or_none()
        if category is None:
            category = Category(name=name, slug=category_slug(name), level=0)
            self.session.add(category)
            self.session.flush()
            logger.info("uploads: category created", name=name)
        self._cache[name] = category.id
        return category.id


# ─── Partition lock ───

def partition_key(upload_period: str, keyword_type: KeywordType) -> str:
    return f"keywords:{keyword_type.value}:{upload_period}"


@contextmanager
def partition_lock(session: Session, upload_period: str, keyword_type: KeywordType):
    """Serialize writers of one partition (PostgreSQL advisory lock).

    The lock lives on its own connection so the per-chunk commits of the
    main session don't release it.
    """
    engine = session.get_bind()
    if engine.dialect.name != "postgresql":
        yield
        return

    key = partition_key(upload_period, keyword_type)
    with engine.connect() as lock_conn:
        lock_conn.execute(text("SELECT pg_advisory_lock(hashtext(:key))"), {"key": key})
        try:
            yield
        finally:
            lock_conn.execute(text("SELECT pg_advisory_unlock(hashtext(:key))"), {"key": key})


# ─── Writes ───

def _deactivate(session: Session, upload_period: str, keyword_type: KeywordType) -> int:
    result = session.execute(
        update(KeywordRecord)
        .where(*partition_predicate(upload_period, keyword_type))
        .values(is_active=False, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _insert_chunk(session: Session, rows: List[Dict[str, Any]]) -> None:
    session.add_all([KeywordRecord(**row) for row in rows])
    session.commit()


def replace_period(
    session: Session,
    upload_period: str,
    keyword_type: KeywordType,
    rows: Iterable[Dict[str, Any]],
    chunk_size: Optional[int] = None,
) -> ReplaceResult:
    """Make `rows` the only active content of the (upload_period, keyword_type) partition."""
    keyword_type = KeywordType(keyword_type)
    chunk_size = chunk_size or settings.UPLOAD_CHUNK_SIZE
    rows = list(rows)

    valid, errors = validate_rows(rows, upload_period, keyword_type)
    result = ReplaceResult(
        upload_period=upload_period,
        keyword_type=keyword_type,
        total_rows=len(rows),
        errors=errors,
    )

    with partition_lock(session, upload_period, keyword_type):
        resolver = CategoryResolver(session)
        for _, values in valid:
            values["category_id"] = resolver.resolve(values["category"])

        result.deactivated_count = _deactivate(session, upload_period, keyword_type)
        session.commit()
        logger.info("uploads: partition deactivated", period=upload_period,
                    type=keyword_type.value, deactivated=result.deactivated_count)

        for chunk_index, start in enumerate(range(0, len(valid), chunk_size)):
            chunk = valid[start:start + chunk_size]
            try:
                _insert_chunk(session, [values for _, values in chunk])
            except SQLAlchemyError as e:
                session.rollback()
                failure = BatchFailure(
                    chunk_index=chunk_index,
                    first_row_index=chunk[0][0],
                    row_count=len(chunk),
                    reason=str(e)[:500],
                )
                result.failed_chunks.append(failure)
                logger.error("uploads: chunk failed", period=upload_period, type=keyword_type.value,
                             chunk=chunk_index, rows=len(chunk), error=failure.reason)
                continue
            result.inserted_count += len(chunk)

    logger.info(
        "uploads: replace complete",
        period=upload_period,
        type=keyword_type.value,
        total=result.total_rows,
        inserted=result.inserted_count,
        deactivated=result.deactivated_count,
        rejected=len(result.errors),
        failed_chunks=len(result.failed_chunks),
    )
    return result


def delete_period(session: Session, upload_period: str, keyword_type: KeywordType) -> int:
    """Soft-delete a partition. An empty partition is not an error."""
    keyword_type = KeywordType(keyword_type)
    with partition_lock(session, upload_period, keyword_type):
        count = _deactivate(session, upload_period, keyword_type)
        session.commit()
    logger.info("uploads: period deleted", period=upload_period, type=keyword_type.value, deactivated=count)
    return count


# ─── Reads ───

def list_periods(session: Session) -> List[PeriodSummary]:
    """Every active partition with its distinct keyword count, newest period first."""
    stmt = (
        select(
            KeywordRecord.upload_period,
            KeywordRecord.is_hpk,
            KeywordRecord.is_rk,
            func.count(func.distinct(KeywordRecord.keyword)),
        )
        .where(KeywordRecord.is_active == True, KeywordRecord.upload_period.isnot(None))
        .group_by(KeywordRecord.upload_period, KeywordRecord.is_hpk, KeywordRecord.is_rk)
    )
    summaries = [
        PeriodSummary(period=period, distinct_keyword_count=count, type=_flags_type(is_hpk, is_rk))
        for period, is_hpk, is_rk, count in session.execute(stmt).all()
    ]
    return sorted(summaries, key=lambda s: (s.period, s.type.value), reverse=True)


def list_formatted_periods(session: Session, keyword_type: KeywordType) -> List[FormattedPeriod]:
    """Display labels for the periods holding active rows of one keyword type."""
    keyword_type = KeywordType(keyword_type)
    periods = [s for s in list_periods(session) if s.type == keyword_type]
    return [
        format_period(
            s.period,
            keyword_type,
            s.distinct_keyword_count if keyword_type == KeywordType.rk else None,
        )
        for s in periods
    ]


def list_upload_batches(session: Session) -> List[UploadBatch]:
    stmt = (
        select(
            KeywordRecord.upload_period,
            KeywordRecord.is_hpk,
            KeywordRecord.is_rk,
            func.count(KeywordRecord.id),
            func.count(func.distinct(KeywordRecord.keyword)),
            func.min(KeywordRecord.created_at),
            func.max(KeywordRecord.created_at),
        )
        .where(KeywordRecord.is_active == True, KeywordRecord.upload_period.isnot(None))
        .group_by(KeywordRecord.upload_period, KeywordRecord.is_hpk, KeywordRecord.is_rk)
        .order_by(KeywordRecord.upload_period.desc())
    )
    return [
        UploadBatch(
            upload_period=period,
            keyword_type=_flags_type(is_hpk, is_rk),
            total_keywords=total,
            unique_keywords=unique,
            first_uploaded=first,
            last_uploaded=last,
        )
        for period, is_hpk, is_rk, total, unique, first, last in session.execute(stmt).all()
    ]
