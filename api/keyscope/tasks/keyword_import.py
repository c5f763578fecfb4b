"""
Keyword export import pipeline.

Reads a CSV/XLSX export saved by POST /admin/uploads/file and replaces the
(upload_period, keyword_type) partition with its rows. Progress and results
are kept on the keyword_import_jobs row.

Usage:
  # Direct call (for testing)
  from keyscope.tasks.keyword_import import import_keyword_file
  import_keyword_file("/tmp/keyword_uploads/x.xlsx", "RK-202507", "rk")

  # Via Celery (for production)
  import_keyword_file.delay("/tmp/keyword_uploads/x.xlsx", "RK-202507", "rk", job_id)
"""
import os
import uuid
from datetime import datetime

import redis
import structlog
from redis.exceptions import RedisError

from keyscope.config import get_settings
from keyscope.dependencies import CATALOG_VERSION_KEY
from keyscope.models import KeywordImportJob
from keyscope.schemas import KeywordType
from keyscope.services.ingest import read_keyword_file
from keyscope.services.uploads import replace_period
from keyscope.tasks import celery_app
from keyscope.tasks.db_helpers import get_sync_db

logger = structlog.get_logger()
settings = get_settings()


def _update_job(job_id: uuid.UUID, **fields) -> None:
    with get_sync_db() as session:
        job = session.get(KeywordImportJob, job_id)
        for name, value in fields.items():
            setattr(job, name, value)


def _start_job(job_id: uuid.UUID, filepath: str, upload_period: str, keyword_type: KeywordType) -> None:
    with get_sync_db() as session:
        job = session.get(KeywordImportJob, job_id)
        if job is None:
            job = KeywordImportJob(
                id=job_id,
                filename=os.path.basename(filepath),
                upload_period=upload_period,
                keyword_type=keyword_type.value,
                created_at=datetime.utcnow(),
            )
            session.add(job)
        job.status = "processing"
        job.started_at = datetime.utcnow()


def bump_catalog_version() -> None:
    """Expire cached category trees after the catalog changed."""
    try:
        client = redis.Redis.from_url(settings.REDIS_URL)
        client.incr(CATALOG_VERSION_KEY)
    except RedisError as e:
        logger.warning("keyword_import: could not bump catalog version", error=str(e))


@celery_app.task(name="keyscope.tasks.keyword_import.import_keyword_file",
                 bind=True, max_retries=0, time_limit=3600)
def import_keyword_file(self, filepath: str, upload_period: str,
                        keyword_type: str = "regular", job_id: str = None):
    """
    Import one keyword export.

    Args:
        filepath: Path to the saved .csv or .xlsx file
        upload_period: Partition key the rows are written under
        keyword_type: regular, hpk or rk
        job_id: keyword_import_jobs id; created when not given
    """
    kind = KeywordType(keyword_type)
    job_uuid = uuid.UUID(job_id) if job_id else uuid.uuid4()

    logger.info("keyword_import: starting", filepath=filepath, period=upload_period,
                type=kind.value, job_id=str(job_uuid))
    _start_job(job_uuid, filepath, upload_period, kind)

    try:
        rows = read_keyword_file(filepath)
        _update_job(job_uuid, total_rows=len(rows))

        with get_sync_db() as session:
            result = replace_period(session, upload_period, kind, rows)

        error_details = [e.model_dump() for e in result.errors[:settings.MAX_ERROR_DETAILS]]
        error_message = None
        if result.failed_chunks:
            lost = sum(f.row_count for f in result.failed_chunks)
            error_message = f"{len(result.failed_chunks)} chunk(s) failed, {lost} rows not imported"

        _update_job(
            job_uuid,
            status="completed",
            completed_at=datetime.utcnow(),
            total_rows=result.total_rows,
            rows_imported=result.inserted_count,
            rows_error=len(result.errors),
            rows_deactivated=result.deactivated_count,
            failed_chunks=len(result.failed_chunks),
            error_message=error_message,
            error_details=error_details or None,
        )
        bump_catalog_version()

        logger.info("keyword_import: COMPLETE",
                    total=result.total_rows, imported=result.inserted_count,
                    errors=len(result.errors), deactivated=result.deactivated_count,
                    failed_chunks=len(result.failed_chunks), period=upload_period)

    except Exception as e:
        logger.error("keyword_import: FAILED", error=str(e), job_id=str(job_uuid))
        _update_job(job_uuid, status="failed", completed_at=datetime.utcnow(),
                    error_message=str(e)[:2000])
        raise

    return {
        "job_id": str(job_uuid), "status": "completed",
        "upload_period": upload_period, "keyword_type": kind.value,
        "total_rows": result.total_rows, "imported": result.inserted_count,
        "errors": len(result.errors), "deactivated": result.deactivated_count,
        "failed_chunks": len(result.failed_chunks),
    }
