"""
Admin API: upload periods, import jobs, single keyword edits and usage stats.

GET    /admin/uploads                              - Active batches per (period, type)
GET    /admin/uploads/periods                      - Periods with distinct keyword counts
PUT    /admin/uploads/{keyword_type}/{period}      - Replace a period with JSON rows
DELETE /admin/uploads/{keyword_type}/{period}      - Soft-delete a period
POST   /admin/uploads/file                         - Queue a CSV/XLSX import
GET    /admin/uploads/jobs                         - Recent import jobs
GET    /admin/uploads/jobs/{id}                    - Single import job
GET    /admin/keywords/{id}                        - Single keyword row
PATCH  /admin/keywords/{id}                        - Edit scoring fields
DELETE /admin/keywords/{id}                        - Soft-delete one row
GET    /admin/stats/{daily|weekly|monthly}         - Usage rollups
GET    /admin/stats/activities                     - Activity counts by type
"""
import os
import shutil
import uuid
from datetime import datetime
from typing import Optional
from uuid import UUID

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from keyscope.config import get_settings
from keyscope.database import get_db
from keyscope.dependencies import bump_catalog_version, get_redis, parse_keyword_type, require_role
from keyscope.models import KeywordImportJob
from keyscope.schemas import (
    ActivityCount, DeleteResult, ImportJobResponse, KeywordOut, KeywordUpdate,
    PeriodSummary, ReplaceRequest, ReplaceResult, UploadBatch, UsageBucket,
)
from keyscope.services import keywords as keyword_service
from keyscope.services import usage
from keyscope.services.ingest import SUPPORTED_EXTENSIONS
from keyscope.services.uploads import delete_period, list_periods, list_upload_batches, replace_period
from keyscope.tasks.keyword_import import import_keyword_file

router = APIRouter(prefix="/admin", tags=["admin"])
logger = structlog.get_logger()
settings = get_settings()


# ─── Upload periods ───
@router.get("/uploads", response_model=list[UploadBatch])
async def uploads(
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(list_upload_batches)


@router.get("/uploads/periods", response_model=list[PeriodSummary])
async def upload_periods(
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(list_periods)


@router.put("/uploads/{keyword_type}/{upload_period}", response_model=ReplaceResult)
async def replace_upload(
    keyword_type: str,
    upload_period: str,
    body: ReplaceRequest,
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    """Replace everything active in the period with `rows`. Row errors come back in the result."""
    kind = parse_keyword_type(keyword_type)
    result = await db.run_sync(replace_period, upload_period, kind, body.rows)
    await bump_catalog_version(redis)
    logger.info("admin: period replaced", period=upload_period, type=kind.value,
                inserted=result.inserted_count, by=claims.get("sub"))
    return result


@router.delete("/uploads/{keyword_type}/{upload_period}", response_model=DeleteResult)
async def delete_upload(
    keyword_type: str,
    upload_period: str,
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    kind = parse_keyword_type(keyword_type)
    count = await db.run_sync(delete_period, upload_period, kind)
    await bump_catalog_version(redis)
    return DeleteResult(upload_period=upload_period, keyword_type=kind, deactivated_count=count)


# ─── File imports ───
@router.post("/uploads/file", response_model=ImportJobResponse, status_code=202)
async def upload_file(
    file: UploadFile = File(...),
    upload_period: str = Form(...),
    keyword_type: str = Form("regular"),
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    """Save a keyword export and queue its import."""
    kind = parse_keyword_type(keyword_type)
    if not upload_period.strip():
        raise HTTPException(400, "upload_period is required")
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise HTTPException(400, "Only .xlsx and .csv files are supported")

    job_id = uuid.uuid4()
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    filepath = os.path.join(settings.UPLOAD_DIR, f"{job_id}{ext}")
    with open(filepath, "wb") as f:
        shutil.copyfileobj(file.file, f)

    job = KeywordImportJob(
        id=job_id,
        filename=file.filename,
        upload_period=upload_period.strip(),
        keyword_type=kind.value,
        status="pending",
        created_at=datetime.utcnow(),
    )
    db.add(job)
    await db.commit()

    import_keyword_file.delay(filepath, job.upload_period, kind.value, str(job_id))
    logger.info("admin: import queued", job_id=str(job_id), file=file.filename,
                size_mb=round(os.path.getsize(filepath) / 1024 / 1024, 1))
    return job


@router.get("/uploads/jobs", response_model=list[ImportJobResponse])
async def list_import_jobs(
    limit: int = Query(50, ge=1, le=200),
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(KeywordImportJob).order_by(desc(KeywordImportJob.created_at)).limit(limit)
    )
    return result.scalars().all()


@router.get("/uploads/jobs/{job_id}", response_model=ImportJobResponse)
async def get_import_job(
    job_id: UUID,
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    job = await db.get(KeywordImportJob, job_id)
    if not job:
        raise HTTPException(404, "Job not found")
    return job


# ─── Single keyword rows ───
@router.get("/keywords/{keyword_id}", response_model=KeywordOut)
async def get_keyword(
    keyword_id: int,
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    record = await db.run_sync(keyword_service.get_keyword, keyword_id)
    if not record:
        raise HTTPException(404, "Keyword not found")
    return record


@router.patch("/keywords/{keyword_id}", response_model=KeywordOut)
async def update_keyword(
    keyword_id: int,
    body: KeywordUpdate,
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    try:
        record = await db.run_sync(keyword_service.update_keyword, keyword_id, body)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not record:
        raise HTTPException(404, "Keyword not found")
    return record


@router.delete("/keywords/{keyword_id}", response_model=KeywordOut)
async def delete_keyword(
    keyword_id: int,
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
):
    record = await db.run_sync(keyword_service.deactivate_keyword, keyword_id)
    if not record:
        raise HTTPException(404, "Keyword not found")
    await bump_catalog_version(redis)
    return record


# ─── Usage stats ───
@router.get("/stats/daily", response_model=list[UsageBucket])
async def daily_stats(
    days: int = Query(30, ge=1, le=366),
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(usage.get_daily_usage_stats, days)


@router.get("/stats/weekly", response_model=list[UsageBucket])
async def weekly_stats(
    weeks: int = Query(12, ge=1, le=104),
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(usage.get_weekly_usage_stats, weeks)


@router.get("/stats/monthly", response_model=list[UsageBucket])
async def monthly_stats(
    months: int = Query(12, ge=1, le=60),
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(usage.get_monthly_usage_stats, months)


@router.get("/stats/activities", response_model=list[ActivityCount])
async def activity_breakdown(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    claims: dict = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await db.run_sync(usage.get_activity_breakdown, start, end)
