"""
Visitor sessions, activity events and the admin usage rollups.

Buckets are keyed as text: "2025-07-14" (day), the Monday of the week
("2025-07-14"), or "2025-07" (month). Rollups are returned newest first and
include every bucket that saw a session or an activity.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

import structlog
from dateutil.relativedelta import relativedelta
from sqlalchemy import select, func
from sqlalchemy.orm import Session

from keyscope.models import UserActivity, UserSession
from keyscope.schemas import ActivityCount, UsageBucket

logger = structlog.get_logger()


# ─── Recording ───

def start_session(
    session: Session,
    user_id: Optional[str] = None,
    email: Optional[str] = None,
    session_key: Optional[str] = None,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> UserSession:
    visit = UserSession(
        user_id=user_id,
        email=email,
        session_key=session_key,
        user_agent=user_agent,
        ip_address=ip_address,
        start_time=datetime.utcnow(),
        is_active=True,
    )
    session.add(visit)
    session.commit()
    session.refresh(visit)
    logger.info("usage: session started", session_id=str(visit.id), user_id=user_id)
    return visit


def end_session(session: Session, session_id: UUID) -> Optional[UserSession]:
    visit = session.get(UserSession, session_id)
    if visit is None:
        return None
    if visit.is_active:
        visit.end_time = datetime.utcnow()
        visit.is_active = False
        session.commit()
        session.refresh(visit)
    return visit


def track_activity(
    session: Session,
    activity_type: str,
    activity_data: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    session_id: Optional[UUID] = None,
) -> UserActivity:
    if session_id is not None and session.get(UserSession, session_id) is None:
        logger.warning("usage: unknown session, recording without it", session_id=str(session_id))
        session_id = None
    activity = UserActivity(
        user_id=user_id,
        session_id=session_id,
        activity_type=activity_type,
        activity_data=activity_data,
        timestamp=datetime.utcnow(),
    )
    session.add(activity)
    session.commit()
    session.refresh(activity)
    return activity


# ─── Rollups ───

def day_key(moment: datetime) -> str:
    return moment.date().isoformat()


def week_key(moment: datetime) -> str:
    monday = moment.date() - timedelta(days=moment.weekday())
    return monday.isoformat()


def month_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def _rollup(session: Session, since: datetime, key: Callable[[datetime], str]) -> List[UsageBucket]:
    visits = session.execute(
        select(UserSession.start_time, UserSession.user_id, UserSession.email)
        .where(UserSession.start_time >= since)
    ).all()
    activity_times = session.execute(
        select(UserActivity.timestamp).where(UserActivity.timestamp >= since)
    ).scalars().all()

    sessions, users, emails = Counter(), {}, {}
    for start_time, user_id, email in visits:
        bucket = key(start_time)
        sessions[bucket] += 1
        if user_id:
            users.setdefault(bucket, set()).add(user_id)
        if email:
            emails.setdefault(bucket, set()).add(email)
    activities = Counter(key(ts) for ts in activity_times)

    return [
        UsageBucket(
            period=bucket,
            sessions=sessions[bucket],
            unique_users=len(users.get(bucket, ())),
            activities=activities[bucket],
            emails=sorted(emails.get(bucket, ())),
        )
        for bucket in sorted(set(sessions) | set(activities), reverse=True)
    ]


def get_daily_usage_stats(session: Session, days: int = 30, now: Optional[datetime] = None) -> List[UsageBucket]:
    now = now or datetime.utcnow()
    return _rollup(session, now - timedelta(days=days), day_key)


def get_weekly_usage_stats(session: Session, weeks: int = 12, now: Optional[datetime] = None) -> List[UsageBucket]:
    now = now or datetime.utcnow()
    return _rollup(session, now - timedelta(weeks=weeks), week_key)


def get_monthly_usage_stats(session: Session, months: int = 12, now: Optional[datetime] = None) -> List[UsageBucket]:
    now = now or datetime.utcnow()
    return _rollup(session, now - relativedelta(months=months), month_key)


def get_activity_breakdown(
    session: Session,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[ActivityCount]:
    """Activity counts per type in [start, end], most frequent first."""
    count = func.count(UserActivity.id)
    stmt = select(UserActivity.activity_type, count).group_by(UserActivity.activity_type)
    if start:
        stmt = stmt.where(UserActivity.timestamp >= start)
    if end:
        stmt = stmt.where(UserActivity.timestamp <= end)
    rows = session.execute(stmt.order_by(count.desc(), UserActivity.activity_type)).all()
    return [ActivityCount(activity_type=t, count=c) for t, c in rows]
