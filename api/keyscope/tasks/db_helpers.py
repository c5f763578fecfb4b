"""
Database session for Celery tasks.
Tasks use SYNC sessions since Celery workers are synchronous.
"""
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from keyscope.config import get_settings

settings = get_settings()

_sync_engine = create_engine(
    settings.DATABASE_URL_SYNC,
    pool_size=5,
    max_overflow=3,
    pool_pre_ping=True,
)

SyncSessionLocal = sessionmaker(bind=_sync_engine, expire_on_commit=False)


@contextmanager
def get_sync_db() -> Session:
    """Context manager for sync DB sessions in Celery tasks."""
    session = SyncSessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
