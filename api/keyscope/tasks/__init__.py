"""
KeyScope Celery app.

Tasks:
  - import_keyword_file  (on demand, queued by POST /admin/uploads/file)
"""
from celery import Celery
from keyscope.config import get_settings

settings = get_settings()

celery_app = Celery(
    "keyscope",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Import task modules
    include=[
        "keyscope.tasks.keyword_import",
    ],
)
