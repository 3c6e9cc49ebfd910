"""
Celery application configuration.

Redis is both broker and result backend. The only scheduled work is the
periodic sweep of expired CSRF tokens (run with `celery -A app.core.celery_app beat`).
"""

from celery import Celery
from app.core.config import settings

celery_app = Celery(
    "optin_maintenance_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task behavior
    task_time_limit=300,
    task_soft_time_limit=240,

    # Result backend
    result_expires=3600,

    worker_prefetch_multiplier=1,

    beat_schedule={
        "cleanup-expired-csrf-tokens": {
            "task": "cleanup_expired_csrf_tokens",
            "schedule": float(settings.CSRF_CLEANUP_INTERVAL_SECONDS),
        },
    },
)

celery_app.autodiscover_tasks(['app'])
