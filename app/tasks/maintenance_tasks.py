"""
Celery tasks for periodic maintenance.
"""

import logging
from celery import shared_task
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


@shared_task(name="cleanup_expired_csrf_tokens")
def cleanup_expired_csrf_tokens_task():
    """
    Periodic task to delete CSRF tokens past their expiry window.

    Scheduled by Celery Beat (see beat_schedule in app.core.celery_app).
    Safe to run concurrently or repeatedly; each run deletes whatever is
    expired at that moment.
    """
    from app.core import database
    from app.core.csrf import SqlCsrfStore, cleanup_expired

    db = database.SessionLocal()
    try:
        deleted_count = cleanup_expired(SqlCsrfStore(db))
        logger.info(f"Cleaned up {deleted_count} expired CSRF tokens")
        return {"status": "success", "deleted_count": deleted_count}
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error cleaning up CSRF tokens: {str(e)}")
        raise
    finally:
        db.close()
