"""
Celery tasks package.

Tasks are organized by domain:
- maintenance_tasks: periodic cleanup of expired CSRF tokens
"""

from app.tasks import maintenance_tasks

__all__ = ["maintenance_tasks"]
