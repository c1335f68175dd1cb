"""
Celery application instance and configuration.
"""

from celery import Celery

from contentpipe.core.config import settings

# Create Celery application
celery_app = Celery(
    "contentpipe",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer=settings.CELERY_TASK_SERIALIZER,
    result_serializer=settings.CELERY_RESULT_SERIALIZER,
    accept_content=settings.celery_accept_content_list,
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=settings.CELERY_ENABLE_UTC,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    result_expires=3600,  # 1 hour
    worker_prefetch_multiplier=1,
)

# Task routing
celery_app.conf.task_routes = {
    'content.*': {'queue': 'content'},
}

# Auto-discover tasks from contentpipe.tasks
celery_app.autodiscover_tasks(['contentpipe.tasks'], related_name='content_tasks')
