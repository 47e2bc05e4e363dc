"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

# Create Celery application
celery_app = Celery(
    "prepx",
    broker=str(settings.CELERY_BROKER_URL),
    backend=str(settings.CELERY_RESULT_BACKEND),
    include=["app.workers.tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes max per task
    task_soft_time_limit=540,
    worker_prefetch_multiplier=1,  # Fetch one task at a time
    worker_max_tasks_per_child=200,
    beat_schedule_filename="/tmp/celerybeat-schedule",  # Celery Beat schedule file
)


# Celery Beat schedule
celery_app.conf.beat_schedule = {
    "process-outbox": {
        "task": "app.workers.tasks.process_outbox",
        "schedule": 60.0,  # Every minute
    },
    "expire-lapsed-subscriptions": {
        "task": "app.workers.tasks.expire_lapsed_subscriptions",
        "schedule": crontab(minute=0),  # Every hour at minute 0
    },
}

if __name__ == "__main__":
    celery_app.start()
