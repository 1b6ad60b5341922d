"""Celery application configuration and beat schedule."""

from celery import Celery
from celery.schedules import crontab

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "productbazar",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.tasks.profile_tasks",
        "app.tasks.maintenance_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    task_track_started=True,
    task_time_limit=1800,
    task_soft_time_limit=1700,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "process-scheduled-deletions": {
        "task": "app.tasks.maintenance_tasks.process_scheduled_deletions",
        "schedule": crontab(minute=0),
    },
    "rebuild-recommendation-profiles": {
        "task": "app.tasks.profile_tasks.rebuild_recommendation_profiles",
        "schedule": crontab(minute=0, hour=3),
    },
    "cleanup-recommendation-interactions": {
        "task": "app.tasks.maintenance_tasks.cleanup_recommendation_interactions",
        "schedule": crontab(minute=30, hour=4),
    },
}
