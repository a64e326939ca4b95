from celery import Celery
from celery.schedules import crontab

from amc_portal.core.config import settings

celery_app = Celery(
    "amc_portal",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["amc_portal.tasks.security_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=300,        # Hard limit (5 min)
    task_soft_time_limit=240,   # Soft limit (4 min)

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
)

celery_app.conf.beat_schedule = {
    "cleanup-expired-blacklisted-tokens-daily": {
        "task": "amc_portal.tasks.security_tasks.cleanup_expired_blacklisted_tokens",
        "schedule": crontab(hour=3, minute=0),
    },
    "cleanup-expired-sessions-daily": {
        "task": "amc_portal.tasks.security_tasks.cleanup_expired_sessions",
        "schedule": crontab(hour=3, minute=30),
    },
}
