from celery import Celery
from celery.schedules import crontab

from church_approvals.core.config import settings

celery_app = Celery(
    "approval_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "church_approvals.workers.reminder_tasks",
    ],
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
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "send-overdue-approval-reminders-hourly": {
        "task": "church_approvals.workers.reminder_tasks.send_overdue_reminders",
        "schedule": crontab(minute=15),
    },
}
