from celery import Celery
from celery.schedules import crontab

from disputeflow.config import settings

app = Celery(
    "disputeflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_default_queue="disputes",
    task_routes={
        "disputeflow.tasks.dispute_tasks.*": {"queue": "disputes"},
    },
    # The pipeline enforces its own timeout; the hard limit only reaps hung workers.
    task_annotations={
        "disputeflow.tasks.dispute_tasks.run_automated_assessment": {
            "time_limit": settings.ASSESSMENT_TIMEOUT_SECONDS * 2,
        },
    },
    result_expires=24 * 3600,
    beat_schedule={
        "sweep-dispute-deadlines": {
            "task": "disputeflow.tasks.dispute_tasks.sweep_dispute_deadlines",
            "schedule": crontab(minute="*/15"),  # every 15 minutes
        },
        "retry-pending-reconciliations": {
            "task": "disputeflow.tasks.dispute_tasks.retry_pending_reconciliations",
            "schedule": crontab(minute=0),  # every hour
        },
    },
)

app.autodiscover_tasks(["disputeflow.tasks.dispute_tasks"])
