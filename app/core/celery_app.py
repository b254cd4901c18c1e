"""
Celery application: broker and result backend from settings.
Tasks are in app.workers.tasks (fulfillment side effects, clearing sweeps).
"""
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from app.core.config import settings
from app.core.logging import configure_logging

celery_app = Celery(
    "app",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.workers.tasks.fulfillment",
        "app.workers.tasks.clearing",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=settings.celery_task_time_limit,
    result_expires=86400,
    beat_schedule={
        "release-cleared-commissions": {
            "task": "app.workers.tasks.clearing.release_cleared_commissions",
            "schedule": crontab(minute="*/30"),
        },
        "purge-expired-download-tokens": {
            "task": "app.workers.tasks.clearing.purge_expired_download_tokens",
            "schedule": crontab(hour=3, minute=15),
        },
        "reschedule-missing-side-effects": {
            "task": "app.workers.tasks.fulfillment.reschedule_missing_side_effects",
            "schedule": crontab(minute="*/15"),
        },
    },
)

celery_app.conf.task_routes = {
    "app.workers.tasks.fulfillment.*": {"queue": "fulfillment"},
}

celery_app.autodiscover_tasks(["app.workers.tasks"])


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    """JSON logs in workers too, instead of Celery's default handlers."""
    configure_logging()
