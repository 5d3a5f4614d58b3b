"""
Celery application: broker and result backend from settings.
Tasks are in eacon.workers.tasks (pending payment sweep).
"""
from celery import Celery
from celery.schedules import crontab

from eacon.core.config import settings

celery_app = Celery(
    "eacon",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "eacon.workers.tasks.settle_pending",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "settle-pending-payments": {
            "task": "eacon.workers.tasks.settle_pending.settle_pending_payments",
            "schedule": crontab(minute="*/10"),
        },
    },
)
