"""Celery application configuration.

Runs the timeout & retry supervisor for deployments that prefer a beat
process over the in-process supervisor loop (``SUPERVISOR_ENABLED=false``
on the API, beat + worker on the ``supervisor`` queue):

    celery -A worker.celery_app beat
    celery -A worker.celery_app worker -Q supervisor --concurrency 1
"""

from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    "workflow_engine",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    task_routes={
        "worker.tasks.supervisor.*": {"queue": "supervisor"},
    },
    task_default_queue="supervisor",

    # Cycle reports are only kept for inspection
    result_expires=3600,

    # A cycle must finish before the next one is due
    task_soft_time_limit=max(settings.SUPERVISOR_INTERVAL_SECONDS - 5, 5),
    task_time_limit=max(settings.SUPERVISOR_INTERVAL_SECONDS, 10),
    task_acks_late=True,
    worker_prefetch_multiplier=1,

    beat_schedule={
        "supervisor-cycle": {
            "task": "worker.tasks.supervisor.run_supervisor_cycle",
            "schedule": settings.SUPERVISOR_INTERVAL_SECONDS,
            "options": {"queue": "supervisor", "expires": settings.SUPERVISOR_INTERVAL_SECONDS},
        },
    },

    include=[
        "worker.tasks.supervisor",
    ],
)
