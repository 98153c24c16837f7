from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "nosh",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.tasks.order_tasks"]
)

# Celery Configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_track_started=True,

    task_time_limit=300,        # Hard limit (5 min)
    task_soft_time_limit=240,   # Soft limit (4 min)

    worker_prefetch_multiplier=4,
    worker_max_tasks_per_child=1000,

    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,  # 1 hour
)

celery_app.conf.task_routes = {
    "app.tasks.order_tasks.cleanup_provider_discount": {"queue": "payments"},
}

celery_app.conf.beat_schedule = {
    "sweep-abandoned-checkouts-every-15-min": {
        "task": "app.tasks.order_tasks.sweep_abandoned_checkouts",
        "schedule": crontab(minute="*/15"),
    },
}
