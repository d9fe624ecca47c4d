"""Celery application configuration."""

from celery import Celery

from vidpipe.core.config import settings

celery_app = Celery(
    "vidpipe",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=int(settings.ENCODE_TIMEOUT_SECONDS) * 2,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.autodiscover_tasks(["vidpipe.modules.processing"])
