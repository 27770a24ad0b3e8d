# vmportal/tasks/celery_app.py
from celery import Celery

from vmportal.config import settings

BROKER_URL = settings.celery_broker_url or settings.redis_url
RESULT_BACKEND = settings.celery_result_backend or settings.redis_url

# modules that define tasks, imported by workers at startup
INCLUDE_MODULES = [
    "vmportal.tasks.jobs",
]

celery_app = Celery(
    "vmportal_tasks",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
    include=INCLUDE_MODULES,
)

# alias for `celery -A vmportal.tasks.celery_app.celery worker`
celery = celery_app

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_time_limit=settings.install_timeout,
)
