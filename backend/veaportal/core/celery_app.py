from celery import Celery
from veaportal.core.config import settings

celery_app = Celery(
    "veaportal",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    broker_connection_retry_on_startup=True,
)

celery_app.autodiscover_tasks(packages=["veaportal.tasks"], related_name="ledger_tasks")
