from celery import Celery, signals
import os
from utils.logging_config import init_worker_logging

CELERY_BROKER_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

celery_app = Celery(
    "legal_document_analyzer",
    broker=CELERY_BROKER_URL,
    backend=CELERY_BROKER_URL,
    include=["tasks.celery_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@signals.after_setup_logger.connect
def _setup_worker_logging(**kwargs):
    init_worker_logging()
