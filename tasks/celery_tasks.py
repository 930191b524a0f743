from .celery_app import celery_app
from services.analyzer import get_analyzer
from services.lifecycle import analysis_timeout_seconds, expire_analysis, run_analysis
from services.storage import get_storage_gateway
from services.store import get_document_store
import logging

logger = logging.getLogger("tasks.documents")


@celery_app.task
def analyze_document_task(doc_id):
	logger.info("task_started", extra={"doc_id": doc_id})
	doc = run_analysis(get_document_store(), get_storage_gateway(), get_analyzer(), doc_id)
	return doc.status if doc else None


@celery_app.task
def expire_analysis_task(doc_id):
	doc = expire_analysis(get_document_store(), doc_id)
	return doc.status if doc else None


def dispatch_analysis(doc_id):
	"""Queue the analysis and arm its timeout guard; neither call blocks."""
	analyze_document_task.delay(doc_id)
	expire_analysis_task.apply_async(args=[doc_id], countdown=analysis_timeout_seconds())
	logger.info("analysis_dispatched", extra={"doc_id": doc_id})
