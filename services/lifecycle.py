import logging
import os
from typing import Optional

from models.document import (
	ANALYZED,
	ANALYZING,
	ERROR,
	PENDING,
	Document,
	derive_risk_level,
	sources_for,
)
from services.errors import DocumentError

logger = logging.getLogger("services.lifecycle")

TIMEOUT_MESSAGE = "Analysis timeout — document may be too complex or corrupted"


def analysis_timeout_seconds() -> int:
	try:
		return int(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "180"))
	except ValueError:
		return 180


def run_analysis(store, storage, analyzer, doc_id: str) -> Optional[Document]:
	"""
	Drive one document from pending to a terminal status.
	Returns the final record, or None when the run was skipped or lost the race.
	"""
	doc = store.update(doc_id, {"status": ANALYZING}, expected={PENDING})
	if doc is None:
		logger.info("analysis_skipped", extra={"doc_id": doc_id})
		return None
	logger.info("analysis_started", extra={"doc_id": doc_id, "owner_id": doc.owner_id})

	try:
		blob = storage.get(doc.storage_key)
		payload = analyzer.analyze(blob, doc.mime_type)
	except DocumentError as exc:
		logger.error("analysis_failed", extra={"doc_id": doc_id, "error": exc.message})
		return _finish(store, doc_id, {"status": ERROR, "error": exc.message})
	except Exception as exc:
		logger.error("analysis_crashed", extra={"doc_id": doc_id, "error": str(exc)}, exc_info=True)
		return _finish(store, doc_id, {"status": ERROR, "error": f"Analysis failed: {exc}"})

	return _finish(store, doc_id, {
		"status": ANALYZED,
		"risk_score": payload.risk_score,
		"risk_level": derive_risk_level(payload.risk_score),
		"analysis_payload": payload,
		"error": None,
	})


def expire_analysis(store, doc_id: str) -> Optional[Document]:
	"""Timeout guard: force a still-unfinished analysis into the error state."""
	doc = store.update(doc_id, {"status": ERROR, "error": TIMEOUT_MESSAGE}, expected=sources_for(ERROR))
	if doc is None:
		logger.info("timeout_noop", extra={"doc_id": doc_id})
		return None
	logger.warning("analysis_timed_out", extra={"doc_id": doc_id, "owner_id": doc.owner_id})
	return doc


def _finish(store, doc_id: str, changes: dict) -> Optional[Document]:
	# Only the first terminal write lands; a later one (e.g. after the timeout
	# guard fired, or after the record was deleted) is dropped.
	doc = store.update(doc_id, changes, expected={ANALYZING})
	if doc is None:
		logger.warning("terminal_write_dropped", extra={"doc_id": doc_id, "status": changes["status"]})
		return None
	logger.info("analysis_completed", extra={"doc_id": doc_id, "status": doc.status, "risk_level": doc.risk_level})
	return doc
