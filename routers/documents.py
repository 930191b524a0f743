from fastapi import APIRouter, UploadFile, File, Depends, Query, Request, Security
from fastapi.responses import Response, StreamingResponse
from starlette.concurrency import run_in_threadpool
from typing import AsyncGenerator
from urllib.parse import quote
import asyncio
import json
import logging
import mimetypes
import os

from models.user import Principal
from services.documents import DocumentService
from services.storage import get_storage_gateway
from services.store import get_document_store
from utils.jwt import get_current_principal
from utils.response import api_response, document_data, listing_data

router = APIRouter(prefix="/documents", tags=["documents"])
logger = logging.getLogger("api.documents")


def get_document_service() -> DocumentService:
	return DocumentService(get_document_store(), get_storage_gateway())


def _events_poll_seconds() -> float:
	try:
		return float(os.getenv("EVENTS_POLL_SECONDS", "1.0"))
	except ValueError:
		return 1.0


def _events_stream_seconds() -> float:
	try:
		return float(os.getenv("EVENTS_STREAM_SECONDS", "300"))
	except ValueError:
		return 300.0


def _sse_frame(listing) -> str:
	return f"event: documents\ndata: {json.dumps(listing_data(listing))}\n\n"


def _resolve_mime(file: UploadFile) -> str:
	# Some clients send a generic type; fall back to the filename
	mime = (file.content_type or "").split(";")[0].strip()
	if not mime or mime == "application/octet-stream":
		mime = mimetypes.guess_type(file.filename or "")[0] or mime
	return mime


def _attachment(filename: str) -> dict:
	return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}


@router.post("/upload")
async def upload_document(
	file: UploadFile = File(...),
	principal: Principal = Security(get_current_principal),
	service: DocumentService = Depends(get_document_service),
):
	content = await file.read()
	document = await run_in_threadpool(service.upload, principal, file.filename, _resolve_mime(file), content)
	return api_response(
		data=document_data(document),
		message="Document uploaded. Analysis is running in the background.",
		status_code=201,
	)


@router.get("")
def list_documents(
	principal: Principal = Security(get_current_principal),
	service: DocumentService = Depends(get_document_service),
):
	listing = service.list(principal)
	logger.info("documents_listed", extra={"owner_id": principal.id, "returned": len(listing.documents)})
	return api_response(data=listing_data(listing), message="Documents fetched successfully.")


@router.get("/changes")
def poll_changes(
	since: int = Query(0, ge=0, description="Change log cursor returned by the previous call"),
	principal: Principal = Security(get_current_principal),
	service: DocumentService = Depends(get_document_service),
):
	"""Return change events after ``since`` plus a fresh listing (full re-fetch)."""
	events, cursor, listing = service.changes(principal, since)
	return api_response(
		data={
			"events": [e.model_dump(mode="json") for e in events],
			"cursor": cursor,
			**listing_data(listing),
		},
		message="Changes fetched successfully.",
	)


@router.get("/events")
async def stream_events(
	request: Request,
	principal: Principal = Security(get_current_principal),
	service: DocumentService = Depends(get_document_service),
):
	"""
	Server-sent events: one ``documents`` snapshot on connect and after every change.
	The stream ends after EVENTS_STREAM_SECONDS; EventSource clients reconnect on their own.
	"""
	live = await run_in_threadpool(service.watch, principal)
	interval = _events_poll_seconds()
	deadline = asyncio.get_running_loop().time() + _events_stream_seconds()

	async def event_generator() -> AsyncGenerator[str, None]:
		yield _sse_frame(live.listing)
		loop = asyncio.get_running_loop()
		while loop.time() < deadline and not await request.is_disconnected():
			await asyncio.sleep(interval)
			if await run_in_threadpool(live.refresh_if_changed):
				yield _sse_frame(live.listing)
		logger.info("event_stream_closed", extra={"owner_id": principal.id})

	return StreamingResponse(
		event_generator(),
		media_type="text/event-stream",
		headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
	)


@router.get("/{document_id}")
def get_document(
	document_id: str,
	principal: Principal = Security(get_current_principal),
	service: DocumentService = Depends(get_document_service),
):
	return api_response(data=document_data(service.get(principal, document_id)), message="Document fetched successfully.")


@router.delete("/{document_id}")
def delete_document(
	document_id: str,
	principal: Principal = Security(get_current_principal),
	service: DocumentService = Depends(get_document_service),
):
	service.delete(principal, document_id)
	return api_response(data={"id": document_id}, message="Document has been successfully deleted")


@router.get("/{document_id}/download")
def download_document(
	document_id: str,
	principal: Principal = Security(get_current_principal),
	service: DocumentService = Depends(get_document_service),
):
	filename, mime_type, data = service.download(principal, document_id)
	return Response(content=data, media_type=mime_type, headers=_attachment(filename))


@router.get("/{document_id}/report")
def download_report(
	document_id: str,
	principal: Principal = Security(get_current_principal),
	service: DocumentService = Depends(get_document_service),
):
	filename, pdf = service.download_report(principal, document_id)
	logger.info("report_rendered", extra={"doc_id": document_id, "size_bytes": len(pdf)})
	return Response(content=pdf, media_type="application/pdf", headers=_attachment(filename))
