"""
Document lifecycle orchestration.

``DocumentService`` is the single entry point for a principal's documents:
it validates and stores uploads, hands analysis off to the background
dispatcher, enforces ownership on every read and delete, and exposes a live
view that re-fetches the owner's listing whenever the change log moves.

Every operation takes the acting ``Principal`` explicitly.
"""

import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from models.document import ERROR, PENDING, ChangeEvent, Document, DocumentListing
from models.user import Principal
from services.analyzer import max_upload_bytes
from services.errors import AuthError, BlobExists, DeleteError, NotAnalyzed, NotFound, StorageError, ValidationError
from services.report import render_report, report_filename

logger = logging.getLogger("services.documents")

ACCEPTED_MIME_TYPES = frozenset({
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
})


def download_filename(filename: str) -> str:
    # Observed behaviour: the extension is swapped for the export format even
    # though the bytes are not converted.
    extension = os.getenv("DOWNLOAD_EXTENSION", "pdf").lstrip(".")
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    return f"{stem}.{extension}"


KEY_ATTEMPTS = 5


def _now_millis() -> int:
    return int(time.time() * 1000)


def storage_key_for(owner_id: int, filename: str, millis: Optional[int] = None) -> str:
    if millis is None:
        millis = _now_millis()
    return f"{owner_id}/{millis}-{filename}"


class DocumentService:
    def __init__(self, store, storage, dispatcher: Optional[Callable[[str], None]] = None):
        self.store = store
        self.storage = storage
        if dispatcher is None:
            from tasks.celery_tasks import dispatch_analysis
            dispatcher = dispatch_analysis
        self.dispatcher = dispatcher

    def _validate_upload(self, principal: Optional[Principal], filename: str, mime_type: str, size: int) -> str:
        if principal is None:
            raise AuthError("Authentication required")
        name = os.path.basename((filename or "").replace("\\", "/")).strip()
        if not name:
            raise ValidationError("Filename is required")
        if mime_type not in ACCEPTED_MIME_TYPES:
            logger.warning("upload_unsupported_mime", extra={"file_name": name, "mime": mime_type})
            raise ValidationError("Please upload PDF, DOCX, or TXT files only")
        limit = max_upload_bytes()
        if size > limit:
            logger.warning("upload_too_large", extra={"file_name": name, "size_bytes": size})
            raise ValidationError(f"File too large. Max {limit // (1024 * 1024)}MB allowed")
        return name

    def _store_blob(self, owner_id: int, name: str, mime_type: str, content: bytes) -> str:
        # Two uploads of one filename in the same millisecond would share a key;
        # the later one moves on to the next free millisecond.
        millis = _now_millis()
        for attempt in range(KEY_ATTEMPTS):
            key = storage_key_for(owner_id, name, millis + attempt)
            try:
                self.storage.put(key, content, mime_type)
                return key
            except BlobExists:
                logger.info("storage_key_taken", extra={"storage_key": key})
        raise StorageError(f"No free storage key for {name}")

    def upload(self, principal: Principal, filename: str, mime_type: str, content: bytes) -> Document:
        name = self._validate_upload(principal, filename, mime_type, len(content))
        key = self._store_blob(principal.id, name, mime_type, content)

        now = datetime.now(timezone.utc)
        document = Document(
            id=uuid.uuid4().hex,
            owner_id=principal.id,
            filename=name,
            size=len(content),
            mime_type=mime_type,
            storage_key=key,
            status=PENDING,
            created_at=now,
            updated_at=now,
        )
        try:
            self.store.create(document)
        except Exception:
            logger.error("record_create_failed", extra={"storage_key": key}, exc_info=True)
            try:
                self.storage.delete(key)
            except StorageError:
                logger.error("orphan_blob", extra={"storage_key": key})
            raise

        try:
            self.dispatcher(document.id)
        except Exception:
            # Without a queued task nothing would ever move the record on.
            logger.error("analysis_dispatch_failed", extra={"doc_id": document.id}, exc_info=True)
            failed = self.store.update(
                document.id,
                {"status": ERROR, "error": "Analysis could not be started"},
                expected={PENDING},
            )
            document = failed or document

        logger.info(
            "upload_accepted",
            extra={
                "doc_id": document.id,
                "owner_id": principal.id,
                "file_name": name,
                "mime": mime_type,
                "size_bytes": document.size,
            },
        )
        return document

    def get(self, principal: Principal, document_id: str) -> Document:
        document = self.store.get(document_id)
        if document is None:
            raise NotFound("Document not found")
        if principal is None or document.owner_id != principal.id:
            logger.warning(
                "cross_owner_access",
                extra={"doc_id": document_id, "owner_id": principal.id if principal else None},
            )
            raise AuthError("You do not have access to this document")
        return document

    def list(self, principal: Principal) -> DocumentListing:
        if principal is None:
            raise AuthError("Authentication required")
        return DocumentListing.from_documents(self.store.list_by_owner(principal.id))

    def delete(self, principal: Principal, document_id: str) -> None:
        document = self.get(principal, document_id)
        try:
            self.storage.delete(document.storage_key)
        except StorageError as err:
            raise DeleteError("Failed to delete document file; record kept") from err
        if not self.store.delete(document.id):
            raise DeleteError("Document record disappeared during delete")
        logger.info("document_deleted", extra={"doc_id": document.id, "owner_id": principal.id})

    def download(self, principal: Principal, document_id: str) -> Tuple[str, str, bytes]:
        document = self.get(principal, document_id)
        data = self.storage.get(document.storage_key)
        return download_filename(document.filename), document.mime_type, data

    def download_report(self, principal: Principal, document_id: str) -> Tuple[str, bytes]:
        document = self.get(principal, document_id)
        if document.analysis_payload is None:
            raise NotAnalyzed("Analysis is not available for this document yet")
        return report_filename(document.filename), render_report(document)

    def changes(self, principal: Principal, since: int = 0) -> Tuple[List[ChangeEvent], int, DocumentListing]:
        """Owner's change events after ``since``, the new cursor, and a fresh listing."""
        if principal is None:
            raise AuthError("Authentication required")
        events, cursor = self.store.changes(principal.id, since)
        return events, cursor, self.list(principal)

    def watch(self, principal: Principal, since: Optional[int] = None) -> "LiveDocuments":
        if principal is None:
            raise AuthError("Authentication required")
        return LiveDocuments(self, principal, since)


class LiveDocuments:
    """
    A principal's document listing kept current by the change log.

    Any insert, update or delete for the owner triggers one full re-fetch;
    several events arriving together are coalesced into a single refresh.
    """

    def __init__(self, service: DocumentService, principal: Principal, since: Optional[int] = None):
        self.service = service
        self.principal = principal
        self.subscription = service.store.subscribe(principal.id, since)
        self.listing = service.list(principal)

    @property
    def cursor(self) -> int:
        return self.subscription.cursor

    @property
    def documents(self) -> List[Document]:
        return self.listing.documents

    @property
    def current(self) -> Optional[Document]:
        return self.listing.current

    @property
    def recent(self) -> List[Document]:
        return self.listing.recent

    def refresh_if_changed(self) -> bool:
        events = self.subscription.poll()
        if not events:
            return False
        logger.debug("listing_refetch", extra={"owner_id": self.principal.id, "events": len(events)})
        self.listing = self.service.list(self.principal)
        return True
