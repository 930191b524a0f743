"""
File-backed document records shared by the API process and Celery workers.

Each record is one JSON file; every write happens under an exclusive flock on a
store-wide lock file, which makes conditional (compare-and-swap) status updates
safe across processes. Each owner also has an append-only JSONL change log that
subscribers tail to learn about inserts, updates and deletes.
"""
import os
import re
import json
import fcntl
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from models.document import ChangeEvent, Document

logger = logging.getLogger("services.store")

_DOC_ID_RE = re.compile(r"^[0-9a-f]{32}$")


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class DocumentStore:
	def __init__(self, root: Path):
		self.root = Path(root)
		self.records_dir = self.root / "records"
		self.changes_dir = self.root / "changes"
		self._lock_path = self.root / ".lock"

	@contextmanager
	def _locked(self, exclusive: bool = True):
		self.root.mkdir(parents=True, exist_ok=True)
		with open(self._lock_path, "a+", encoding="utf-8") as f:
			fcntl.flock(f.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
			try:
				yield
			finally:
				fcntl.flock(f.fileno(), fcntl.LOCK_UN)

	def _record_path(self, doc_id: str) -> Optional[Path]:
		if not _DOC_ID_RE.match(doc_id or ""):
			return None
		return self.records_dir / f"{doc_id}.json"

	def _read(self, doc_id: str) -> Optional[Document]:
		path = self._record_path(doc_id)
		if path is None or not path.exists():
			return None
		with open(path, "r", encoding="utf-8") as f:
			return Document.model_validate_json(f.read())

	def _write(self, document: Document) -> None:
		self.records_dir.mkdir(parents=True, exist_ok=True)
		path = self._record_path(document.id)
		tmp = path.with_suffix(".tmp")
		with open(tmp, "w", encoding="utf-8") as f:
			f.write(document.model_dump_json())
		os.replace(tmp, path)

	def _append_change(self, kind: str, document: Document) -> None:
		self.changes_dir.mkdir(parents=True, exist_ok=True)
		event = ChangeEvent(
			type=kind,
			document_id=document.id,
			owner_id=document.owner_id,
			status=document.status if kind != "delete" else None,
			at=_utcnow(),
		)
		with open(self._log_path(document.owner_id), "a", encoding="utf-8") as f:
			f.write(event.model_dump_json() + "\n")

	def create(self, document: Document) -> Document:
		with self._locked():
			if self._read(document.id) is not None:
				raise ValueError(f"Document {document.id} already exists")
			self._write(document)
			self._append_change("insert", document)
		logger.info("record_created", extra={"doc_id": document.id, "owner_id": document.owner_id})
		return document

	def get(self, doc_id: str) -> Optional[Document]:
		with self._locked(exclusive=False):
			return self._read(doc_id)

	def update(self, doc_id: str, changes: Dict, expected: Optional[Iterable[str]] = None) -> Optional[Document]:
		"""
		Apply ``changes`` to a record and return it.
		With ``expected`` the write only happens while the current status is one of
		those values. Returns None when the record is gone or the status check fails.
		"""
		with self._locked():
			current = self._read(doc_id)
			if current is None:
				return None
			if expected is not None and current.status not in set(expected):
				return None
			data = current.model_dump()
			data.update(changes)
			data["updated_at"] = _utcnow()
			updated = Document.model_validate(data)
			self._write(updated)
			self._append_change("update", updated)
		return updated

	def delete(self, doc_id: str) -> bool:
		with self._locked():
			current = self._read(doc_id)
			if current is None:
				return False
			self._record_path(doc_id).unlink()
			self._append_change("delete", current)
		logger.info("record_deleted", extra={"doc_id": doc_id, "owner_id": current.owner_id})
		return True

	def list_by_owner(self, owner_id: int) -> List[Document]:
		documents: List[Document] = []
		with self._locked(exclusive=False):
			if not self.records_dir.exists():
				return documents
			for path in self.records_dir.glob("*.json"):
				with open(path, "r", encoding="utf-8") as f:
					doc = Document.model_validate_json(f.read())
				if doc.owner_id == owner_id:
					documents.append(doc)
		documents.sort(key=lambda d: (d.created_at, d.id), reverse=True)
		return documents

	def _log_path(self, owner_id: int) -> Path:
		return self.changes_dir / f"{owner_id}.jsonl"

	def changes(self, owner_id: int, since: int = 0) -> Tuple[List[ChangeEvent], int]:
		"""
		Return change events after byte offset ``since`` and the new cursor.
		Only the unread tail of the log is read; a cursor that lands inside a
		line resumes at the next one.
		"""
		path = self._log_path(owner_id)
		events: List[ChangeEvent] = []
		with self._locked(exclusive=False):
			if not path.exists():
				return events, 0
			with open(path, "rb") as f:
				end = f.seek(0, os.SEEK_END)
				since = max(0, min(since, end))
				if since > 0:
					f.seek(since - 1)
					if f.read(1) != b"\n":
						f.readline()
				else:
					f.seek(0)
				cursor = f.tell()
				for line in f:
					if not line.endswith(b"\n"):
						# Partially written line; pick it up on the next call
						break
					cursor += len(line)
					try:
						events.append(ChangeEvent.model_validate_json(line))
					except ValueError:
						logger.warning("change_event_unreadable", extra={"owner_id": owner_id, "offset": cursor})
		return events, cursor

	def log_end(self, owner_id: int) -> int:
		"""Cursor positioned after every event logged so far."""
		path = self._log_path(owner_id)
		with self._locked(exclusive=False):
			return path.stat().st_size if path.exists() else 0

	def subscribe(self, owner_id: int, since: Optional[int] = None) -> "ChangeSubscription":
		if since is None:
			since = self.log_end(owner_id)
		return ChangeSubscription(self, owner_id, since)


class ChangeSubscription:
	"""Cursor over one owner's change log. Delivery is at-least-once."""

	def __init__(self, store: DocumentStore, owner_id: int, cursor: int = 0):
		self.store = store
		self.owner_id = owner_id
		self.cursor = cursor

	def poll(self) -> List[ChangeEvent]:
		events, self.cursor = self.store.changes(self.owner_id, self.cursor)
		return events


def get_document_store() -> DocumentStore:
	return DocumentStore(Path(os.getenv("STATE_DIR", "state")) / "documents")
