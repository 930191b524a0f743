import os
import json
import uuid
import fcntl
from pathlib import Path
from datetime import datetime, date, timezone
from typing import List, Tuple, Optional, Dict

import logging

logger = logging.getLogger("api.history")


def _history_dir() -> Path:
	return Path(os.getenv("STATE_DIR", "state")).resolve() / "chat_history"


def _today_utc() -> date:
	return datetime.now(timezone.utc).date()


def get_history_file(user_id: int, for_date: Optional[date] = None) -> Path:
	if for_date is None:
		for_date = _today_utc()
	user_dir = _history_dir() / str(user_id)
	user_dir.mkdir(parents=True, exist_ok=True)
	return user_dir / f"{for_date.isoformat()}.jsonl"


def append_history_entry(user_id: int, entry: Dict) -> str:
	"""
	Append one chat exchange to the user's daily history file.
	Returns the generated entry id.
	"""
	entry_id = entry.get("id") or str(uuid.uuid4())
	entry["id"] = entry_id
	entry.setdefault("timestamp", datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"))
	filepath = get_history_file(user_id)
	with open(filepath, "a", encoding="utf-8") as f:
		fcntl.flock(f.fileno(), fcntl.LOCK_EX)
		f.write(json.dumps(entry, ensure_ascii=False) + "\n")
		fcntl.flock(f.fileno(), fcntl.LOCK_UN)
	return entry_id


def _read_all_lines(filepath: Path) -> List[str]:
	if not filepath.exists():
		return []
	with open(filepath, "r", encoding="utf-8") as f:
		fcntl.flock(f.fileno(), fcntl.LOCK_SH)
		lines = f.readlines()
		fcntl.flock(f.fileno(), fcntl.LOCK_UN)
	return lines


def list_history(
	user_id: int,
	for_date: Optional[date] = None,
	offset: int = 0,
	limit: int = 20,
	document_id: Optional[str] = None,
) -> Tuple[List[Dict], int, str]:
	"""Most recent first. ``total`` counts entries after the document filter."""
	resolved = for_date if for_date is not None else _today_utc()
	entries: List[Dict] = []
	for line in reversed(_read_all_lines(get_history_file(user_id, resolved))):
		try:
			entry = json.loads(line)
		except json.JSONDecodeError:
			logger.warning("history_line_skipped", extra={"user_id": user_id})
			continue
		if document_id is None or entry.get("document_id") == document_id:
			entries.append(entry)
	return entries[offset:offset + limit], len(entries), resolved.isoformat()
