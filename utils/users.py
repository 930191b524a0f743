import os
import json
import fcntl
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Optional

import logging

logger = logging.getLogger("api.users")


def _users_file() -> Path:
	state_dir = Path(os.getenv("STATE_DIR", "state")).resolve()
	state_dir.mkdir(parents=True, exist_ok=True)
	return state_dir / "users.json"


@contextmanager
def _locked_users():
	"""
	Yield the users table under an exclusive lock; changes made to it are written back.
	Ids come from a persisted counter, so they are never handed out twice.
	"""
	filepath = _users_file()
	with open(filepath, "a+", encoding="utf-8") as f:
		fcntl.flock(f.fileno(), fcntl.LOCK_EX)
		try:
			f.seek(0)
			raw = f.read()
			table = json.loads(raw) if raw.strip() else {"next_id": 1, "users": {}}
			before = json.dumps(table, sort_keys=True)
			yield table
			if json.dumps(table, sort_keys=True) != before:
				f.seek(0)
				f.truncate()
				f.write(json.dumps(table, ensure_ascii=False))
				f.flush()
				os.fsync(f.fileno())
		finally:
			fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def create_user(email: str, hashed_password: str) -> Optional[Dict]:
	"""Returns the new user, or None when the email is already registered."""
	with _locked_users() as table:
		if email in table["users"]:
			return None
		user = {"id": table["next_id"], "email": email, "hashed_password": hashed_password}
		table["users"][email] = user
		table["next_id"] += 1
	return user


def get_user(email: str) -> Optional[Dict]:
	with _locked_users() as table:
		return table["users"].get(email)
