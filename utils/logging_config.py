import os
import json
import logging
from logging.handlers import TimedRotatingFileHandler
from datetime import datetime, timezone
from pathlib import Path
import contextvars
from typing import Optional
import hashlib
import time

from fastapi import Request
from starlette.responses import Response

from utils.jwt import verify_access_token

# Context variables for correlation and user identity
correlation_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("correlation_id", default=None)
user_id_ctx: contextvars.ContextVar[Optional[int]] = contextvars.ContextVar("user_id", default=None)

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
	"message", "asctime", "correlation_id", "user_id", "taskName",
}


class ContextFilter(logging.Filter):
	def filter(self, record: logging.LogRecord) -> bool:
		record.correlation_id = correlation_id_ctx.get()
		record.user_id = user_id_ctx.get()
		return True


class JsonFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:
		payload = {
			"timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
			"level": record.levelname,
			"logger": record.name,
			"message": record.getMessage(),
			"correlation_id": getattr(record, "correlation_id", None),
			"user_id": getattr(record, "user_id", None),
		}
		for key, val in record.__dict__.items():
			if key in _RESERVED_ATTRS or key.startswith("_") or val is None:
				continue
			payload[key] = val
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, ensure_ascii=False, default=str)


def _log_level() -> int:
	return getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)


def _make_rotating_file_handler(path: Path, level: int) -> logging.Handler:
	path.parent.mkdir(parents=True, exist_ok=True)
	handler = TimedRotatingFileHandler(path, when="midnight", backupCount=int(os.getenv("LOG_BACKUP_COUNT", "7")), utc=True)
	handler.setLevel(level)
	handler.setFormatter(JsonFormatter())
	handler.addFilter(ContextFilter())
	return handler


def init_logging():
	"""Initialize API logging: JSON console output plus rotating app/error files."""
	log_dir = Path(os.getenv("LOG_DIR", "logs"))
	level = _log_level()

	root = logging.getLogger()
	root.setLevel(level)

	# Remove existing handlers to avoid duplicates on reload
	for h in list(root.handlers):
		root.removeHandler(h)
		h.close()

	console = logging.StreamHandler()
	console.setLevel(level)
	console.setFormatter(JsonFormatter())
	console.addFilter(ContextFilter())
	root.addHandler(console)

	root.addHandler(_make_rotating_file_handler(log_dir / "app.log", level))
	root.addHandler(_make_rotating_file_handler(log_dir / "error.log", logging.ERROR))

	logging.getLogger(__name__).info("Logging initialized")


def install_request_logging(app):
	"""Attach request logging middleware to the FastAPI app."""
	logger = logging.getLogger("request")

	@app.middleware("http")
	async def _log_middleware(request: Request, call_next):
		corr = request.headers.get("X-Request-ID") or request.headers.get("X-Correlation-ID") or os.urandom(8).hex()
		correlation_id_ctx.set(corr)

		# Best-effort parse of user id from Authorization to enrich logs
		user_id_ctx.set(None)
		auth_header = request.headers.get("Authorization")
		if auth_header:
			raw = auth_header.split(" ", 1)[1] if " " in auth_header else auth_header
			payload = verify_access_token(raw)
			if payload and str(payload.get("id", "")).isdigit():
				user_id_ctx.set(int(payload["id"]))

		start = time.perf_counter()
		common = {
			"path": request.url.path,
			"method": request.method,
			"client_host": request.client.host if request.client else None,
		}
		try:
			response: Response = await call_next(request)
			response.headers["X-Request-ID"] = corr
			logger.info(
				"request_completed",
				extra={**common, "status_code": response.status_code, "latency_ms": int((time.perf_counter() - start) * 1000)},
			)
			return response
		except Exception:
			logger.error(
				"request_failed",
				exc_info=True,
				extra={**common, "status_code": 500, "latency_ms": int((time.perf_counter() - start) * 1000)},
			)
			raise
		finally:
			# Clear context to avoid bleeding into other requests
			correlation_id_ctx.set(None)
			user_id_ctx.set(None)


def init_worker_logging():
	"""Route Celery worker and task logs to a dedicated rotating file."""
	log_dir = Path(os.getenv("LOG_DIR", "logs"))
	level = _log_level()
	handler = _make_rotating_file_handler(log_dir / "tasks.log", level)

	for name in ("celery", "tasks", "services"):
		logger = logging.getLogger(name)
		logger.setLevel(level)
		# Avoid duplicate handlers on worker autoreload
		for h in list(logger.handlers):
			logger.removeHandler(h)
		logger.addHandler(handler)
		logger.propagate = True

	logging.getLogger("tasks").info("Celery worker logging initialized")


def mask_email(email: str) -> str:
	try:
		local, domain = email.split("@", 1)
	except ValueError:
		return "***@***"
	masked_local = "*" if len(local) <= 1 else local[0] + "*" * (len(local) - 1)
	return f"{masked_local}@{domain}"


def hash_text(text: str) -> str:
	return hashlib.sha256(text.encode("utf-8")).hexdigest()
