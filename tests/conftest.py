import os
import shutil
import tempfile
import importlib
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
import sys

# Ensure project root is on sys.path
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
	sys.path.insert(0, PROJECT_ROOT)

from models.document import AnalysisPayload, RiskArea, Finding, Recommendation, derive_risk_level
from models.user import Principal


@pytest.fixture(scope="session")
def temp_dirs():
	base = tempfile.mkdtemp(prefix="lda_tests_")
	state_dir = os.path.join(base, "state")
	storage_dir = os.path.join(base, "uploads")
	logs_dir = os.path.join(base, "logs")
	for path in (state_dir, storage_dir, logs_dir):
		os.makedirs(path, exist_ok=True)
	yield {"base": base, "state": state_dir, "storage": storage_dir, "logs": logs_dir}
	shutil.rmtree(base, ignore_errors=True)


@pytest.fixture(autouse=True)
def test_env(temp_dirs, monkeypatch):
	monkeypatch.setenv("STATE_DIR", temp_dirs["state"])
	monkeypatch.setenv("STORAGE_DIR", temp_dirs["storage"])
	monkeypatch.setenv("STORAGE_BACKEND", "local")
	monkeypatch.setenv("LOG_DIR", temp_dirs["logs"])
	monkeypatch.setenv("JWT_SECRET", "test_secret")
	monkeypatch.setenv("MAX_UPLOAD_MB", "10")
	monkeypatch.setenv("GEMINI_API_KEY", "test-key")
	monkeypatch.delenv("DOWNLOAD_EXTENSION", raising=False)
	yield


@pytest.fixture
def dispatched():
	"""Doc ids handed to the background dispatcher instead of Celery."""
	return []


@pytest.fixture
def store(temp_dirs):
	from services.store import get_document_store
	return get_document_store()


@pytest.fixture
def storage(temp_dirs):
	from services.storage import get_storage_gateway
	return get_storage_gateway()


@pytest.fixture
def service(store, storage, dispatched):
	from services.documents import DocumentService
	return DocumentService(store, storage, dispatcher=dispatched.append)


@pytest.fixture(scope="session")
def app_module(temp_dirs):
	# Set env before importing app
	os.environ["LOG_DIR"] = temp_dirs["logs"]
	os.environ["JWT_SECRET"] = "test_secret"
	import main as main_module
	importlib.reload(main_module)
	return main_module


@pytest.fixture
def app_client(app_module, service):
	from routers.documents import get_document_service
	app = app_module.app
	app.dependency_overrides[get_document_service] = lambda: service
	client = TestClient(app)
	yield client
	app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_state(temp_dirs):
	# Users, records and blobs all live on disk; wipe them between tests
	for path in (temp_dirs["state"], temp_dirs["storage"]):
		for child in Path(path).iterdir():
			if child.is_dir():
				shutil.rmtree(child, ignore_errors=True)
			else:
				child.unlink()
	yield


@pytest.fixture
def alice():
	return Principal(id=1, email="alice@example.com")


@pytest.fixture
def bob():
	return Principal(id=2, email="bob@example.com")


def make_payload(score: float = 0.8) -> AnalysisPayload:
	return AnalysisPayload(
		risk_score=score,
		risk_level=derive_risk_level(score),
		summary="Master services agreement with uncapped liability.",
		risk_areas=[RiskArea(category="Liability", severity="high", description="Uncapped indemnity", impact="Unlimited exposure")],
		findings=[Finding(type="Missing protection", section="Clause 9", description="No limitation of liability", recommendation="Add a cap")],
		recommendations=[Recommendation(priority="high", action="Negotiate a liability cap", rationale="Limits exposure")],
	)


class FakeAnalyzer:
	def __init__(self, payload=None, error=None):
		self.payload = payload
		self.error = error
		self.calls = []

	def analyze(self, blob, mime_type):
		self.calls.append((blob, mime_type))
		if self.error is not None:
			raise self.error
		return self.payload


def register_and_login(client: TestClient, email: str = "user@example.com", password: str = "Passw0rd!") -> str:
	resp = client.post("/auth/register", json={"email": email, "password": password})
	assert resp.status_code in (200, 201)
	resp = client.post("/auth/login", json={"email": email, "password": password})
	assert resp.status_code == 200, resp.text
	return resp.json()["data"]["access_token"]


def auth_headers(client: TestClient, email: str = "user@example.com") -> dict:
	return {"Authorization": f"Bearer {register_and_login(client, email=email)}"}
