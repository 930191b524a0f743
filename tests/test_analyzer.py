import base64
import json

import pytest
import requests

from services import analyzer as analyzer_module
from services.analyzer import GeminiAnalyzer, extract_json_object, parse_analysis_text
from services.errors import ProviderError, TooLarge, ValidationError

GOOD_ANALYSIS = {
	"riskScore": 0.82,
	"riskLevel": "high",
	"summary": "Supplier agreement with one-sided termination rights.",
	"riskAreas": [{"category": "Termination", "severity": "high", "description": "Supplier may terminate at will", "impact": "Supply disruption"}],
	"findings": [{"type": "Unusual term", "section": "12.3", "description": "No notice period {sic}", "recommendation": "Add 90 days notice"}],
	"recommendations": [{"priority": "high", "action": "Renegotiate clause 12", "rationale": "Balance termination rights"}],
}


class FakeResponse:
	def __init__(self, status_code=200, body=None, text=""):
		self.status_code = status_code
		self._body = body
		self.text = text

	def json(self):
		if self._body is None:
			raise ValueError("no json")
		return self._body


def gemini_body(text):
	return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def test_extract_json_from_markdown_fence():
	text = "Here is the analysis:\n```json\n" + json.dumps(GOOD_ANALYSIS) + "\n```\nLet me know if you need more."
	assert extract_json_object(text) == GOOD_ANALYSIS


def test_extract_json_skips_unparseable_brace_block():
	text = "Scoring {draft} then " + json.dumps({"riskScore": 0.3}) + " and {another}"
	assert extract_json_object(text) == {"riskScore": 0.3}


def test_extract_json_returns_none_without_object():
	assert extract_json_object("No structured output, sorry.") is None
	assert extract_json_object("{ unbalanced") is None


def test_parse_well_formed_response():
	payload = parse_analysis_text("```json\n" + json.dumps(GOOD_ANALYSIS) + "\n```")
	assert payload.risk_score == 0.82
	assert payload.risk_level == "high"
	assert payload.risk_areas[0].category == "Termination"
	assert payload.findings[0].section == "12.3"
	assert payload.recommendations[0].action == "Renegotiate clause 12"


def test_parse_rederives_level_and_clamps_score():
	payload = parse_analysis_text(json.dumps({"riskScore": 1.7, "riskLevel": "low"}))
	assert payload.risk_score == 1.0
	assert payload.risk_level == "high"
	payload = parse_analysis_text(json.dumps({"riskScore": "n/a", "riskAreas": ["bad", {"category": "Tax"}]}))
	assert payload.risk_score == 0.5
	assert payload.risk_level == "medium"
	assert [a.category for a in payload.risk_areas] == ["Tax"]
	assert payload.risk_areas[0].impact == ""


def test_malformed_response_falls_back():
	raw = "I could not produce JSON. " * 40
	payload = parse_analysis_text(raw)
	assert payload.risk_score == 0.5
	assert payload.risk_level == "medium"
	assert payload.summary == raw[:500] + "..."
	assert payload.risk_areas == [] and payload.findings == [] and payload.recommendations == []


def test_analyze_posts_inline_document(monkeypatch):
	captured = {}
	reply = gemini_body("Result: " + json.dumps(GOOD_ANALYSIS))

	def fake_post(url, **kwargs):
		captured.update(url=url, **kwargs)
		return FakeResponse(body=reply)

	monkeypatch.setattr(analyzer_module.requests, "post", fake_post)
	payload = GeminiAnalyzer(api_key="k", model="gemini-test", timeout=5).analyze(b"%PDF-1.4 body", "application/pdf")

	assert payload.risk_level == "high"
	assert captured["url"].endswith("/gemini-test:generateContent")
	assert captured["params"] == {"key": "k"}
	assert captured["timeout"] == 5
	parts = captured["json"]["contents"][0]["parts"]
	assert "riskScore" in parts[0]["text"]
	assert parts[1]["inline_data"]["mime_type"] == "application/pdf"
	assert base64.b64decode(parts[1]["inline_data"]["data"]) == b"%PDF-1.4 body"


def test_analyze_degrades_on_prose_response(monkeypatch):
	monkeypatch.setattr(analyzer_module.requests, "post", lambda *a, **k: FakeResponse(body=gemini_body("Looks fine overall.")))
	payload = GeminiAnalyzer(api_key="k").analyze(b"text", "text/plain")
	assert payload.risk_score == 0.5
	assert payload.summary.startswith("Looks fine overall.")


def test_analyze_rejects_too_large_before_network(monkeypatch):
	monkeypatch.setenv("MAX_UPLOAD_MB", "1")

	def fail_post(*args, **kwargs):
		raise AssertionError("provider must not be called")

	monkeypatch.setattr(analyzer_module.requests, "post", fail_post)
	with pytest.raises(TooLarge) as exc:
		GeminiAnalyzer(api_key="k").analyze(b"x" * (1024 * 1024 + 1), "text/plain")
	assert isinstance(exc.value, ValidationError)
	assert exc.value.status_code == 413


@pytest.mark.parametrize(
	"response",
	[
		FakeResponse(status_code=500, text="internal"),
		FakeResponse(status_code=200, body={"candidates": []}),
		FakeResponse(status_code=200, body=gemini_body("")),
		FakeResponse(status_code=200, body=gemini_body({"riskScore": 0.9})),
		FakeResponse(status_code=200, body=None),
	],
)
def test_analyze_provider_failures(monkeypatch, response):
	monkeypatch.setattr(analyzer_module.requests, "post", lambda *a, **k: response)
	with pytest.raises(ProviderError):
		GeminiAnalyzer(api_key="k").analyze(b"text", "text/plain")


def test_analyze_network_error(monkeypatch):
	def boom(*args, **kwargs):
		raise requests.ConnectionError("unreachable")

	monkeypatch.setattr(analyzer_module.requests, "post", boom)
	with pytest.raises(ProviderError):
		GeminiAnalyzer(api_key="k").analyze(b"text", "text/plain")


def test_analyze_without_api_key(monkeypatch):
	monkeypatch.delenv("GEMINI_API_KEY", raising=False)
	with pytest.raises(ProviderError):
		GeminiAnalyzer().analyze(b"text", "text/plain")


def test_bad_provider_timeout_setting_uses_default(monkeypatch):
	monkeypatch.setenv("GEMINI_TIMEOUT_SECONDS", "two minutes")
	assert GeminiAnalyzer(api_key="k").timeout == 120.0
	monkeypatch.setenv("GEMINI_TIMEOUT_SECONDS", "30")
	assert GeminiAnalyzer(api_key="k").timeout == 30.0
