import io
from datetime import datetime, timezone

import pytest
from pypdf import PdfReader

from conftest import make_payload
from models.document import Document, Finding, RiskArea
from services.errors import NotAnalyzed
from services.report import render_report, report_filename


def _document(payload=None, status="analyzed"):
	now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
	return Document(
		id="a" * 32,
		owner_id=1,
		filename="supply_agreement.pdf",
		size=2048,
		mime_type="application/pdf",
		storage_key="1/1-supply_agreement.pdf",
		status=status,
		risk_level=payload.risk_level if payload else None,
		risk_score=payload.risk_score if payload else None,
		analysis_payload=payload,
		created_at=now,
		updated_at=now,
	)


def _text(pdf: bytes) -> str:
	return "\n".join(page.extract_text() for page in PdfReader(io.BytesIO(pdf)).pages)


def test_report_contains_all_sections():
	pdf = render_report(_document(make_payload(0.8)))
	assert pdf.startswith(b"%PDF")
	text = _text(pdf)
	for expected in ("supply_agreement.pdf", "Summary", "Risk Areas", "Findings", "Recommendations", "Negotiate a liability cap", "Page 1"):
		assert expected in text


def test_long_report_paginates_with_headers_and_footers():
	payload = make_payload(0.6)
	payload.risk_areas = [
		RiskArea(category=f"Area {i}", severity="medium", description="Ambiguous obligations " * 20, impact="Disputes")
		for i in range(30)
	]
	payload.findings = [Finding(type="Clause", section=f"{i}.1", description="Vague wording") for i in range(20)]
	reader = PdfReader(io.BytesIO(render_report(_document(payload))))
	assert len(reader.pages) > 2
	last = reader.pages[-1].extract_text()
	assert f"Page {len(reader.pages)}" in last
	assert "Legal Document Risk Analysis" in last


def test_report_requires_payload():
	with pytest.raises(NotAnalyzed):
		render_report(_document(None, status="pending"))


def test_report_filename_replaces_extension():
	assert report_filename("lease.docx") == "lease_report.pdf"
	assert report_filename("README") == "README_report.pdf"
