import io
import textwrap
from datetime import datetime, timezone

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas

from models.document import Document
from services.errors import NotAnalyzed

REPORT_TITLE = "Legal Document Risk Analysis"
LEFT = 50
WRAP_CHARS = 95
LINE_HEIGHT = 13
TOP_MARGIN = 70
BOTTOM_MARGIN = 60


class _ReportWriter:
    """Line-oriented writer over a reportlab canvas that paginates on demand."""

    def __init__(self, buf, document: Document):
        self.c = canvas.Canvas(buf, pagesize=letter)
        self.width, self.height = letter
        self.document = document
        self.generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        self.page = 0
        self._new_page()

    def _new_page(self):
        if self.page:
            self._footer()
            self.c.showPage()
        self.page += 1
        self.c.setFont("Helvetica-Bold", 10)
        self.c.drawString(LEFT, self.height - 40, REPORT_TITLE)
        self.c.setFont("Helvetica", 9)
        self.c.drawRightString(self.width - LEFT, self.height - 40, self.document.filename[:60])
        self.c.line(LEFT, self.height - 46, self.width - LEFT, self.height - 46)
        self.y = self.height - TOP_MARGIN

    def _footer(self):
        self.c.setFont("Helvetica", 8)
        self.c.line(LEFT, 45, self.width - LEFT, 45)
        self.c.drawString(LEFT, 32, f"Generated {self.generated}")
        self.c.drawRightString(self.width - LEFT, 32, f"Page {self.page}")

    def _ensure_room(self, lines: int = 1):
        if self.y - lines * LINE_HEIGHT < BOTTOM_MARGIN:
            self._new_page()

    def heading(self, text: str):
        self.y -= 6
        self._ensure_room(2)
        self.c.setFont("Helvetica-Bold", 13)
        self.c.drawString(LEFT, self.y, text)
        self.y -= LINE_HEIGHT + 4

    def text(self, text: str, indent: int = 0, bold: bool = False):
        font = "Helvetica-Bold" if bold else "Helvetica"
        width = WRAP_CHARS - indent // 5
        for line in textwrap.wrap(text or "", width=width) or [""]:
            self._ensure_room()
            self.c.setFont(font, 10)
            self.c.drawString(LEFT + indent, self.y, line)
            self.y -= LINE_HEIGHT

    def gap(self):
        self.y -= LINE_HEIGHT // 2

    def finish(self):
        self._footer()
        self.c.save()


def report_filename(filename: str) -> str:
    stem = filename.rsplit(".", 1)[0] if "." in filename else filename
    return f"{stem}_report.pdf"


def render_report(document: Document) -> bytes:
    payload = document.analysis_payload
    if payload is None:
        raise NotAnalyzed(f"Document {document.id} has not been analyzed")

    buf = io.BytesIO()
    out = _ReportWriter(buf, document)

    out.heading("Document")
    out.text(f"File: {document.filename}")
    out.text(f"Type: {document.mime_type}")
    out.text(f"Size: {document.size} bytes")
    out.text(f"Uploaded: {document.created_at.strftime('%Y-%m-%d %H:%M UTC')}")
    out.text(f"Risk level: {(document.risk_level or payload.risk_level).upper()}", bold=True)
    out.text(f"Risk score: {payload.risk_score:.2f}")

    out.heading("Summary")
    out.text(payload.summary or "No summary provided.")

    out.heading("Risk Areas")
    if not payload.risk_areas:
        out.text("None identified.")
    for i, area in enumerate(payload.risk_areas, 1):
        out.text(f"{i}. {area.category or 'Uncategorized'} ({area.severity or 'n/a'})", bold=True)
        out.text(area.description, indent=15)
        if area.impact:
            out.text(f"Impact: {area.impact}", indent=15)
        out.gap()

    out.heading("Findings")
    if not payload.findings:
        out.text("None identified.")
    for i, finding in enumerate(payload.findings, 1):
        label = finding.type or "Finding"
        if finding.section:
            label += f" - {finding.section}"
        out.text(f"{i}. {label}", bold=True)
        out.text(finding.description, indent=15)
        if finding.recommendation:
            out.text(f"Suggested action: {finding.recommendation}", indent=15)
        out.gap()

    out.heading("Recommendations")
    if not payload.recommendations:
        out.text("None provided.")
    for i, rec in enumerate(payload.recommendations, 1):
        out.text(f"{i}. [{(rec.priority or 'n/a').upper()}] {rec.action}", bold=True)
        if rec.rationale:
            out.text(rec.rationale, indent=15)
        out.gap()

    out.finish()
    return buf.getvalue()
