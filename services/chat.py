from models.document import ANALYZED, Document
from services.errors import NotAnalyzed


def _risk_areas_answer(document: Document) -> str:
    areas = document.analysis_payload.risk_areas
    if not areas:
        return f"No specific risk areas were flagged in {document.filename}."
    listed = "; ".join(f"{a.category or 'General'} ({a.severity or 'n/a'}): {a.description}" for a in areas[:3])
    return f"{document.filename} has {len(areas)} risk area(s). The main ones are: {listed}"


def _recommendations_answer(document: Document) -> str:
    recs = document.analysis_payload.recommendations
    if not recs:
        return f"No recommendations were produced for {document.filename}."
    listed = "; ".join(f"[{r.priority or 'n/a'}] {r.action}" for r in recs[:3])
    return f"Recommended next steps for {document.filename}: {listed}"


def _findings_answer(document: Document) -> str:
    findings = document.analysis_payload.findings
    if not findings:
        return f"No problematic clauses were identified in {document.filename}."
    listed = "; ".join(
        f"{f.section + ': ' if f.section else ''}{f.description}" for f in findings[:3]
    )
    return f"Notable findings in {document.filename}: {listed}"


def _summary_answer(document: Document) -> str:
    return document.analysis_payload.summary or f"No summary is available for {document.filename}."


# First matching keyword wins.
KEYWORD_ANSWERS = [
    (("recommend", "should i", "next step", "mitigate"), _recommendations_answer),
    (("finding", "clause", "section", "term"), _findings_answer),
    (("risk", "danger", "liabil", "exposure"), _risk_areas_answer),
    (("summary", "summarize", "overview", "about"), _summary_answer),
]


def answer_question(document: Document, question: str) -> str:
    """Canned keyword-matched reply grounded in the stored analysis."""
    if document.status != ANALYZED or document.analysis_payload is None:
        raise NotAnalyzed("Chat is available once analysis has completed")
    lowered = question.lower()
    for keywords, build in KEYWORD_ANSWERS:
        if any(k in lowered for k in keywords):
            return build(document)
    return (
        f"I understand you're asking about \"{question}\". Based on my analysis of {document.filename}, "
        f"the document shows {document.risk_level} risk level with specific areas of concern that I can "
        "elaborate on. Would you like me to explain any specific findings in more detail?"
    )
