from datetime import datetime
from typing import Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PENDING = "pending"
ANALYZING = "analyzing"
ANALYZED = "analyzed"
ERROR = "error"

DocumentStatus = Literal["pending", "analyzing", "analyzed", "error"]
RiskLevel = Literal["low", "medium", "high"]

# Allowed status moves. "error" and "analyzed" are terminal; a retry would be an
# ERROR -> ANALYZING edge here.
TRANSITIONS: Dict[str, Set[str]] = {
    PENDING: {ANALYZING, ERROR},
    ANALYZING: {ANALYZED, ERROR},
    ANALYZED: set(),
    ERROR: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def sources_for(target: str) -> Set[str]:
    """Statuses from which ``target`` may be reached."""
    return {src for src, targets in TRANSITIONS.items() if target in targets}


def derive_risk_level(score: float) -> str:
    if score >= 0.7:
        return "high"
    if score >= 0.4:
        return "medium"
    return "low"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RiskArea(_CamelModel):
    category: str = ""
    severity: str = ""
    description: str = ""
    impact: str = ""


class Finding(_CamelModel):
    type: str = ""
    section: str = ""
    description: str = ""
    recommendation: str = ""


class Recommendation(_CamelModel):
    priority: str = ""
    action: str = ""
    rationale: str = ""


class AnalysisPayload(_CamelModel):
    risk_score: float = Field(ge=0.0, le=1.0)
    risk_level: RiskLevel
    summary: str = ""
    risk_areas: List[RiskArea] = Field(default_factory=list)
    findings: List[Finding] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)


class Document(BaseModel):
    id: str
    owner_id: int
    filename: str
    size: int
    mime_type: str
    storage_key: str
    status: DocumentStatus = PENDING
    risk_level: Optional[RiskLevel] = None
    risk_score: Optional[float] = None
    analysis_payload: Optional[AnalysisPayload] = None
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class DocumentListing(BaseModel):
    documents: List[Document] = Field(default_factory=list)
    current: Optional[Document] = None
    recent: List[Document] = Field(default_factory=list)

    @classmethod
    def from_documents(cls, documents: List[Document]) -> "DocumentListing":
        return cls(
            documents=documents,
            current=documents[0] if documents else None,
            recent=documents[1:],
        )


class ChangeEvent(BaseModel):
    type: Literal["insert", "update", "delete"]
    document_id: str
    owner_id: int
    status: Optional[DocumentStatus] = None
    at: datetime
