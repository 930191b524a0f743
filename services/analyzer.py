"""
Risk analysis through the Gemini ``generateContent`` API.

The document travels inline (base64) next to a fixed instruction prompt. The model
answers in free text that should contain one JSON object; ``parse_analysis_text``
pulls that object out and normalises it into an ``AnalysisPayload``, degrading
to a low-confidence payload instead of failing when the text cannot be parsed.
"""

import base64
import json
import logging
import os
from typing import Any, Dict, List, Optional, Type

import requests
from pydantic import BaseModel

from models.document import (
    AnalysisPayload,
    Finding,
    Recommendation,
    RiskArea,
    derive_risk_level,
)
from services.errors import ProviderError, TooLarge

logger = logging.getLogger("services.analyzer")

DEFAULT_API_URL = "https://generativelanguage.googleapis.com/v1beta/models"
FALLBACK_SUMMARY_CHARS = 500

ANALYSIS_PROMPT = """
Analyze this legal document for potential risks and compliance issues. Provide:

1. **Risk Assessment** (0-1 scale where 1 is highest risk):
   - Overall risk score
   - Risk level classification (low/medium/high)

2. **Key Risk Areas**:
   - Contractual risks
   - Compliance issues
   - Legal liabilities
   - Financial exposures

3. **Specific Findings**:
   - Problematic clauses or sections
   - Missing standard protections
   - Unusual terms or conditions

4. **Recommendations**:
   - Actions to mitigate risks
   - Suggested modifications
   - Additional reviews needed

Please provide a comprehensive analysis in JSON format with the following structure:
{
  "riskScore": <number between 0 and 1>,
  "riskLevel": "<low|medium|high>",
  "summary": "<brief summary of document and overall assessment>",
  "riskAreas": [
    {
      "category": "<risk category>",
      "severity": "<low|medium|high>",
      "description": "<detailed description>",
      "impact": "<potential impact>"
    }
  ],
  "findings": [
    {
      "type": "<finding type>",
      "section": "<document section if applicable>",
      "description": "<detailed finding>",
      "recommendation": "<suggested action>"
    }
  ],
  "recommendations": [
    {
      "priority": "<high|medium|low>",
      "action": "<recommended action>",
      "rationale": "<reason for recommendation>"
    }
  ]
}
"""


def max_upload_bytes() -> int:
    try:
        return int(os.getenv("MAX_UPLOAD_MB", "10")) * 1024 * 1024
    except ValueError:
        return 10 * 1024 * 1024


def provider_timeout_seconds() -> float:
    try:
        return float(os.getenv("GEMINI_TIMEOUT_SECONDS", "120"))
    except ValueError:
        return 120.0


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Return the first balanced ``{...}`` block in ``text`` that parses as a JSON object.
    Braces inside JSON strings are ignored while matching.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            ch = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    try:
                        candidate = json.loads(text[start:pos + 1])
                    except json.JSONDecodeError:
                        break
                    if isinstance(candidate, dict):
                        return candidate
                    break
        start = text.find("{", start + 1)
    return None


def _coerce_score(value: Any) -> float:
    if isinstance(value, bool):
        return 0.5
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.5
    if score != score:  # NaN
        return 0.5
    return min(1.0, max(0.0, score))


def _coerce_items(raw: Any, model: Type[BaseModel]) -> List[BaseModel]:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        cleaned = {k: str(v) for k, v in entry.items() if v is not None}
        items.append(model.model_validate(cleaned))
    return items


def fallback_payload(text: str) -> AnalysisPayload:
    return AnalysisPayload(
        risk_score=0.5,
        risk_level="medium",
        summary=text[:FALLBACK_SUMMARY_CHARS] + "...",
    )


def parse_analysis_text(text: str) -> AnalysisPayload:
    data = extract_json_object(text or "")
    if data is None:
        logger.warning("analysis_unparseable", extra={"chars": len(text or "")})
        return fallback_payload(text or "")

    score = _coerce_score(data.get("riskScore"))
    summary = data.get("summary")
    return AnalysisPayload(
        risk_score=score,
        risk_level=derive_risk_level(score),
        summary=summary if isinstance(summary, str) else "",
        risk_areas=_coerce_items(data.get("riskAreas"), RiskArea),
        findings=_coerce_items(data.get("findings"), Finding),
        recommendations=_coerce_items(data.get("recommendations"), Recommendation),
    )


class GeminiAnalyzer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else os.getenv("GEMINI_API_KEY")
        self.model = model or os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
        self.api_url = (api_url or os.getenv("GEMINI_API_URL", DEFAULT_API_URL)).rstrip("/")
        self.timeout = timeout if timeout is not None else provider_timeout_seconds()

    def _request_body(self, blob: bytes, mime_type: str) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": ANALYSIS_PROMPT},
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": base64.b64encode(blob).decode("ascii"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": {
                "temperature": 1,
                "topK": 1,
                "topP": 1,
                "maxOutputTokens": 4096,
            },
        }

    def analyze(self, blob: bytes, mime_type: str) -> AnalysisPayload:
        limit = max_upload_bytes()
        if len(blob) > limit:
            raise TooLarge(f"File size exceeds {limit // (1024 * 1024)}MB limit")
        if not self.api_key:
            raise ProviderError("GEMINI_API_KEY is not configured")

        url = f"{self.api_url}/{self.model}:generateContent"
        try:
            response = requests.post(
                url,
                params={"key": self.api_key},
                json=self._request_body(blob, mime_type),
                timeout=self.timeout,
            )
        except requests.RequestException as err:
            logger.error("provider_unreachable", extra={"error": str(err)})
            raise ProviderError(f"Analysis provider unreachable: {err}") from err

        if response.status_code != 200:
            logger.error("provider_error", extra={"status_code": response.status_code, "error": response.text[:500]})
            raise ProviderError(f"Analysis provider error: {response.status_code}")

        try:
            text = response.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as err:
            raise ProviderError("No analysis text received from provider") from err
        if not isinstance(text, str) or not text:
            raise ProviderError("No analysis text received from provider")

        logger.info("provider_responded", extra={"chars": len(text)})
        return parse_analysis_text(text)


def get_analyzer() -> GeminiAnalyzer:
    return GeminiAnalyzer()
