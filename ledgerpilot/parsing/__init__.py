"""
LedgerPilot — Decision Parser

Three-level ladder, each level usable on its own:

  1. StructuredJsonStrategy  — first balanced {...} object in the text
  2. HeuristicTextStrategy   — category fallback action + "confidence: NN"
  3. static_fallback()       — no text at all; manual review at confidence 50

The parser never raises.
"""
import json
import re
from typing import Optional

from loguru import logger

from ledgerpilot.config import (
    HEURISTIC_CONFIDENCE, FAILED_CONFIDENCE, RATIONALE_MAX_CHARS, DEFAULT_ACTION,
)
from ledgerpilot.models import DecisionRequest, ParsedDecision, _clamp, _n

CONFIDENCE_PATTERN = re.compile(r"confidence[:\s]+(\d+)", re.IGNORECASE)

HEURISTIC_NEXT_STEPS = ["Review AI decision", "Validate with human if needed"]
STATIC_NEXT_STEPS = ["Escalate to human operator", "Gather more information"]
STATIC_RATIONALE = "Automatic decision failed, human review recommended"


def find_json_object(text: str) -> Optional[str]:
    """Return the first balanced {...} substring, ignoring braces inside strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
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
                    return text[start:i + 1]
        # Unbalanced from here; try the next opening brace
        start = text.find("{", start + 1)
    return None


def _str_list(value) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return [str(value)] if str(value).strip() else []


def _confidence(value, default=HEURISTIC_CONFIDENCE) -> int:
    if value is None:
        return default
    return _clamp(round(_n(value, default)))


class StructuredJsonStrategy:
    name = "structured"

    def extract(self, raw: str) -> Optional[dict]:
        """First balanced JSON object in raw as a dict, or None."""
        if not raw:
            return None
        candidate = find_json_object(raw)
        if candidate is None:
            return None
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def parse(self, raw: str) -> Optional[ParsedDecision]:
        data = self.extract(raw)
        if data is None:
            return None
        action = str(data.get("action") or "").strip()
        if not action:
            return None
        rationale = data.get("rationale", data.get("reasoning"))
        return ParsedDecision(
            action=action,
            rationale=str(rationale or ""),
            confidence=_confidence(data.get("confidence")),
            risk_factors=_str_list(data.get("riskFactors", data.get("risk_factors"))),
            next_steps=_str_list(data.get("nextSteps", data.get("next_steps"))),
            strategy=self.name,
        )


class HeuristicTextStrategy:
    name = "heuristic"

    def parse(self, raw: str, request: DecisionRequest) -> ParsedDecision:
        match = CONFIDENCE_PATTERN.search(raw or "")
        confidence = _clamp(int(match.group(1))) if match else HEURISTIC_CONFIDENCE
        action = request.category.fallback_action if request is not None else DEFAULT_ACTION
        return ParsedDecision(
            action=action or DEFAULT_ACTION,
            rationale=(raw or "")[:RATIONALE_MAX_CHARS],
            confidence=confidence,
            risk_factors=[],
            next_steps=list(HEURISTIC_NEXT_STEPS),
            strategy=self.name,
        )


def static_fallback() -> ParsedDecision:
    return ParsedDecision(
        action=DEFAULT_ACTION,
        rationale=STATIC_RATIONALE,
        confidence=FAILED_CONFIDENCE,
        risk_factors=[],
        next_steps=list(STATIC_NEXT_STEPS),
        strategy="static",
    )


class DecisionParser:
    def __init__(self, structured: StructuredJsonStrategy = None, heuristic: HeuristicTextStrategy = None):
        self.structured = structured or StructuredJsonStrategy()
        self.heuristic = heuristic or HeuristicTextStrategy()

    def parse(self, raw: Optional[str], request: DecisionRequest) -> ParsedDecision:
        if raw is None:
            logger.warning("[Parser] No model output, using static fallback")
            return static_fallback()
        parsed = self.structured.parse(raw)
        if parsed is not None:
            return parsed
        logger.info("[Parser] No usable JSON decision, falling back to heuristic text parse")
        return self.heuristic.parse(raw, request)
