"""
LedgerPilot — Domain Types

Decision requests, capability tiers, retrieved knowledge, historical
aggregates, parsed and final decisions, fraud assessments, learning records.

Categories are a closed set. Each category carries its complexity weight,
its heuristic fallback action and its knowledge query templates, so adding a
category means adding one member here and nothing else.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from ledgerpilot.config import (
    FAST_MODEL, BALANCED_MODEL, DEEP_MODEL, DEFAULT_ACTION,
)


# ============================================================
# CATEGORIES
# ============================================================
class DecisionCategory(Enum):
    """Business decision types with their per-category tables."""

    INVOICE_GENERATION = (
        "invoice_generation", 10, "generate_invoice",
        (("Tax regulations for {country}", "country"),
         ("Invoice requirements {country}", "country"),
         ("Tax rate for {productCategory}", "productCategory")),
    )
    FRAUD_CHECK = (
        "fraud_check", 30, "flag_for_review",
        (("Fraud indicators for transactions", None),
         ("Suspicious transaction patterns", None),
         ("{country} fraud regulations", "country")),
    )
    TAX_OPTIMIZATION = (
        "tax_optimization", 40, "apply_optimization",
        (("Tax deductions {country}", "country"),
         ("Tax optimization strategies {country}", "country")),
    )
    COMPLIANCE_VALIDATION = (
        "compliance_validation", 35, "approve",
        (("Compliance requirements {country}", "country"),
         ("Legal invoice format {country}", "country")),
    )

    def __new__(cls, key, weight, fallback_action, query_templates):
        obj = object.__new__(cls)
        obj._value_ = key
        obj.weight = weight
        obj.fallback_action = fallback_action
        obj.query_templates = query_templates
        return obj

    @classmethod
    def parse(cls, value) -> "DecisionCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown decision category: {value!r}") from None


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value) -> "Urgency":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "medium").strip().lower())
        except ValueError:
            raise ValueError(f"Unknown urgency: {value!r}") from None


class CapabilityTier(Enum):
    """Ordered inference tiers. Rank doubles as relative cost/latency."""

    FAST = ("fast", 1)
    BALANCED = ("balanced", 2)
    DEEP = ("deep", 3)

    def __new__(cls, key, rank):
        obj = object.__new__(cls)
        obj._value_ = key
        obj.rank = rank
        return obj

    @property
    def model_id(self) -> str:
        return {"fast": FAST_MODEL, "balanced": BALANCED_MODEL, "deep": DEEP_MODEL}[self.value]


class RiskTier(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


# ============================================================
# UTILITIES
# ============================================================
def _n(val, default=0):
    """Safe numeric conversion: None/empty → default, strings → float."""
    if val is None or val == "" or isinstance(val, bool):
        return float(default)
    try:
        return float(val)
    except (ValueError, TypeError):
        return float(default)


def _clamp(value, low=0, high=100) -> int:
    return int(max(low, min(high, value)))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================
# REQUEST
# ============================================================
@dataclass(frozen=True)
class DecisionRequest:
    category: DecisionCategory
    payload: dict = field(default_factory=dict)
    urgency: Urgency = Urgency.MEDIUM
    required_confidence: int = 80

    @classmethod
    def from_dict(cls, data: dict) -> "DecisionRequest":
        """Build a request from its JSON form. Raises ValueError on bad input."""
        if not isinstance(data, dict):
            raise ValueError("Decision request must be a JSON object")
        category = DecisionCategory.parse(data.get("category") or data.get("type"))
        payload = data.get("payload", data.get("data")) or {}
        if not isinstance(payload, dict):
            raise ValueError("payload must be a JSON object")
        required = data.get("requiredConfidence", data.get("confidence_required", 80))
        return cls(
            category=category,
            payload=dict(payload),
            urgency=Urgency.parse(data.get("urgency")),
            required_confidence=_clamp(_n(required, 80)),
        )

    def with_payload(self, payload: dict) -> "DecisionRequest":
        return DecisionRequest(self.category, payload, self.urgency, self.required_confidence)

    @property
    def amount(self) -> Optional[float]:
        raw = self.payload.get("amount")
        if raw is None or raw == "":
            return None
        value = _n(raw, default=float("nan"))
        return None if value != value else value

    @property
    def country(self) -> Optional[str]:
        country = self.payload.get("country")
        return str(country) if country else None

    @property
    def cross_border(self) -> bool:
        return bool(self.payload.get("crossBorder"))

    @property
    def customer_history(self) -> Optional[dict]:
        history = self.payload.get("customerHistory")
        return history if isinstance(history, dict) else None

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "payload": self.payload,
            "urgency": self.urgency.value,
            "requiredConfidence": self.required_confidence,
        }


# ============================================================
# DERIVED VALUES
# ============================================================
@dataclass
class ComplexityScore:
    value: int
    reasons: list = field(default_factory=list)


@dataclass(frozen=True)
class TierSelection:
    tier: CapabilityTier
    extended: bool
    model_id: str
    timeout_s: float
    max_tokens: int

    @property
    def label(self) -> str:
        return f"{self.tier.value}-extended" if self.extended else self.tier.value


@dataclass(frozen=True)
class KnowledgeSnippet:
    content: str
    score: float
    source: str
    query: str


@dataclass
class KnowledgeResult:
    queries: list = field(default_factory=list)
    snippets: list = field(default_factory=list)

    @classmethod
    def empty(cls) -> "KnowledgeResult":
        return cls([], [])


@dataclass
class HistoricalAggregate:
    similar_case_count: int = 0
    average_confidence: float = 0.0
    success_rate: float = 1.0
    recurring_issues: list = field(default_factory=list)
    recent_failures: int = 0

    @classmethod
    def neutral(cls) -> "HistoricalAggregate":
        return cls(0, 0.0, 1.0, [], 0)

    def to_dict(self) -> dict:
        return {
            "similarCases": self.similar_case_count,
            "averageConfidence": round(self.average_confidence, 4),
            "successRate": round(self.success_rate, 4),
            "recurringIssues": list(self.recurring_issues),
            "recentFailures": self.recent_failures,
        }


@dataclass
class ParsedDecision:
    action: str
    rationale: str
    confidence: int
    risk_factors: list = field(default_factory=list)
    next_steps: list = field(default_factory=list)
    strategy: str = "structured"


# ============================================================
# FRAUD
# ============================================================
@dataclass
class FraudAssessment:
    score: int
    risk_tier: RiskTier
    reasons: list = field(default_factory=list)
    checks_performed: int = 0
    rule_score: int = 0
    model_score: int = 0
    escalate: bool = False

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "riskTier": self.risk_tier.value,
            "reasons": list(self.reasons),
            "checksPerformed": self.checks_performed,
            "ruleScore": self.rule_score,
            "modelScore": self.model_score,
            "escalate": self.escalate,
        }


# ============================================================
# DECISION
# ============================================================
@dataclass
class Decision:
    action: str
    rationale: str
    confidence: int
    model_used: str
    latency_ms: int = 0
    insights: list = field(default_factory=list)
    next_steps: list = field(default_factory=list)
    risk_factors: list = field(default_factory=list)
    knowledge_queries: int = 0
    tier: str = ""
    complexity: Optional[ComplexityScore] = None
    parse_strategy: str = "static"
    escalated: bool = False
    fraud: Optional[FraudAssessment] = None
    enhancements: Optional[dict] = None

    def to_dict(self) -> dict:
        out = {
            "action": self.action or DEFAULT_ACTION,
            "rationale": self.rationale,
            "confidence": self.confidence,
            "modelUsed": self.model_used,
            "latencyMs": self.latency_ms,
            "insights": list(self.insights),
            "nextSteps": list(self.next_steps),
            "riskFactors": list(self.risk_factors),
            "knowledgeQueries": self.knowledge_queries,
            "tier": self.tier,
            "parseStrategy": self.parse_strategy,
            "escalated": self.escalated,
        }
        if self.complexity is not None:
            out["complexity"] = {"score": self.complexity.value, "reasons": list(self.complexity.reasons)}
        if self.fraud is not None:
            out["fraud"] = self.fraud.to_dict()
        if self.enhancements is not None:
            out["enhancements"] = self.enhancements
        return out


# ============================================================
# LEARNING RECORD
# ============================================================
@dataclass(frozen=True)
class LearningRecord:
    category: str
    payload: dict
    decision: dict
    amount: Optional[float] = None
    confidence: int = 0
    risk_factors: tuple = ()
    success: Optional[bool] = None
    tags: tuple = ()
    id: str = field(default_factory=lambda: f"decision-{uuid.uuid4().hex[:12]}")
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "category": self.category,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "decision": self.decision,
            "amount": self.amount,
            "confidence": self.confidence,
            "riskFactors": list(self.risk_factors),
            "success": self.success,
            "tags": list(self.tags),
        }
