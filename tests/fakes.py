"""
In-memory collaborator fakes for LedgerPilot tests.
"""
import asyncio
import json

from ledgerpilot.fraud import FRAUD_PROMPT
from ledgerpilot.models import DecisionCategory, DecisionRequest, Urgency
from ledgerpilot.services import InferenceError

FRAUD_PROMPT_PREFIX = FRAUD_PROMPT.split("\n", 1)[0]


def decision_json(action="generate_invoice", confidence=92, **extra) -> str:
    body = {"action": action, "rationale": "Standard domestic sale", "confidence": confidence,
            "riskFactors": [], "nextSteps": ["Send invoice"]}
    body.update(extra)
    return f"Here is my decision:\n{json.dumps(body)}\nLet me know if you need more."


class FakeInference:
    """Returns canned text. Fraud-scoring prompts and decision prompts are answered separately.

    A response may be a string, an exception instance (raised) or None
    (fraud prompts only: raise a transport error). A list of fraud replies
    is answered in order.
    """

    def __init__(self, decision=None, fraud=None, delay: float = 0.0):
        self.decision = decision if decision is not None else decision_json()
        self.fraud = fraud
        self.delay = delay
        self.calls = []

    async def invoke(self, model_id: str, instruction: str, max_tokens: int) -> str:
        self.calls.append({"model_id": model_id, "instruction": instruction, "max_tokens": max_tokens})
        if self.delay:
            await asyncio.sleep(self.delay)
        if instruction.startswith(FRAUD_PROMPT_PREFIX):
            response = self.fraud.pop(0) if isinstance(self.fraud, list) else self.fraud
        else:
            response = self.decision
        if response is None:
            raise InferenceError("transport", "no canned response")
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def decision_calls(self) -> list:
        return [c for c in self.calls if not c["instruction"].startswith(FRAUD_PROMPT_PREFIX)]

    @property
    def fraud_calls(self) -> list:
        return [c for c in self.calls if c["instruction"].startswith(FRAUD_PROMPT_PREFIX)]


class FakeRetrieval:
    def __init__(self, hits=None, error: Exception = None, delay: float = 0.0):
        self.hits = hits if hits is not None else []
        self.error = error
        self.delay = delay
        self.queries = []

    async def retrieve(self, query: str, top_k: int) -> list:
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.hits)[:top_k]


class FakeHistoryStore:
    def __init__(self, records=None, error: Exception = None, delay: float = 0.0):
        self.records = list(records or [])
        self.error = error
        self.delay = delay
        self.appended = []
        self.queries = 0

    async def append(self, record: dict) -> None:
        if self.error is not None:
            raise self.error
        self.appended.append(record)
        self.records.append(record)

    async def query(self, category: str, limit: int, most_recent_first: bool = True) -> list:
        self.queries += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        rows = [r for r in self.records if r.get("category") == category]
        rows.sort(key=lambda r: r.get("timestamp") or "", reverse=most_recent_first)
        return rows[:limit]


class FakeEvents:
    def __init__(self, error: Exception = None):
        self.error = error
        self.published = []

    async def publish(self, topic: str, payload: dict) -> None:
        if self.error is not None:
            raise self.error
        self.published.append((topic, payload))

    def topics(self) -> list:
        return [t for t, _ in self.published]


def history_record(category="invoice_generation", amount=1000.0, confidence=90, success=None,
                   risk_factors=(), timestamp="2026-01-01T00:00:00+00:00") -> dict:
    return {"category": category, "amount": amount, "confidence": confidence, "success": success,
            "riskFactors": list(risk_factors), "timestamp": timestamp}


def make_request(category="invoice_generation", urgency="medium", required_confidence=80, **payload):
    """Create a DecisionRequest from keyword payload fields."""
    return DecisionRequest(
        category=DecisionCategory.parse(category),
        payload=payload,
        urgency=Urgency.parse(urgency),
        required_confidence=required_confidence,
    )
