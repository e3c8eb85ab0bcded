"""
LedgerPilot — Collaborator Contracts

The engine only talks to the outside world through these interfaces. Concrete
implementations live next to their concern (inference, rag_engine, db,
enrichment) and are wired together by the server; tests pass fakes.
"""
from typing import Any, Optional, Protocol

from loguru import logger


class InferenceError(Exception):
    """Typed inference failure. kind is one of timeout | transport | malformed."""

    KINDS = ("timeout", "transport", "malformed")

    def __init__(self, kind: str, message: str = ""):
        if kind not in self.KINDS:
            kind = "transport"
        self.kind = kind
        super().__init__(f"{kind}: {message}" if message else kind)


class InferenceService(Protocol):
    async def invoke(self, model_id: str, instruction: str, max_tokens: int) -> str: ...


class RetrievalService(Protocol):
    async def retrieve(self, query: str, top_k: int) -> list: ...


class HistoryStore(Protocol):
    async def append(self, record: dict) -> None: ...

    async def query(self, category: str, limit: int, most_recent_first: bool = True) -> list: ...


class EventSink(Protocol):
    async def publish(self, topic: str, payload: dict) -> None: ...


class DocumentExtractor(Protocol):
    async def extract(self, document_ref: str) -> Optional[dict]: ...


class PredictionService(Protocol):
    async def categorize(self, data: dict) -> dict: ...

    async def predict_payment(self, data: dict, customer_history: dict) -> dict: ...

    async def validate_amount(self, data: dict, invoices: list) -> dict: ...


# Event topics
TOPIC_HUMAN_REVIEW = "HumanReviewRequired"
TOPIC_INVOICE_NOTIFICATION = "InvoiceNotificationSent"


async def publish_safely(sink: Optional[EventSink], topic: str, payload: Any) -> bool:
    """Publish to the sink; failures are logged and reported as False."""
    if sink is None:
        return False
    try:
        await sink.publish(topic, payload)
        return True
    except Exception as e:
        logger.warning(f"[Events] publish {topic} failed: {type(e).__name__}: {e}")
        return False
