"""
LedgerPilot — Learning Store Writer

Appends each final decision, with its originating request, to the history
store. Reports the outcome as a WriteResult instead of raising; the caller
decides whether to wait for it.
"""
import asyncio
import copy
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ledgerpilot.models import Decision, DecisionRequest, LearningRecord

HUMAN_REVIEW_TAG = "human_review"


@dataclass(frozen=True)
class WriteResult:
    ok: bool
    record_id: Optional[str] = None
    error: Optional[str] = None


def build_record(request: DecisionRequest, decision: Decision) -> LearningRecord:
    tags = [request.category.value, decision.tier or "untiered"]
    if decision.escalated:
        tags.append(HUMAN_REVIEW_TAG)
    return LearningRecord(
        category=request.category.value,
        payload=copy.deepcopy(request.payload),
        decision=decision.to_dict(),
        amount=request.amount,
        confidence=decision.confidence,
        risk_factors=tuple(decision.risk_factors),
        tags=tuple(tags),
    )


class LearningWriter:
    def __init__(self, store):
        self.store = store
        self._pending = set()

    async def write(self, request: DecisionRequest, decision: Decision) -> WriteResult:
        if self.store is None:
            return WriteResult(ok=False, error="no history store configured")
        try:
            record = build_record(request, decision)
            await self.store.append(record.to_dict())
        except Exception as e:
            return WriteResult(ok=False, error=f"{type(e).__name__}: {e}")
        return WriteResult(ok=True, record_id=record.id)

    async def write_logged(self, request: DecisionRequest, decision: Decision) -> WriteResult:
        result = await self.write(request, decision)
        if result.ok:
            logger.info(f"[Learning] Stored {result.record_id} for future learning")
        else:
            logger.warning(f"[Learning] Failed to store decision: {result.error}")
        return result

    def submit(self, request: DecisionRequest, decision: Decision) -> asyncio.Task:
        """Schedule the write on the running loop without waiting for it."""
        task = asyncio.ensure_future(self.write_logged(request, decision))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self):
        """Wait for every background write scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
