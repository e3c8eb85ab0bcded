"""
LedgerPilot — History Analyzer

Reads past decisions of the same category from the learning store and
summarises the ones similar to the current request.

Similarity: when the request carries an amount, a past case is similar if
its amount is within 20% of it; otherwise every past case counts.

A missing or failing store yields a neutral aggregate (no cases, success
rate 1.0) so that lack of history never blocks or darkens a decision.
"""
import asyncio

from loguru import logger

from ledgerpilot.config import (
    HISTORY_LIMIT, HISTORY_TIMEOUT_S, SIMILAR_AMOUNT_PCT, SUCCESS_CONFIDENCE,
    MAX_RECURRING_ISSUES, RECENT_WINDOW,
)
from ledgerpilot.models import DecisionCategory, HistoricalAggregate, _n


def _record_risk_factors(record: dict) -> list:
    factors = record.get("riskFactors")
    if factors is None:
        decision = record.get("decision") or {}
        factors = decision.get("riskFactors") or decision.get("risk_factors") or []
    return [str(f) for f in factors if f]


def is_similar(record: dict, amount) -> bool:
    if not amount:
        return True
    return abs(_n(record.get("amount")) - amount) / abs(amount) < SIMILAR_AMOUNT_PCT


def aggregate(records: list, amount=None) -> HistoricalAggregate:
    """Summarise records (most recent first). Pure."""
    similar = [r for r in records if is_similar(r, amount)]

    confidences = [_n(r.get("confidence")) for r in similar]
    avg_confidence = (sum(confidences) / len(confidences) / 100) if confidences else 0.0
    success_rate = (sum(1 for c in confidences if c > SUCCESS_CONFIDENCE) / len(confidences)) if confidences else 1.0

    issues = []
    for r in similar:
        for f in _record_risk_factors(r):
            if f not in issues:
                issues.append(f)
            if len(issues) >= MAX_RECURRING_ISSUES:
                break
        if len(issues) >= MAX_RECURRING_ISSUES:
            break

    recent_failures = sum(1 for r in records[:RECENT_WINDOW] if r.get("success") is False)

    return HistoricalAggregate(
        similar_case_count=len(similar),
        average_confidence=avg_confidence,
        success_rate=success_rate,
        recurring_issues=issues,
        recent_failures=recent_failures,
    )


class HistoryAnalyzer:
    def __init__(self, store, limit: int = HISTORY_LIMIT, timeout_s: float = HISTORY_TIMEOUT_S):
        self.store = store
        self.limit = limit
        self.timeout_s = timeout_s

    async def snapshot(self, category: DecisionCategory) -> list:
        """Most recent same-category records, empty when the store is missing, failing or slow."""
        if self.store is None:
            return []
        try:
            records = await asyncio.wait_for(
                self.store.query(category.value, self.limit, most_recent_first=True), self.timeout_s)
        except Exception as e:
            logger.warning(f"[History] Store query failed ({type(e).__name__}: {e}), using neutral history")
            return []
        return list(records or [])[:self.limit]

    async def analyze(self, category: DecisionCategory, amount=None) -> HistoricalAggregate:
        result = aggregate(await self.snapshot(category), amount)
        logger.info(f"[History] {result.similar_case_count} similar cases, "
                    f"{result.success_rate * 100:.1f}% success rate")
        return result

    async def precedent_count(self, category: DecisionCategory) -> int:
        """Number of same-category records on file (0 when the store is unavailable)."""
        return len(await self.snapshot(category))
