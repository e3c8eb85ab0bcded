"""
LedgerPilot — Proactive Insight Generator
Advisory strings attached to every decision, in check order.
"""
from ledgerpilot.config import (
    LOW_CONFIDENCE_THRESHOLD, RECENT_FAILURE_LIMIT, RECENT_WINDOW, LARGE_TRANSACTION_THRESHOLD,
)
from ledgerpilot.models import DecisionRequest, HistoricalAggregate


def generate_insights(request: DecisionRequest, decision, history: HistoricalAggregate) -> list:
    """decision is anything with a .confidence (ParsedDecision or Decision)."""
    insights = []

    if decision.confidence < LOW_CONFIDENCE_THRESHOLD:
        insights.append(f"Low confidence ({decision.confidence}%) - recommend additional verification")

    if history is not None and history.recent_failures > RECENT_FAILURE_LIMIT:
        rate = history.recent_failures / RECENT_WINDOW * 100
        insights.append(f"Similar transactions have {rate:.0f}% failure rate recently")

    amount = request.amount
    if amount is not None and amount > LARGE_TRANSACTION_THRESHOLD:
        insights.append("High-value transaction - fraud detection automatically enabled")

    if request.cross_border:
        insights.append("Cross-border detected - additional compliance checks recommended")

    if request.country:
        insights.append(f"Compliance: Ensure {request.country} tax regulations are applied")

    return insights
