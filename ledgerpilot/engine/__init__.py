"""
LedgerPilot — Autonomous Decision Engine

Pipeline per request:
  1. Knowledge retrieval ‖ history snapshot ‖ fraud assessment (concurrent)
  2. Complexity score (with precedent discount from the same snapshot)
  3. Capability tier selection
  4. Prompt composition
  5. Inference at the selected tier
  6. Parse (structured → heuristic → static)
  7. Proactive insights
  8. Fraud gate (hold for human review above the escalation threshold)
  9. Learning record write (background unless AWAIT_PERSISTENCE)

Every collaborator is injected. make_decision() always returns a Decision.
"""
import asyncio
import time as _time

from loguru import logger

from ledgerpilot.config import AWAIT_PERSISTENCE, ESCALATION_ACTION, HISTORY_TIMEOUT_S, RETRIEVAL_TIMEOUT_S
from ledgerpilot.enrichment import Enricher
from ledgerpilot.fraud import FraudAssessor
from ledgerpilot.history import HistoryAnalyzer, aggregate
from ledgerpilot.inference import InferenceInvoker
from ledgerpilot.insights import generate_insights
from ledgerpilot.knowledge import KnowledgeRetriever
from ledgerpilot.learning import LearningWriter
from ledgerpilot.models import (
    Decision, DecisionCategory, DecisionRequest, FraudAssessment, RiskTier,
)
from ledgerpilot.parsing import DecisionParser, static_fallback
from ledgerpilot.prompts import compose_prompt
from ledgerpilot.services import InferenceError, TOPIC_HUMAN_REVIEW, publish_safely
from ledgerpilot.strategy import score_complexity, select_tier

ESCALATION_NEXT_STEPS = [
    "Transaction held for manual review",
    "Customer verification required",
    "Escalated to fraud team",
]


def _elapsed_ms(t0: float) -> int:
    return round((_time.time() - t0) * 1000)


async def _given(value):
    return value


class DecisionEngine:
    def __init__(self, inference=None, retrieval=None, history_store=None, events=None,
                 extractor=None, predictions=None, await_persistence: bool = AWAIT_PERSISTENCE,
                 retrieval_timeout_s: float = RETRIEVAL_TIMEOUT_S, history_timeout_s: float = HISTORY_TIMEOUT_S):
        self.invoker = InferenceInvoker(inference)
        self.retriever = KnowledgeRetriever(retrieval, timeout_s=retrieval_timeout_s)
        self.history = HistoryAnalyzer(history_store, timeout_s=history_timeout_s)
        self.fraud = FraudAssessor(self.invoker)
        self.parser = DecisionParser()
        self.writer = LearningWriter(history_store)
        self.enricher = Enricher(extractor, predictions)
        self.events = events
        self.await_persistence = await_persistence

    # ============================================================
    # PUBLIC API
    # ============================================================
    async def make_decision(self, request: DecisionRequest, fraud: FraudAssessment = None) -> Decision:
        """Decide on a request. A precomputed fraud assessment replaces the engine's own pass."""
        t0 = _time.time()
        logger.info(f"[Engine] Decision requested: {request.category.value} (urgency={request.urgency.value})")
        try:
            decision = await self._decide(request, fraud)
        except Exception as e:
            logger.exception(f"[Engine] Pipeline error, returning manual review: {type(e).__name__}: {e}")
            decision = self._fallback_decision()
        decision.latency_ms = _elapsed_ms(t0)
        logger.info(f"[Engine] {decision.action} @ {decision.confidence}% via {decision.tier or 'fallback'} "
                    f"in {decision.latency_ms}ms")
        return decision

    async def make_enhanced_decision(self, request: DecisionRequest, document_ref: str = None,
                                     customer_history: dict = None, fraud: FraudAssessment = None) -> Decision:
        """Enrich with document extraction and ML predictions, then decide."""
        t0 = _time.time()
        document_ref = document_ref or request.payload.get("documentRef")
        try:
            enriched, enhancements = await self.enricher.enrich(request, document_ref, customer_history)
        except Exception as e:
            logger.warning(f"[Engine] Enrichment failed, deciding on original payload: {type(e).__name__}: {e}")
            enriched, enhancements = request, {"documentExtracted": False, "predictionsUsed": False,
                                               "extractionConfidence": None, "predictions": None}
        decision = await self.make_decision(enriched, fraud)
        decision.enhancements = enhancements
        decision.latency_ms = _elapsed_ms(t0)
        return decision

    async def assess_fraud(self, request: DecisionRequest) -> FraudAssessment:
        try:
            return await self.fraud.assess(request)
        except Exception as e:
            logger.exception(f"[Engine] Fraud assessment error: {type(e).__name__}: {e}")
            return FraudAssessment(score=0, risk_tier=RiskTier.LOW, reasons=[], checks_performed=0)

    async def flush(self):
        """Wait for background learning writes."""
        await self.writer.drain()

    # ============================================================
    # PIPELINE
    # ============================================================
    def _needs_fraud(self, request: DecisionRequest) -> bool:
        return request.category == DecisionCategory.FRAUD_CHECK or request.customer_history is not None

    def _fraud_pass(self, request: DecisionRequest, fraud: FraudAssessment = None):
        if fraud is not None:
            return _given(fraud)
        if self._needs_fraud(request):
            return self.fraud.assess(request)
        return _given(None)

    async def _decide(self, request: DecisionRequest, fraud: FraudAssessment = None) -> Decision:
        # One history read serves both the precedent discount and the aggregate
        knowledge, records, fraud = await asyncio.gather(
            self.retriever.retrieve(request),
            self.history.snapshot(request.category),
            self._fraud_pass(request, fraud),
        )
        history = aggregate(records, request.amount)
        logger.info(f"[History] {history.similar_case_count} similar of {len(records)} on file")

        complexity = score_complexity(request, len(records))
        selection = select_tier(complexity.value, request.urgency, request.required_confidence)
        logger.info(f"[Strategy] Complexity {complexity.value}/100 → {selection.label} ({selection.model_id})")

        prompt = compose_prompt(request, knowledge, history, fraud)
        raw = None
        try:
            raw = await self.invoker.invoke(selection, prompt)
        except InferenceError as e:
            logger.warning(f"[Engine] Inference failed ({e.kind}): {e}")

        parsed = self.parser.parse(raw, request)
        decision = Decision(
            action=parsed.action,
            rationale=parsed.rationale,
            confidence=parsed.confidence,
            model_used=selection.model_id,
            insights=generate_insights(request, parsed, history),
            next_steps=parsed.next_steps,
            risk_factors=parsed.risk_factors,
            knowledge_queries=len(knowledge.snippets),
            tier=selection.label,
            complexity=complexity,
            parse_strategy=parsed.strategy,
            fraud=fraud,
        )

        if fraud is not None and fraud.escalate:
            self._hold_for_review(decision, fraud)
            await publish_safely(self.events, TOPIC_HUMAN_REVIEW, {
                "request": request.to_dict(),
                "fraud": fraud.to_dict(),
                "action": decision.action,
            })

        await self._persist(request, decision)
        return decision

    def _hold_for_review(self, decision: Decision, fraud: FraudAssessment):
        logger.warning(f"[Fraud] HOLD: score {fraud.score}/100 exceeds escalation threshold")
        reasons = ", ".join(fraud.reasons) or "fraud score above escalation threshold"
        decision.rationale = f"High fraud risk detected: {reasons}. {decision.rationale}".strip()
        decision.action = ESCALATION_ACTION
        decision.confidence = fraud.score
        decision.next_steps = list(ESCALATION_NEXT_STEPS)
        decision.risk_factors = fraud.reasons + [r for r in decision.risk_factors if r not in fraud.reasons]
        decision.insights.append(f"Transaction held for human review (fraud score {fraud.score}/100)")
        decision.escalated = True

    async def _persist(self, request: DecisionRequest, decision: Decision):
        if self.await_persistence:
            await self.writer.write_logged(request, decision)
        else:
            self.writer.submit(request, decision)

    def _fallback_decision(self) -> Decision:
        parsed = static_fallback()
        return Decision(action=parsed.action, rationale=parsed.rationale, confidence=parsed.confidence,
                        model_used="none", next_steps=parsed.next_steps, parse_strategy=parsed.strategy)
