"""
LedgerPilot — Prompt Composer

Renders the decision instruction from the request, retrieved knowledge,
historical aggregate and (when assessed) the fraud signals.

Output is a pure function of its inputs: payload JSON uses sorted keys, so
identical inputs render byte-identical prompts.
"""
import json

from ledgerpilot.config import SNIPPET_MAX_CHARS
from ledgerpilot.models import DecisionRequest, FraudAssessment, HistoricalAggregate, KnowledgeResult


OUTPUT_CONTRACT = """Respond ONLY with a JSON object:
{
  "action": "specific action to take",
  "rationale": "detailed explanation of your decision logic",
  "confidence": 0-100,
  "riskFactors": ["list any risks you identify"],
  "nextSteps": ["recommended follow-up actions"]
}"""


def _snippet(content: str) -> str:
    if len(content) > SNIPPET_MAX_CHARS:
        return content[:SNIPPET_MAX_CHARS] + "..."
    return content


def _knowledge_block(knowledge: KnowledgeResult) -> str:
    if not knowledge.snippets:
        return "No knowledge base entries were retrieved for this request."
    return "\n".join(f"{i}. [{s.source}] {_snippet(s.content)}"
                     for i, s in enumerate(knowledge.snippets, 1))


def _history_block(history: HistoricalAggregate) -> str:
    issues = ", ".join(history.recurring_issues) if history.recurring_issues else "none recorded"
    return (f"- Similar past cases: {history.similar_case_count}\n"
            f"- Average confidence in similar cases: {history.average_confidence * 100:.1f}%\n"
            f"- Success rate: {history.success_rate * 100:.1f}%\n"
            f"- Common issues: {issues}")


def _fraud_block(fraud: FraudAssessment) -> str:
    reasons = "\n".join(f"  - {r}" for r in fraud.reasons) or "  - none"
    return (f"\nFRAUD SIGNALS:\n"
            f"- Fraud score: {fraud.score}/100 ({fraud.risk_tier.value} risk)\n"
            f"- Checks performed: {fraud.checks_performed}\n"
            f"- Reasons:\n{reasons}\n")


def compose_prompt(request: DecisionRequest, knowledge: KnowledgeResult,
                   history: HistoricalAggregate, fraud: FraudAssessment = None) -> str:
    payload = json.dumps(request.payload, indent=2, sort_keys=True, default=str)
    fraud_text = _fraud_block(fraud) if fraud is not None else ""

    return f"""You are an autonomous AI agent making decisions for an invoice intelligence platform.

CONTEXT:
- Task Type: {request.category.value}
- Urgency: {request.urgency.value}
- Required Confidence: {request.required_confidence}%
- Input Data:
{payload}

REAL-TIME KNOWLEDGE (from Knowledge Base):
{_knowledge_block(knowledge)}

HISTORICAL LEARNING:
{_history_block(history)}
{fraud_text}
YOUR TASK:
Make an autonomous decision on what action to take. Consider:
1. Use the Knowledge Base information (current tax rules, not hardcoded)
2. Learn from historical patterns
3. Assess risks proactively
4. Recommend next steps

{OUTPUT_CONTRACT}"""
