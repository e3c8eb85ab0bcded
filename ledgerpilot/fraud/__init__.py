"""
LedgerPilot — Fraud Assessment Module

Four deterministic rules + one model-scored pass. Rules are primary (zero LLM);
the model score is complementary and can only raise the final score.

Rules:
  1. NEW_CUSTOMER_LARGE   — no prior orders and amount above the large-transaction threshold (+30)
  2. UNKNOWN_LOCATION     — country missing/"Unknown" or no customer address (+20)
  3. VELOCITY             — more than 3 orders in the last hour (+25)
  4. AOV_SPIKE            — amount more than 5x the customer's average order value (+25)

Final score = min(100, max(rule score, model score)).
Tier: HIGH > 70, MEDIUM > 40, else LOW. HIGH above 80 escalates to human review.
"""

from loguru import logger

from ledgerpilot.config import (
    LARGE_TRANSACTION_THRESHOLD, FRAUD_WEIGHT_NEW_CUSTOMER_LARGE, FRAUD_WEIGHT_UNKNOWN_LOCATION,
    FRAUD_WEIGHT_VELOCITY, FRAUD_WEIGHT_AOV_SPIKE, FRAUD_VELOCITY_LIMIT, FRAUD_AOV_MULTIPLE,
    FRAUD_HIGH_THRESHOLD, FRAUD_MEDIUM_THRESHOLD, FRAUD_ESCALATION_THRESHOLD,
    FRAUD_MAX_TOKENS, FRAUD_MODEL_TIMEOUT_S, BALANCED_MODEL,
)
from ledgerpilot.inference import InferenceInvoker
from ledgerpilot.models import (
    CapabilityTier, DecisionRequest, FraudAssessment, RiskTier, TierSelection, _clamp, _n,
)
from ledgerpilot.parsing import StructuredJsonStrategy

RULE_CHECKS = 4


# ============================================================
# FRAUD SCORING PROMPT
# ============================================================
FRAUD_PROMPT = """Analyze this transaction for fraud risk:

Customer: {total_orders} previous orders
Amount: {currency} {amount}
Average order: {currency} {avg_order_value}
Location: {country}
Products: {products}

Fraud indicators:
- Is the amount suspicious?
- Is the location risky?
- Are the products commonly associated with fraud?
- Does the pattern match known fraud cases?

Respond ONLY with JSON:
{{"score": 0-100, "reasons": ["reason1", "reason2"]}}"""


def _customer(payload: dict) -> dict:
    customer = payload.get("customer")
    return customer if isinstance(customer, dict) else {}


def _history(payload: dict) -> dict:
    history = payload.get("customerHistory")
    return history if isinstance(history, dict) else {}


def _country(payload: dict):
    return _customer(payload).get("country") or payload.get("country")


def _is_unknown(value) -> bool:
    return not value or str(value).strip().lower() == "unknown"


def risk_tier(score: int) -> RiskTier:
    if score > FRAUD_HIGH_THRESHOLD:
        return RiskTier.HIGH
    if score > FRAUD_MEDIUM_THRESHOLD:
        return RiskTier.MEDIUM
    return RiskTier.LOW


# ============================================================
# RULE-BASED SCORING
# ============================================================
def score_rules(request: DecisionRequest) -> tuple:
    """Returns (rule_score, reasons). No LLM calls."""
    payload = request.payload
    history = _history(payload)
    customer = _customer(payload)
    amount = request.amount or 0.0
    score = 0
    reasons = []

    # ── 1. NEW CUSTOMER + LARGE AMOUNT ──
    total_orders = history.get("totalOrders", history.get("total_orders"))
    if total_orders is not None and _n(total_orders, -1) == 0 and amount > LARGE_TRANSACTION_THRESHOLD:
        score += FRAUD_WEIGHT_NEW_CUSTOMER_LARGE
        reasons.append("New customer with unusually high first purchase")

    # ── 2. LOCATION ──
    if _is_unknown(_country(payload)) or not customer.get("address"):
        score += FRAUD_WEIGHT_UNKNOWN_LOCATION
        reasons.append("Missing or suspicious location information")

    # ── 3. VELOCITY ──
    if _n(history.get("ordersLastHour", history.get("orders_last_hour"))) > FRAUD_VELOCITY_LIMIT:
        score += FRAUD_WEIGHT_VELOCITY
        reasons.append("Unusual purchase velocity detected")

    # ── 4. AMOUNT VS AVERAGE ORDER VALUE ──
    avg = _n(history.get("avgOrderValue", history.get("avg_order_value")))
    if avg > 0:
        ratio = amount / avg
        if ratio > FRAUD_AOV_MULTIPLE:
            score += FRAUD_WEIGHT_AOV_SPIKE
            reasons.append(f"Amount {ratio:.1f}x above customer average")

    return score, reasons


def build_fraud_prompt(request: DecisionRequest) -> str:
    payload = request.payload
    history = _history(payload)
    products = payload.get("products") or []
    names = ", ".join(str(p.get("name", "?")) if isinstance(p, dict) else str(p) for p in products)
    return FRAUD_PROMPT.format(
        total_orders=history.get("totalOrders", history.get("total_orders", "unknown")),
        currency=payload.get("currency") or "USD",
        amount=request.amount if request.amount is not None else "unknown",
        avg_order_value=history.get("avgOrderValue", history.get("avg_order_value")) or 0,
        country=_country(payload) or "Unknown",
        products=names or "none listed",
    )


# ============================================================
# ASSESSOR
# ============================================================
class FraudAssessor:
    def __init__(self, inference, parser: StructuredJsonStrategy = None):
        self.invoker = inference if isinstance(inference, InferenceInvoker) else InferenceInvoker(inference)
        self.parser = parser or StructuredJsonStrategy()
        self.selection = TierSelection(tier=CapabilityTier.BALANCED, extended=False, model_id=BALANCED_MODEL,
                                       timeout_s=FRAUD_MODEL_TIMEOUT_S, max_tokens=FRAUD_MAX_TOKENS)

    async def model_score(self, request: DecisionRequest):
        """(score, reasons) from the model, or None on any failure."""
        try:
            raw = await self.invoker.invoke(self.selection, build_fraud_prompt(request))
        except Exception as e:
            logger.warning(f"[Fraud] Model scoring failed: {type(e).__name__}: {e}")
            return None
        data = self.parser.extract(raw)
        if not data or "score" not in data:
            logger.warning("[Fraud] Model output carried no score")
            return None
        reasons = data.get("reasons", data.get("ai_reasons")) or []
        if not isinstance(reasons, list):
            reasons = [reasons]
        return _clamp(round(_n(data.get("score")))), [str(r) for r in reasons if r]

    async def assess(self, request: DecisionRequest) -> FraudAssessment:
        logger.info("[Fraud] Running fraud checks...")
        rule_score, reasons = score_rules(request)
        checks = RULE_CHECKS

        model = await self.model_score(request)
        model_score = 0
        if model is not None:
            model_score, model_reasons = model
            reasons = reasons + [r for r in model_reasons if r not in reasons]
            checks += 1

        # Either signal alone can flag a transaction
        score = min(100, max(rule_score, model_score))
        tier = risk_tier(score)
        escalate = tier == RiskTier.HIGH and score > FRAUD_ESCALATION_THRESHOLD

        logger.info(f"[Fraud] Score {score}/100 ({tier.value}) rules={rule_score} model={model_score}"
                    f"{' ESCALATE' if escalate else ''}")
        return FraudAssessment(score=score, risk_tier=tier, reasons=reasons, checks_performed=checks,
                               rule_score=rule_score, model_score=model_score, escalate=escalate)
