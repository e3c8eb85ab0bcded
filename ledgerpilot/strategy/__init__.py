"""
LedgerPilot — Complexity Scoring & Strategy Selection

Decides how much model capability a request deserves.

  score_complexity()  — 0-100 difficulty score with ordered reasons
  select_tier()       — maps (score, urgency, required confidence) to a tier

Tiers:
  FAST      — small model, simple or urgent-and-moderate requests
  BALANCED  — mid model; "extended" token budget between 60 and 80
  DEEP      — largest model for very complex requests (80+)

Both functions are pure. The only history input is the precedent count,
which the caller reads from the History Analyzer.
"""
from ledgerpilot.config import (
    LARGE_TRANSACTION_THRESHOLD, WEIGHT_CROSS_BORDER, WEIGHT_LARGE_AMOUNT,
    WEIGHT_CRITICAL_URGENCY, WEIGHT_HIGH_CONFIDENCE, HIGH_CONFIDENCE_REQUIREMENT,
    PRECEDENT_DISCOUNT, PRECEDENT_MIN_CASES,
    CRITICAL_FAST_PATH_BELOW, FAST_BELOW, BALANCED_BELOW, EXTENDED_BELOW,
    TIER_TIMEOUT_S, TIER_MAX_TOKENS, EXTENDED_TOKEN_MULTIPLIER,
)
from ledgerpilot.models import (
    CapabilityTier, ComplexityScore, DecisionRequest, TierSelection, Urgency, _clamp,
)


# ============================================================
# COMPLEXITY SCORER
# ============================================================
def score_complexity(request: DecisionRequest, precedent_count: int = 0) -> ComplexityScore:
    """Score request difficulty. Reasons follow the weight evaluation order."""
    score = 0
    reasons = []

    if request.cross_border:
        score += WEIGHT_CROSS_BORDER
        reasons.append("Cross-border transaction requires multi-jurisdiction analysis")

    amount = request.amount
    if amount is not None and amount > LARGE_TRANSACTION_THRESHOLD:
        score += WEIGHT_LARGE_AMOUNT
        reasons.append("High value transaction requires additional scrutiny")

    if request.urgency == Urgency.CRITICAL:
        score += WEIGHT_CRITICAL_URGENCY
        reasons.append("Critical urgency requires immediate high-confidence decision")

    if request.required_confidence > HIGH_CONFIDENCE_REQUIREMENT:
        score += WEIGHT_HIGH_CONFIDENCE
        reasons.append("High confidence requirement needs advanced reasoning")

    score += request.category.weight
    reasons.append(f"Task type '{request.category.value}' has inherent complexity")

    if precedent_count > PRECEDENT_MIN_CASES:
        score -= PRECEDENT_DISCOUNT
        reasons.append("Similar cases exist in history, can use faster model")

    return ComplexityScore(value=_clamp(score), reasons=reasons)


# ============================================================
# STRATEGY SELECTOR
# ============================================================
def _selection(tier: CapabilityTier, extended: bool = False) -> TierSelection:
    max_tokens = TIER_MAX_TOKENS[tier.value]
    if extended:
        max_tokens *= EXTENDED_TOKEN_MULTIPLIER
    return TierSelection(tier=tier, extended=extended, model_id=tier.model_id,
                         timeout_s=TIER_TIMEOUT_S[tier.value], max_tokens=max_tokens)


def select_tier(score: int, urgency, required_confidence: int = 80) -> TierSelection:
    """Pick a capability tier. First matching rule wins; every input maps to a tier.

    required_confidence is part of the contract but already priced into the
    score (see score_complexity), so it does not add a rule of its own.
    """
    urgency = Urgency.parse(urgency)

    if urgency == Urgency.CRITICAL and score < CRITICAL_FAST_PATH_BELOW:
        return _selection(CapabilityTier.FAST)
    if score < FAST_BELOW:
        return _selection(CapabilityTier.FAST)
    if score < BALANCED_BELOW:
        return _selection(CapabilityTier.BALANCED)
    if score < EXTENDED_BELOW:
        return _selection(CapabilityTier.BALANCED, extended=True)
    return _selection(CapabilityTier.DEEP)
