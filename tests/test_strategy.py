"""
Tests for complexity scoring and capability tier selection.
"""
import itertools

import pytest

from ledgerpilot.config import TIER_MAX_TOKENS, TIER_TIMEOUT_S, FAST_MODEL, DEEP_MODEL
from ledgerpilot.models import CapabilityTier, Urgency
from ledgerpilot.strategy import score_complexity, select_tier

from fakes import make_request


class TestComplexityScorer:

    def test_base_weight_only(self):
        score = score_complexity(make_request("invoice_generation"))
        assert score.value == 10
        assert score.reasons == ["Task type 'invoice_generation' has inherent complexity"]

    def test_reasons_follow_weight_order(self):
        request = make_request("tax_optimization", urgency="critical", required_confidence=99,
                               crossBorder=True, amount=250000)
        score = score_complexity(request, precedent_count=11)
        assert score.reasons == [
            "Cross-border transaction requires multi-jurisdiction analysis",
            "High value transaction requires additional scrutiny",
            "Critical urgency requires immediate high-confidence decision",
            "High confidence requirement needs advanced reasoning",
            "Task type 'tax_optimization' has inherent complexity",
            "Similar cases exist in history, can use faster model",
        ]
        # 25 + 15 + 20 + 20 + 40 - 15 = 105 → clamped
        assert score.value == 100

    def test_idempotent(self):
        request = make_request("fraud_check", crossBorder=True, amount=500000)
        first = score_complexity(request, 3)
        second = score_complexity(request, 3)
        assert first.value == second.value == 70
        assert first.reasons == second.reasons

    def test_precedent_discount_needs_more_than_ten(self):
        request = make_request("compliance_validation")
        assert score_complexity(request, 10).value == 35
        assert score_complexity(request, 11).value == 20

    def test_discount_never_goes_negative(self):
        score = score_complexity(make_request("invoice_generation"), precedent_count=50)
        assert score.value == 0

    def test_amount_at_threshold_is_not_large(self):
        assert score_complexity(make_request(amount=100000)).value == 10
        assert score_complexity(make_request(amount=100000.01)).value == 25

    def test_string_amount_is_read(self):
        assert score_complexity(make_request(amount="150000")).value == 25


class TestStrategySelector:

    @pytest.mark.parametrize("urgency", list(Urgency))
    def test_totality(self, urgency):
        for score, confidence in itertools.product(range(0, 101), (0, 50, 80, 96, 100)):
            selection = select_tier(score, urgency, confidence)
            assert selection.tier in CapabilityTier

    def test_critical_low_score_is_fast(self):
        selection = select_tier(10, "critical", 80)
        assert selection.tier == CapabilityTier.FAST
        assert selection.model_id == FAST_MODEL

    def test_critical_fast_path_up_to_fifty(self):
        assert select_tier(49, Urgency.CRITICAL).tier == CapabilityTier.FAST
        assert select_tier(49, Urgency.HIGH).tier == CapabilityTier.BALANCED

    @pytest.mark.parametrize("urgency", list(Urgency))
    def test_very_complex_is_deep(self, urgency):
        selection = select_tier(95, urgency, 80)
        assert selection.tier == CapabilityTier.DEEP
        assert selection.model_id == DEEP_MODEL

    def test_boundaries(self):
        assert select_tier(29, "low").tier == CapabilityTier.FAST
        assert select_tier(30, "low").tier == CapabilityTier.BALANCED
        assert not select_tier(59, "low").extended
        assert select_tier(60, "low").extended
        assert select_tier(79, "low").tier == CapabilityTier.BALANCED
        assert select_tier(80, "low").tier == CapabilityTier.DEEP

    def test_extended_doubles_token_budget(self):
        normal = select_tier(45, "medium")
        extended = select_tier(70, "medium")
        assert normal.max_tokens == TIER_MAX_TOKENS["balanced"]
        assert extended.max_tokens == 2 * TIER_MAX_TOKENS["balanced"]
        assert extended.label == "balanced-extended"
        assert extended.timeout_s == TIER_TIMEOUT_S["balanced"]

    def test_tier_ranks_are_ordered(self):
        assert CapabilityTier.FAST.rank < CapabilityTier.BALANCED.rank < CapabilityTier.DEEP.rank
