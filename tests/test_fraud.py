"""
Tests for the fraud assessment sub-engine.
"""
import asyncio
import json

import pytest

from ledgerpilot.config import BALANCED_MODEL, FRAUD_MAX_TOKENS
from ledgerpilot.fraud import FraudAssessor, risk_tier, score_rules
from ledgerpilot.models import RiskTier

from fakes import FakeInference, make_request

KNOWN_CUSTOMER = {"name": "Ada", "email": "ada@example.com", "country": "DE", "address": "Hauptstr. 1"}


def fraud_json(score, reasons=("model reason",)):
    return json.dumps({"score": score, "reasons": list(reasons)})


class TestRuleScore:

    def test_new_customer_ten_times_threshold(self):
        request = make_request("fraud_check", amount=1_000_000, customer=KNOWN_CUSTOMER,
                               customerHistory={"totalOrders": 0})
        score, reasons = score_rules(request)
        assert score >= 30
        assert reasons == ["New customer with unusually high first purchase"]

    def test_new_customer_and_missing_address(self):
        request = make_request("fraud_check", amount=1_000_000, country="DE",
                               customer={"name": "Ada", "country": "DE"},
                               customerHistory={"totalOrders": 0})
        score, _ = score_rules(request)
        assert score >= 50

    def test_unknown_country(self):
        request = make_request("fraud_check", amount=10, country="Unknown",
                               customer={"address": "somewhere"})
        score, reasons = score_rules(request)
        assert score == 20
        assert reasons == ["Missing or suspicious location information"]

    def test_velocity(self):
        request = make_request("fraud_check", amount=10, customer=KNOWN_CUSTOMER,
                               customerHistory={"totalOrders": 9, "ordersLastHour": 4})
        assert score_rules(request)[0] == 25
        request = make_request("fraud_check", amount=10, customer=KNOWN_CUSTOMER,
                               customerHistory={"totalOrders": 9, "ordersLastHour": 3})
        assert score_rules(request)[0] == 0

    def test_average_order_value_spike(self):
        request = make_request("fraud_check", amount=6000, customer=KNOWN_CUSTOMER,
                               customerHistory={"totalOrders": 9, "avgOrderValue": 1000})
        score, reasons = score_rules(request)
        assert score == 25
        assert reasons == ["Amount 6.0x above customer average"]

    def test_missing_history_does_not_count_as_new_customer(self):
        request = make_request("fraud_check", amount=1_000_000, customer=KNOWN_CUSTOMER)
        assert score_rules(request)[0] == 0

    def test_all_rules(self):
        request = make_request("fraud_check", amount=600000, country="Unknown",
                               customerHistory={"totalOrders": 0, "ordersLastHour": 5, "avgOrderValue": 100})
        assert score_rules(request)[0] == 100


class TestRiskTier:

    @pytest.mark.parametrize("score,tier", [
        (0, RiskTier.LOW), (40, RiskTier.LOW), (41, RiskTier.MEDIUM),
        (70, RiskTier.MEDIUM), (71, RiskTier.HIGH), (100, RiskTier.HIGH),
    ])
    def test_thresholds(self, score, tier):
        assert risk_tier(score) == tier


class TestFraudAssessor:

    def test_final_is_max_of_rule_and_model(self):
        request = make_request("fraud_check", amount=150000, country="Unknown",
                               customerHistory={"totalOrders": 0})
        inference = FakeInference(fraud=fraud_json(85, ["Pattern matches known card testing"]))
        result = asyncio.run(FraudAssessor(inference).assess(request))
        assert result.rule_score == 50
        assert result.model_score == 85
        assert result.score == 85
        assert result.risk_tier == RiskTier.HIGH
        assert result.escalate is True
        assert result.checks_performed == 5
        assert "Pattern matches known card testing" in result.reasons
        assert result.reasons[0] == "New customer with unusually high first purchase"

    def test_rules_win_when_model_is_lower(self):
        request = make_request("fraud_check", amount=150000, country="Unknown",
                               customerHistory={"totalOrders": 0})
        result = asyncio.run(FraudAssessor(FakeInference(fraud=fraud_json(10))).assess(request))
        assert result.score == 50
        assert result.risk_tier == RiskTier.MEDIUM
        assert result.escalate is False

    def test_model_failure_falls_back_to_rules(self):
        request = make_request("fraud_check", amount=150000, country="Unknown",
                               customerHistory={"totalOrders": 0})
        result = asyncio.run(FraudAssessor(FakeInference(fraud=None)).assess(request))
        assert result.model_score == 0
        assert result.score == 50
        assert result.checks_performed == 4

    def test_unparseable_model_output(self):
        request = make_request("fraud_check", amount=10, customer=KNOWN_CUSTOMER)
        result = asyncio.run(FraudAssessor(FakeInference(fraud="I can't tell")).assess(request))
        assert result.score == 0
        assert result.risk_tier == RiskTier.LOW
        assert result.checks_performed == 4

    def test_model_score_clamped(self):
        request = make_request("fraud_check", amount=10, customer=KNOWN_CUSTOMER)
        result = asyncio.run(FraudAssessor(FakeInference(fraud=fraud_json(250))).assess(request))
        assert result.score == 100
        assert result.escalate is True

    def test_high_at_eighty_does_not_escalate(self):
        request = make_request("fraud_check", amount=10, customer=KNOWN_CUSTOMER)
        result = asyncio.run(FraudAssessor(FakeInference(fraud=fraud_json(80))).assess(request))
        assert result.risk_tier == RiskTier.HIGH
        assert result.escalate is False

    def test_uses_balanced_model_with_fraud_budget(self):
        inference = FakeInference(fraud=fraud_json(5))
        request = make_request("fraud_check", amount=10, currency="EUR", customer=KNOWN_CUSTOMER,
                               products=[{"name": "Gift card"}])
        asyncio.run(FraudAssessor(inference).assess(request))
        call = inference.calls[0]
        assert call["model_id"] == BALANCED_MODEL
        assert call["max_tokens"] == FRAUD_MAX_TOKENS
        assert "Products: Gift card" in call["instruction"]
        assert "Amount: EUR 10.0" in call["instruction"]
