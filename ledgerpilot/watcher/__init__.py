"""
LedgerPilot — Purchase Watcher

Turns an accepted purchase webhook into an invoice decision:
  1. Actionable check (completed-payment event types, positive amount)
  2. Five compliance checks (customer info, jurisdiction, amount, products, platform)
  3. Fraud assessment (once per purchase) → urgency, then reused by the decision
  4. Enhanced invoice_generation decision (required confidence 90)
  5. Notify customer when confident and not held, otherwise route to human review

Returns a plain dict and never raises.
"""
from loguru import logger

from ledgerpilot.config import ACTIONABLE_EVENTS, AUTO_INVOICE_MIN_CONFIDENCE, WATCHER_REQUIRED_CONFIDENCE
from ledgerpilot.models import DecisionCategory, DecisionRequest, RiskTier, Urgency, _n, _now
from ledgerpilot.services import TOPIC_HUMAN_REVIEW, TOPIC_INVOICE_NOTIFICATION, publish_safely

COMPLIANCE_TOTAL_CHECKS = 5


def is_actionable(event: dict) -> bool:
    event_type = str(event.get("eventType") or event.get("event_type") or "")
    return any(e in event_type for e in ACTIONABLE_EVENTS) and _n(event.get("amount")) > 0


def _customer(event: dict) -> dict:
    customer = event.get("customer")
    return customer if isinstance(customer, dict) else {}


def compliance_checks(event: dict) -> dict:
    customer = _customer(event)
    products = event.get("products") or []
    country = customer.get("country") or event.get("country")
    platform = event.get("platform")

    def check(name, passed, ok_detail, fail_detail):
        return {"check": name, "passed": bool(passed), "detail": ok_detail if passed else fail_detail}

    checks = [
        check("customer_info", customer.get("email") and customer.get("name"),
              "Customer information complete", "Missing customer information"),
        check("jurisdiction", country, f"Tax jurisdiction: {country}", "Cannot determine tax jurisdiction"),
        check("amount", _n(event.get("amount")) > 0, "Valid transaction amount", "Invalid transaction amount"),
        check("products", products, f"{len(products)} products identified", "No products in transaction"),
        check("platform", platform, f"Platform webhook received from {platform}", "Unknown source platform"),
    ]
    passed = sum(1 for c in checks if c["passed"])
    return {"checks": checks, "checksPassed": passed, "totalChecks": COMPLIANCE_TOTAL_CHECKS,
            "complianceScore": round(passed / COMPLIANCE_TOTAL_CHECKS * 100, 1)}


def build_payload(event: dict) -> dict:
    customer = _customer(event)
    products = event.get("products") or []
    payload = {
        "amount": _n(event.get("amount")),
        "currency": event.get("currency") or "USD",
        "country": customer.get("country") or event.get("country"),
        "customer": customer,
        "products": products,
        "platform": event.get("platform"),
        "eventType": event.get("eventType") or event.get("event_type"),
        "customerHistory": event.get("customerHistory") or None,
    }
    first = products[0] if products and isinstance(products[0], dict) else {}
    if first.get("category"):
        payload["productCategory"] = first["category"]
    if event.get("crossBorder") is not None:
        payload["crossBorder"] = bool(event.get("crossBorder"))
    return {k: v for k, v in payload.items() if v is not None}


def _result(should, confidence, reasoning, checks, fraud_score, actions, decision=None) -> dict:
    return {
        "shouldGenerateInvoice": should,
        "confidence": confidence,
        "reasoning": reasoning,
        "complianceChecks": checks,
        "fraudScore": fraud_score,
        "recommendedActions": actions,
        "decision": decision,
    }


class PurchaseWatcher:
    def __init__(self, engine, events=None):
        self.engine = engine
        self.events = events

    async def watch(self, event: dict) -> dict:
        customer = _customer(event)
        logger.info(f"[Watcher] Purchase on {event.get('platform', '?')}: "
                    f"{event.get('currency', '')} {event.get('amount')} ({customer.get('country', '?')})")
        try:
            return await self._watch(event)
        except Exception as e:
            logger.exception(f"[Watcher] Error processing purchase: {type(e).__name__}: {e}")
            await publish_safely(self.events, TOPIC_HUMAN_REVIEW,
                                 {"event": event, "reason": {"error": str(e)}, "escalatedAt": _now()})
            return _result(False, 0, f"Error in autonomous processing: {e}", [], 0,
                           ["Manual intervention required", "Review system logs"])

    async def _watch(self, event: dict) -> dict:
        if not is_actionable(event):
            logger.info("[Watcher] No action needed")
            return _result(False, 95, "Event does not require invoice", [], 0,
                           ["Monitor transaction", "No invoice required"])

        compliance = compliance_checks(event)
        logger.info(f"[Watcher] Compliance {compliance['checksPassed']}/{compliance['totalChecks']}")

        payload = build_payload(event)
        base = DecisionRequest(DecisionCategory.INVOICE_GENERATION, payload, Urgency.MEDIUM,
                               WATCHER_REQUIRED_CONFIDENCE)
        fraud = await self.engine.assess_fraud(base)
        urgency = Urgency.HIGH if fraud.risk_tier in (RiskTier.MEDIUM, RiskTier.HIGH) else Urgency.MEDIUM

        request = DecisionRequest(
            DecisionCategory.INVOICE_GENERATION,
            {**payload, "fraudScore": fraud.score, "compliance": {
                "checksPassed": compliance["checksPassed"], "totalChecks": compliance["totalChecks"]}},
            urgency, WATCHER_REQUIRED_CONFIDENCE)
        decision = await self.engine.make_enhanced_decision(
            request, document_ref=event.get("documentRef"), customer_history=payload.get("customerHistory"),
            fraud=fraud)

        fraud_score = fraud.score
        checks = compliance["checks"]

        if not decision.escalated and decision.confidence > AUTO_INVOICE_MIN_CONFIDENCE:
            await publish_safely(self.events, TOPIC_INVOICE_NOTIFICATION, {
                "to": customer_email(event),
                "subject": "Invoice for your purchase",
                "amount": payload["amount"],
                "currency": payload["currency"],
                "confidence": decision.confidence,
            })
            logger.info(f"[Watcher] Invoice approved at {decision.confidence}% confidence, customer notified")
            return _result(True, decision.confidence, decision.rationale, checks, fraud_score,
                           decision.next_steps, decision.to_dict())

        if decision.escalated:
            # The engine already published the fraud hold
            reasoning = decision.rationale
            actions = decision.next_steps
        else:
            logger.warning(f"[Watcher] Low confidence ({decision.confidence}%) - escalating to human")
            await publish_safely(self.events, TOPIC_HUMAN_REVIEW, {
                "event": event,
                "reason": {"confidence": decision.confidence, "rationale": decision.rationale},
                "escalatedAt": _now(),
            })
            reasoning = f"Low confidence - {decision.rationale}"
            actions = ["Escalated for human review"] + decision.next_steps
        return _result(False, decision.confidence, reasoning, checks, fraud_score, actions, decision.to_dict())


def customer_email(event: dict):
    return _customer(event).get("email")
