"""
LedgerPilot — Enrichment Pipeline

Runs before an enhanced decision:
  Extraction:  Claude reads the source document (PDF/image) → {fields, confidence}
  Predictions: categorization, payment-date prediction, amount validation
               (rule-based service; any PredictionService can be swapped in)

Extraction and the three predictions run concurrently, each under its own
timeout. A failed call is simply absent from the result.
"""
import asyncio
import base64
import json
import math
import re
import statistics
from datetime import datetime, timedelta
from pathlib import Path

import anthropic
from loguru import logger

from ledgerpilot.config import BALANCED_MODEL, EXTRACTION_TIMEOUT_S, PREDICTION_TIMEOUT_S, USE_REAL_API
from ledgerpilot.inference import strip_code_fences
from ledgerpilot.models import DecisionRequest, _clamp, _n


# ============================================================
# DOCUMENT EXTRACTION
# ============================================================
EXTRACTION_PROMPT = """You are an expert invoice and purchase-document reader.
Extract every business field you can see in this document.

Respond ONLY with a JSON object:
{"fields": {"amount": 1200.50, "currency": "USD", "country": "DE", "customerName": "...",
            "invoiceNumber": "...", "date": "YYYY-MM-DD", "paymentTerms": "net_30",
            "productCategory": "..."},
 "confidence": 0-100}

Use numbers for amounts. Omit fields that are not present. Do not guess."""

MEDIA_TYPES = {".pdf": "application/pdf", ".png": "image/png", ".jpg": "image/jpeg",
               ".jpeg": "image/jpeg", ".gif": "image/gif", ".webp": "image/webp"}


class ClaudeDocumentExtractor:
    """DocumentExtractor that sends a local PDF/image to Claude."""

    def __init__(self, client=None, model: str = BALANCED_MODEL):
        self.client = client
        self.model = model

    def _content_block(self, path: Path) -> dict:
        media_type = MEDIA_TYPES.get(path.suffix.lower(), "image/png")
        b64_data = base64.standard_b64encode(path.read_bytes()).decode("utf-8")
        kind = "document" if media_type == "application/pdf" else "image"
        return {"type": kind, "source": {"type": "base64", "media_type": media_type, "data": b64_data}}

    async def extract(self, document_ref: str):
        if self.client is None and not USE_REAL_API:
            logger.info("[Enrich] Document extraction skipped: ANTHROPIC_API_KEY not configured")
            return None
        path = Path(document_ref)
        if not path.is_file():
            logger.warning(f"[Enrich] Document not found: {document_ref}")
            return None
        try:
            client = self.client or anthropic.AsyncAnthropic()
            msg = await client.messages.create(model=self.model, max_tokens=2000,
                messages=[{"role": "user", "content": [self._content_block(path),
                                                       {"type": "text", "text": EXTRACTION_PROMPT}]}])
            result = json.loads(strip_code_fences(msg.content[0].text))
        except (anthropic.APIError, json.JSONDecodeError, OSError, IndexError, AttributeError) as e:
            logger.warning(f"[Enrich] Extraction error: {type(e).__name__}: {e}")
            return None
        fields = result.get("fields") if isinstance(result, dict) else None
        if not isinstance(fields, dict):
            return None
        return {"fields": fields, "confidence": _n(result.get("confidence"), 0)}


# ============================================================
# RULE-BASED PREDICTIONS
# ============================================================
INDUSTRY_KEYWORDS = [
    ("technology", re.compile(r"software|cloud|saas|api|hosting|server")),
    ("professional_services", re.compile(r"consulting|legal|accounting|advisory|professional")),
    ("manufacturing", re.compile(r"materials|equipment|manufacturing|production")),
    ("healthcare", re.compile(r"medical|healthcare|pharmaceutical|hospital")),
    ("retail", re.compile(r"product|merchandise|goods|retail")),
]


def extract_keywords(data: dict) -> list:
    text = json.dumps(data, default=str).lower()
    return [name for name, pattern in INDUSTRY_KEYWORDS if pattern.search(text)]


def _parse_date(value):
    if value:
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            pass
    return datetime.now()


class HeuristicPredictionService:
    """PredictionService built from deterministic rules."""

    async def categorize(self, data: dict) -> dict:
        keywords = extract_keywords(data)
        amount = _n(data.get("amount"))

        industry, category = "general", "uncategorized"
        if "technology" in keywords:
            industry = "technology"
            category = "enterprise_software" if amount > 10000 else "software_subscription"
        elif "professional_services" in keywords:
            industry, category = "professional_services", "consulting"
        elif "manufacturing" in keywords:
            industry, category = "manufacturing", "materials"
        elif "healthcare" in keywords:
            industry, category = "healthcare", "medical_supplies"
        elif "retail" in keywords:
            industry, category = "retail", "merchandise"

        if amount > 100000:
            urgency = "critical"
        elif amount > 50000:
            urgency = "high"
        elif amount > 10000:
            urgency = "medium"
        else:
            urgency = "low"

        line_items = data.get("lineItems") or data.get("products") or []
        complexity = _clamp(20 + len(line_items) * 10 + (30 if amount > 50000 else 0))
        return {"industry": industry, "category": category, "urgency": urgency,
                "complexity": complexity, "keywords": keywords, "confidence": 75}

    async def predict_payment(self, data: dict, customer_history: dict) -> dict:
        history = customer_history or {}
        terms = str(data.get("paymentTerms") or data.get("payment_terms") or "net_30")
        match = re.search(r"\d+", terms)
        term_days = int(match.group(0)) if match else 30

        avg_days = _n(history.get("avgPaymentDays"), term_days)
        late_rate = min(1.0, max(0.0, _n(history.get("latePaymentRate"))))
        expected_days = max(term_days, math.ceil(avg_days)) + 5

        issued = _parse_date(data.get("date") or data.get("issueDate"))
        predicted = issued + timedelta(days=expected_days)
        follow_up = predicted - timedelta(days=5)

        if late_rate > 0.4:
            risk = "high"
        elif late_rate > 0.15:
            risk = "medium"
        else:
            risk = "low"
        confidence = 80 if _n(history.get("totalInvoices")) >= 5 else 70
        return {"predictedPaymentDate": predicted.date().isoformat(),
                "paymentProbability": round(max(0.05, 0.95 - late_rate * 0.6), 2),
                "riskLevel": risk,
                "recommendedFollowUpDate": follow_up.date().isoformat(),
                "confidence": confidence}

    async def validate_amount(self, data: dict, invoices: list) -> dict:
        amounts = [_n(inv.get("amount")) for inv in (invoices or []) if isinstance(inv, dict)]
        current = _n(data.get("amount"))
        if len(amounts) < 2:
            return {"isReasonable": True, "expectedRange": None, "deviationPercentage": 0.0,
                    "confidence": 50, "reasoning": "Insufficient historical data for validation"}

        mean = statistics.fmean(amounts)
        std = statistics.pstdev(amounts)
        low, high = mean - 2 * std, mean + 2 * std
        is_reasonable = low <= current <= high
        deviation_pct = ((current - mean) / mean * 100) if mean else 0.0

        if is_reasonable:
            reasoning = "Amount is within expected range based on historical data."
        elif current > mean:
            reasoning = f"Amount is {deviation_pct:.1f}% higher than average. This is unusual for this customer."
        else:
            reasoning = f"Amount is {abs(deviation_pct):.1f}% lower than average. Possible missing items."
        return {"isReasonable": is_reasonable,
                "expectedRange": {"min": round(low, 2), "max": round(high, 2)},
                "deviationPercentage": round(deviation_pct, 1),
                "confidence": 85, "reasoning": reasoning}


# ============================================================
# ENRICHER
# ============================================================
PREDICTION_KEYS = {
    "categorization": "mlCategorization",
    "paymentPrediction": "mlPaymentPrediction",
    "amountValidation": "mlAmountValidation",
}


class Enricher:
    def __init__(self, extractor=None, predictions=None,
                 extraction_timeout_s: float = EXTRACTION_TIMEOUT_S,
                 prediction_timeout_s: float = PREDICTION_TIMEOUT_S):
        self.extractor = extractor
        self.predictions = predictions
        self.extraction_timeout_s = extraction_timeout_s
        self.prediction_timeout_s = prediction_timeout_s

    async def _extract(self, document_ref):
        if not document_ref or self.extractor is None:
            return None
        return await asyncio.wait_for(self.extractor.extract(document_ref), self.extraction_timeout_s)

    async def _predict(self, label: str, coro):
        try:
            return await asyncio.wait_for(coro, self.prediction_timeout_s)
        except Exception as e:
            logger.warning(f"[Enrich] {label} prediction failed: {type(e).__name__}: {e}")
            return None

    async def _predictions(self, data: dict, customer_history) -> dict:
        if not customer_history or self.predictions is None:
            return {}
        invoices = customer_history.get("invoices") or []
        results = await asyncio.gather(
            self._predict("categorization", self.predictions.categorize(data)),
            self._predict("paymentPrediction", self.predictions.predict_payment(data, customer_history)),
            self._predict("amountValidation", self.predictions.validate_amount(data, invoices)),
        )
        return {k: v for k, v in zip(PREDICTION_KEYS, results) if v is not None}

    async def enrich(self, request: DecisionRequest, document_ref: str = None, customer_history: dict = None):
        """Returns (enriched request, enhancements summary). Never raises."""
        customer_history = customer_history or request.customer_history
        payload = dict(request.payload)

        extracted, predictions = await asyncio.gather(
            self._extract(document_ref), self._predictions(payload, customer_history),
            return_exceptions=True)
        if isinstance(extracted, BaseException):
            logger.warning(f"[Enrich] Extraction failed: {type(extracted).__name__}: {extracted}")
            extracted = None
        if isinstance(predictions, BaseException):
            logger.warning(f"[Enrich] Predictions failed: {type(predictions).__name__}: {predictions}")
            predictions = {}

        extraction_confidence = None
        if extracted and isinstance(extracted.get("fields"), dict):
            payload.update(extracted["fields"])
            extraction_confidence = _n(extracted.get("confidence"))
            payload["extractionConfidence"] = extraction_confidence
        else:
            extracted = None

        if customer_history and "customerHistory" not in payload:
            payload["customerHistory"] = customer_history
        for key, payload_key in PREDICTION_KEYS.items():
            if key in predictions:
                payload[payload_key] = predictions[key]

        enhancements = {
            "documentExtracted": extracted is not None,
            "predictionsUsed": bool(predictions),
            "extractionConfidence": extraction_confidence,
            "predictions": predictions or None,
        }
        logger.info(f"[Enrich] document={'yes' if extracted else 'no'}, predictions={sorted(predictions)}")
        return request.with_payload(payload), enhancements
