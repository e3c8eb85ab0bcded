"""
LedgerPilot — Autonomous Decision Engine for Invoice Intelligence
HTTP surface: decisions, enhanced decisions, fraud assessment, purchase
webhooks, learning stats and knowledge base ingest.
"""
import os

from fastapi import Body, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ledgerpilot.config import USE_REAL_API, VERSION, setup_logging
from ledgerpilot.db import EventLog, JsonFileStore, LearningStore
from ledgerpilot.engine import DecisionEngine
from ledgerpilot.enrichment import ClaudeDocumentExtractor, HeuristicPredictionService
from ledgerpilot.inference import AnthropicInferenceService, OfflineInferenceService
from ledgerpilot.models import DecisionCategory, DecisionRequest
from ledgerpilot.rag_engine import KnowledgeBase
from ledgerpilot.watcher import PurchaseWatcher

setup_logging()


# ============================================================
# WIRING
# ============================================================
def build_engine(store: JsonFileStore = None, knowledge_base: KnowledgeBase = None):
    """Default collaborators: Claude (or offline), local knowledge base, JSON file store."""
    store = store or JsonFileStore()
    learning = LearningStore(store)
    events = EventLog(store)
    kb = knowledge_base or KnowledgeBase()
    inference = AnthropicInferenceService() if USE_REAL_API else OfflineInferenceService()
    engine = DecisionEngine(inference=inference, retrieval=kb, history_store=learning, events=events,
                            extractor=ClaudeDocumentExtractor(), predictions=HeuristicPredictionService())
    return engine, kb, learning, events


def _parse_request(body: dict) -> DecisionRequest:
    try:
        return DecisionRequest.from_dict(body)
    except ValueError as e:
        raise HTTPException(422, str(e))


# ============================================================
# APP
# ============================================================
def create_app(engine: DecisionEngine = None, knowledge_base: KnowledgeBase = None,
               learning: LearningStore = None, events: EventLog = None) -> FastAPI:
    if engine is None:
        engine, knowledge_base, learning, events = build_engine()
    watcher = PurchaseWatcher(engine, events)

    app = FastAPI(title="LedgerPilot", version=VERSION)
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_credentials=True,
                       allow_methods=["*"], allow_headers=["*"])

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "product": "LedgerPilot",
                "claude_api": "connected" if USE_REAL_API else "offline", "version": VERSION}

    @app.post("/api/decisions")
    async def make_decision(body: dict = Body(...)):
        decision = await engine.make_decision(_parse_request(body))
        return decision.to_dict()

    @app.post("/api/decisions/enhanced")
    async def make_enhanced_decision(body: dict = Body(...)):
        request = _parse_request(body)
        history = body.get("customerHistory")
        if history is not None and not isinstance(history, dict):
            raise HTTPException(422, "customerHistory must be a JSON object")
        decision = await engine.make_enhanced_decision(request, document_ref=body.get("documentRef"),
                                                       customer_history=history)
        return decision.to_dict()

    @app.post("/api/fraud/assess")
    async def assess_fraud(body: dict = Body(...)):
        """Fraud score for a payload; category defaults to fraud_check."""
        request = _parse_request({"category": DecisionCategory.FRAUD_CHECK.value, **body})
        assessment = await engine.assess_fraud(request)
        return assessment.to_dict()

    @app.post("/api/events/purchase")
    async def purchase_event(body: dict = Body(...)):
        return await watcher.watch(body)

    @app.get("/api/learning/stats")
    async def learning_stats():
        if learning is None:
            return {"totalRecords": 0, "byCategory": {}}
        return learning.stats()

    @app.get("/api/learning/{category}")
    async def learning_records(category: str, limit: int = 20):
        try:
            cat = DecisionCategory.parse(category)
        except ValueError as e:
            raise HTTPException(422, str(e))
        if learning is None:
            return {"category": cat.value, "records": [], "total": 0}
        records = await learning.query(cat.value, max(1, min(limit, 200)), most_recent_first=True)
        return {"category": cat.value, "records": records, "total": len(records)}

    @app.post("/api/knowledge")
    async def ingest_knowledge(body: dict = Body(...)):
        if knowledge_base is None:
            raise HTTPException(503, "Knowledge base not configured")
        if not str(body.get("content") or "").strip():
            raise HTTPException(422, "content is required")
        return await knowledge_base.ingest(body)

    @app.get("/api/rag/stats")
    async def rag_stats():
        """Get knowledge base statistics."""
        return {"enabled": knowledge_base is not None,
                "stats": knowledge_base.stats() if knowledge_base is not None else None}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    logger.info(f"Starting LedgerPilot v{VERSION} on port {port}")
    logger.info(f"Claude API: {'Connected' if USE_REAL_API else 'Offline mode'}")
    uvicorn.run(app, host="0.0.0.0", port=port)
