"""
LedgerPilot — Autonomous Decision Engine (v1.0.0)

Architecture:
  ledgerpilot/
  ├── config/      — Constants, feature flags, tier models, thresholds, logging
  ├── models/      — Categories, requests, tiers, decisions, fraud, learning records
  ├── services/    — Collaborator contracts (inference, retrieval, history, events, ...)
  ├── strategy/    — Complexity scoring + capability tier selection
  ├── knowledge/   — Category query templates → retrieval service fan-out
  ├── history/     — Similar-case aggregate from the learning store
  ├── prompts/     — Deterministic decision prompt
  ├── inference/   — Tiered invoker, Anthropic + offline services
  ├── parsing/     — Structured JSON → heuristic text → static fallback
  ├── insights/    — Proactive advisory insights
  ├── fraud/       — 4 rule-based fraud checks + model score
  ├── learning/    — Learning record writer (WriteResult)
  ├── enrichment/  — Document extraction + rule-based predictions
  ├── engine/      — Orchestrating facade
  ├── watcher/     — Purchase webhook → invoice decision
  ├── db/          — JSON file store: learning records, events
  ├── rag_engine.py — Local knowledge base (TF-IDF / Voyage)
  └── server.py    — FastAPI routing layer

Each module is self-contained with clear imports and no circular dependencies.
"""
