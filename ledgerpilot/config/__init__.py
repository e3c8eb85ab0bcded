"""
LedgerPilot — Configuration & Constants
All environment variables, model tiers, timeouts, thresholds and weights.
"""
import os
import sys
from pathlib import Path

from loguru import logger

# ============================================================
# PATHS
# ============================================================
BASE_DIR = Path(__file__).parent.parent.parent
DATA_DIR = Path(os.environ.get("LEDGERPILOT_DATA_DIR", BASE_DIR / "data"))
DB_PATH = DATA_DIR / "learning.json"
RAG_DIR = DATA_DIR / "rag"

USE_REAL_API = bool(os.environ.get("ANTHROPIC_API_KEY"))

# ============================================================
# FEATURE FLAGS
# ============================================================
PERSIST_DATA = os.environ.get("PERSIST_DATA", "true").lower() == "true"
AWAIT_PERSISTENCE = os.environ.get("AWAIT_PERSISTENCE", "false").lower() == "true"
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# ============================================================
# CAPABILITY TIERS
# ============================================================
FAST_MODEL = os.environ.get("FAST_MODEL", "claude-haiku-4-5-20251001")
BALANCED_MODEL = os.environ.get("BALANCED_MODEL", "claude-sonnet-4-20250514")
DEEP_MODEL = os.environ.get("DEEP_MODEL", "claude-opus-4-1-20250805")

TIER_TIMEOUT_S = {
    "fast": float(os.environ.get("FAST_TIMEOUT_S", "10")),
    "balanced": float(os.environ.get("BALANCED_TIMEOUT_S", "30")),
    "deep": float(os.environ.get("DEEP_TIMEOUT_S", "60")),
}
TIER_MAX_TOKENS = {"fast": 1000, "balanced": 2000, "deep": 4000}
EXTENDED_TOKEN_MULTIPLIER = 2

# Strategy selection boundaries (first match wins)
CRITICAL_FAST_PATH_BELOW = 50
FAST_BELOW = 30
BALANCED_BELOW = 60
EXTENDED_BELOW = 80

# ============================================================
# ENRICHMENT TIMEOUTS
# ============================================================
RETRIEVAL_TIMEOUT_S = float(os.environ.get("RETRIEVAL_TIMEOUT_S", "5"))
HISTORY_TIMEOUT_S = float(os.environ.get("HISTORY_TIMEOUT_S", "3"))
PREDICTION_TIMEOUT_S = float(os.environ.get("PREDICTION_TIMEOUT_S", "5"))
EXTRACTION_TIMEOUT_S = float(os.environ.get("EXTRACTION_TIMEOUT_S", "30"))
FRAUD_MODEL_TIMEOUT_S = float(os.environ.get("FRAUD_MODEL_TIMEOUT_S", "20"))

# ============================================================
# COMPLEXITY WEIGHTS
# ============================================================
LARGE_TRANSACTION_THRESHOLD = float(os.environ.get("LARGE_TRANSACTION_THRESHOLD", "100000"))
WEIGHT_CROSS_BORDER = 25
WEIGHT_LARGE_AMOUNT = 15
WEIGHT_CRITICAL_URGENCY = 20
WEIGHT_HIGH_CONFIDENCE = 20
HIGH_CONFIDENCE_REQUIREMENT = 95
DEFAULT_CATEGORY_WEIGHT = 20
PRECEDENT_DISCOUNT = 15
PRECEDENT_MIN_CASES = 10

# ============================================================
# KNOWLEDGE & HISTORY
# ============================================================
KNOWLEDGE_TOP_K = 5
MAX_KNOWLEDGE_QUERIES = 3
SNIPPET_MAX_CHARS = 500

HISTORY_LIMIT = 50
SIMILAR_AMOUNT_PCT = 0.20
SUCCESS_CONFIDENCE = 80
MAX_RECURRING_ISSUES = 5
RECENT_WINDOW = 5

# ============================================================
# PARSER & INSIGHTS
# ============================================================
HEURISTIC_CONFIDENCE = 75
FAILED_CONFIDENCE = 50
RATIONALE_MAX_CHARS = 500
DEFAULT_ACTION = "manual_review_required"
ESCALATION_ACTION = "hold_for_review"

LOW_CONFIDENCE_THRESHOLD = 80
RECENT_FAILURE_LIMIT = 2

# ============================================================
# FRAUD
# ============================================================
FRAUD_WEIGHT_NEW_CUSTOMER_LARGE = 30
FRAUD_WEIGHT_UNKNOWN_LOCATION = 20
FRAUD_WEIGHT_VELOCITY = 25
FRAUD_WEIGHT_AOV_SPIKE = 25
FRAUD_VELOCITY_LIMIT = 3
FRAUD_AOV_MULTIPLE = 5
FRAUD_HIGH_THRESHOLD = 70
FRAUD_MEDIUM_THRESHOLD = 40
FRAUD_ESCALATION_THRESHOLD = 80
FRAUD_MAX_TOKENS = 500

# ============================================================
# WATCHER
# ============================================================
ACTIONABLE_EVENTS = [
    "payment_intent.succeeded",
    "charge.succeeded",
    "order.created",
    "checkout.completed",
]
AUTO_INVOICE_MIN_CONFIDENCE = 85
WATCHER_REQUIRED_CONFIDENCE = 90

# ============================================================
# VERSION
# ============================================================
VERSION = "1.0.0"


def setup_logging(level: str = None):
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
        level=level or LOG_LEVEL,
        colorize=True,
    )
