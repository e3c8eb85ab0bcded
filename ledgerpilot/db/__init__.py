"""
LedgerPilot — Database Layer
File-based JSON store for the learning loop and the event log.

Collections:
  learning_records — append-only decision records read back by the History Analyzer
  events           — published events ({id, topic, payload, timestamp})

Reads take a shared fcntl lock and writes an exclusive one, so several
worker processes can share one file. With PERSIST_DATA=false the store
lives in memory only.
"""
import fcntl
import json
import uuid
from collections import Counter
from pathlib import Path

from loguru import logger

from ledgerpilot.config import DB_PATH, PERSIST_DATA
from ledgerpilot.models import _n, _now

# ============================================================
# EMPTY DB SCHEMA
# ============================================================
EMPTY_DB = {"learning_records": [], "events": []}


def _fresh_db():
    """Return a fresh empty database."""
    return json.loads(json.dumps(EMPTY_DB))


# ============================================================
# FILE BACKEND
# ============================================================
class JsonFileStore:
    def __init__(self, path: Path = None, persist: bool = PERSIST_DATA):
        self.path = Path(path or DB_PATH)
        self.persist = persist
        self.lock_path = self.path.with_suffix(".lock")
        self._memory = _fresh_db()
        if self.persist:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"[DB] Using {'file backend (' + self.path.name + ')' if persist else 'in-memory backend'}")

    def _read_file(self) -> dict:
        if not self.path.exists():
            return _fresh_db()
        try:
            with open(self.path) as f:
                db = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"[DB] Unreadable store {self.path}: {e}, starting fresh")
            return _fresh_db()
        for k in EMPTY_DB:
            if k not in db:
                db[k] = []
        return db

    def load(self) -> dict:
        if not self.persist:
            return self._memory
        # Shared lock so a reader never sees a half-written file
        with open(self.lock_path, "a+") as lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_SH)
            try:
                return self._read_file()
            finally:
                fcntl.flock(lock_file, fcntl.LOCK_UN)

    def append(self, collection: str, item: dict) -> dict:
        """Append one item to a collection under an exclusive lock."""
        if not self.persist:
            self._memory.setdefault(collection, []).append(item)
            return item
        with open(self.lock_path, "a+") as lock_file:
            fcntl.flock(lock_file, fcntl.LOCK_EX)
            try:
                db = self._read_file()
                db.setdefault(collection, []).append(item)
                with open(self.path, "w") as f:
                    json.dump(db, f, indent=2, default=str)
            finally:
                fcntl.flock(lock_file, fcntl.LOCK_UN)
        return item

    def collection(self, name: str) -> list:
        return list(self.load().get(name, []))


# ============================================================
# LEARNING STORE (HistoryStore)
# ============================================================
class LearningStore:
    def __init__(self, store: JsonFileStore):
        self.store = store

    async def append(self, record: dict) -> None:
        self.store.append("learning_records", record)

    async def query(self, category: str, limit: int, most_recent_first: bool = True) -> list:
        records = [r for r in self.store.collection("learning_records") if r.get("category") == category]
        records.sort(key=lambda r: r.get("timestamp") or "", reverse=most_recent_first)
        return records[:limit]

    def stats(self) -> dict:
        records = self.store.collection("learning_records")
        by_category = {}
        for category, count in Counter(r.get("category") for r in records).items():
            subset = [r for r in records if r.get("category") == category]
            by_category[category] = {
                "count": count,
                "avgConfidence": round(sum(_n(r.get("confidence")) for r in subset) / count, 1),
                "humanReview": sum(1 for r in subset if "human_review" in (r.get("tags") or [])),
            }
        return {"totalRecords": len(records), "byCategory": by_category}


# ============================================================
# EVENT LOG (EventSink)
# ============================================================
class EventLog:
    def __init__(self, store: JsonFileStore):
        self.store = store

    async def publish(self, topic: str, payload: dict) -> None:
        event = {"id": f"evt-{uuid.uuid4().hex[:12]}", "topic": topic, "payload": payload, "timestamp": _now()}
        self.store.append("events", event)
        logger.info(f"[Events] {topic} published ({event['id']})")

    def recent(self, topic: str = None, limit: int = 50) -> list:
        events = [e for e in self.store.collection("events") if topic is None or e.get("topic") == topic]
        return events[-limit:][::-1]
