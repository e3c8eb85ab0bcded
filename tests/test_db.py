"""
Tests for the JSON file store, learning store and event log.
"""
import asyncio
import json

from ledgerpilot.db import EventLog, JsonFileStore, LearningStore

from fakes import history_record


def _record(category, confidence, timestamp, tags=()):
    record = history_record(category=category, confidence=confidence, timestamp=timestamp)
    record["tags"] = list(tags)
    return record


class TestJsonFileStore:

    def test_file_backend_persists(self, tmp_path):
        path = tmp_path / "ledger.json"
        store = JsonFileStore(path, persist=True)
        store.append("events", {"id": "e1"})
        store.append("learning_records", {"id": "r1"})

        data = json.loads(path.read_text())
        assert data["events"] == [{"id": "e1"}]
        assert JsonFileStore(path, persist=True).collection("learning_records") == [{"id": "r1"}]
        assert (tmp_path / "ledger.lock").exists()

    def test_unreadable_file_starts_fresh(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text("{not json")
        store = JsonFileStore(path, persist=True)
        assert store.load() == {"learning_records": [], "events": []}

    def test_missing_collections_filled_in(self, tmp_path):
        path = tmp_path / "ledger.json"
        path.write_text('{"events": [{"id": "e0"}]}')
        db = JsonFileStore(path, persist=True).load()
        assert db["learning_records"] == []
        assert db["events"] == [{"id": "e0"}]

    def test_memory_backend_writes_nothing(self, tmp_path):
        path = tmp_path / "ledger.json"
        store = JsonFileStore(path, persist=False)
        store.append("events", {"id": "e1"})
        assert store.collection("events") == [{"id": "e1"}]
        assert not path.exists()


class TestLearningStore:

    def setup_method(self):
        self.store = LearningStore(JsonFileStore(persist=False))

    def _fill(self):
        for record in [
            _record("invoice_generation", 90, "2026-02-01T00:00:00+00:00"),
            _record("invoice_generation", 70, "2026-03-01T00:00:00+00:00", ["human_review"]),
            _record("fraud_check", 40, "2026-02-15T00:00:00+00:00"),
            _record("invoice_generation", 80, "2026-01-01T00:00:00+00:00"),
        ]:
            asyncio.run(self.store.append(record))

    def test_query_filters_and_orders(self):
        self._fill()
        newest = asyncio.run(self.store.query("invoice_generation", 2))
        assert [r["confidence"] for r in newest] == [70, 90]
        oldest = asyncio.run(self.store.query("invoice_generation", 10, most_recent_first=False))
        assert [r["confidence"] for r in oldest] == [80, 90, 70]

    def test_stats(self):
        self._fill()
        stats = self.store.stats()
        assert stats["totalRecords"] == 4
        assert stats["byCategory"]["invoice_generation"] == {"count": 3, "avgConfidence": 80.0, "humanReview": 1}
        assert stats["byCategory"]["fraud_check"]["count"] == 1

    def test_empty_stats(self):
        assert self.store.stats() == {"totalRecords": 0, "byCategory": {}}


class TestEventLog:

    def test_publish_and_recent(self):
        log = EventLog(JsonFileStore(persist=False))
        asyncio.run(log.publish("HumanReviewRequired", {"n": 1}))
        asyncio.run(log.publish("InvoiceNotificationSent", {"n": 2}))
        asyncio.run(log.publish("HumanReviewRequired", {"n": 3}))

        reviews = log.recent("HumanReviewRequired")
        assert [e["payload"]["n"] for e in reviews] == [3, 1]
        assert reviews[0]["id"].startswith("evt-")
        assert len(log.recent()) == 3
        assert log.recent(limit=1)[0]["payload"] == {"n": 3}
