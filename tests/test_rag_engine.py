"""
Tests for the local knowledge base: chunking, TF-IDF embeddings and retrieval.
"""
import asyncio

import numpy as np
import pytest

from ledgerpilot.rag_engine import (
    MAX_CHUNK_WORDS, KnowledgeBase, TFIDFEmbedder, VectorStore, _split_long, chunk_knowledge,
)

VAT_DOC = {
    "id": "de-vat",
    "title": "German VAT",
    "source": "BZSt",
    "country": "DE",
    "topic": "tax",
    "content": ("Standard VAT rate in Germany is 19 percent for most goods.\n\n"
                "Reduced VAT rate of 7 percent applies to books and food."),
}

FRAUD_DOC = {
    "id": "card-testing",
    "title": "Card testing",
    "topic": "fraud",
    "content": "Many small gift card purchases within one hour suggest card testing fraud.",
}


def _kb(tmp_path=None):
    store = VectorStore(tmp_path, persist=tmp_path is not None)
    return KnowledgeBase(store, TFIDFEmbedder(), use_voyage=False)


class TestChunking:

    def test_paragraph_chunks_with_metadata(self):
        chunks = chunk_knowledge(VAT_DOC)
        assert [c["id"] for c in chunks] == ["de-vat_p0", "de-vat_p1"]
        assert chunks[0]["text"].startswith("German VAT: Standard VAT rate")
        assert chunks[1]["metadata"] == {"documentId": "de-vat", "source": "BZSt", "title": "German VAT",
                                         "country": "DE", "topic": "tax"}

    def test_source_defaults_to_title(self):
        assert chunk_knowledge(FRAUD_DOC)[0]["metadata"]["source"] == "Card testing"

    def test_generated_id_and_empty_content(self):
        assert chunk_knowledge({"content": "one"})[0]["metadata"]["documentId"].startswith("kb-")
        assert chunk_knowledge({"title": "t", "content": "  \n\n "}) == []

    def test_long_paragraph_split_with_overlap(self):
        words = [f"w{i}" for i in range(500)]
        parts = _split_long(" ".join(words))
        assert len(parts) == 3
        assert all(len(p.split()) <= MAX_CHUNK_WORDS for p in parts)
        assert parts[1].split()[0] == "w180"
        assert parts[-1].split()[-1] == "w499"


class TestTFIDFEmbedder:

    def test_normalized_fixed_dimension(self):
        embedder = TFIDFEmbedder(dim=64)
        embedder.fit(["vat rate germany", "gift card fraud"])
        vec = embedder.embed("vat rate")
        assert len(vec) == 64
        assert np.linalg.norm(vec) == pytest.approx(1.0)

    def test_unknown_words_give_zero_vector(self):
        embedder = TFIDFEmbedder(dim=16)
        embedder.fit(["alpha beta"])
        assert not any(embedder.embed("gamma"))


class TestKnowledgeBase:

    def test_ingest_and_retrieve(self):
        kb = _kb()
        assert asyncio.run(kb.ingest(VAT_DOC)) == {"documentId": "de-vat", "chunks": 2}
        asyncio.run(kb.ingest(FRAUD_DOC))

        hits = asyncio.run(kb.retrieve("gift card fraud within one hour", top_k=2))
        assert hits[0]["source"] == "Card testing"
        assert set(hits[0]) == {"content", "score", "source"}

        hits = asyncio.run(kb.retrieve("reduced VAT rate for books", top_k=1))
        assert "Reduced VAT rate" in hits[0]["content"]

    def test_reingest_replaces_document(self):
        kb = _kb()
        asyncio.run(kb.ingest(VAT_DOC))
        asyncio.run(kb.ingest({**VAT_DOC, "content": "Only one paragraph now."}))
        assert kb.stats()["total_chunks"] == 1
        assert kb.stats()["total_vectors"] == 1

    def test_unrelated_query_returns_nothing(self):
        kb = _kb()
        asyncio.run(kb.ingest(FRAUD_DOC))
        assert asyncio.run(kb.retrieve("zzz qqq")) == []

    def test_empty_store(self):
        assert asyncio.run(_kb().retrieve("anything")) == []

    def test_stats(self):
        kb = _kb()
        asyncio.run(kb.ingest(VAT_DOC))
        asyncio.run(kb.ingest(FRAUD_DOC))
        stats = kb.stats()
        assert stats["unique_documents"] == 2
        assert stats["unique_countries"] == 1
        assert stats["topics"] == {"tax": 2, "fraud": 1}
        assert stats["embedding"] == "tfidf"

    def test_persisted_store_reloads(self, tmp_path):
        kb = _kb(tmp_path)
        asyncio.run(kb.ingest(VAT_DOC))
        reloaded = KnowledgeBase(VectorStore(tmp_path, persist=True), TFIDFEmbedder(), use_voyage=False)
        hits = asyncio.run(reloaded.retrieve("standard VAT rate Germany", top_k=1))
        assert hits and hits[0]["source"] == "BZSt"

    def test_clear(self):
        kb = _kb()
        asyncio.run(kb.ingest(VAT_DOC))
        kb.clear()
        assert kb.stats()["total_chunks"] == 0
