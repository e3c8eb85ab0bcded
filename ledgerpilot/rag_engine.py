"""
LedgerPilot RAG Engine — Local Knowledge Base for Decision Context
==================================================================

Architecture:
  1. INGEST: Knowledge documents (tax rules, invoicing requirements, fraud
     guidance, compliance notes) are chunked into paragraphs and embedded.
     Stored in a local vector store (JSON + numpy).

  2. RETRIEVE: The Knowledge Retriever sends each templated query here;
     the top matches come back as {content, score, source}.

Embedding options:
  - Voyage (voyage-3-lite) over httpx — high quality, requires VOYAGE_API_KEY
  - Local TF-IDF fallback — works offline

Vector store: Local JSON files with numpy cosine similarity search.
"""
import json
import math
import os
import re
import uuid
from collections import Counter
from datetime import datetime
from pathlib import Path

import httpx
import numpy as np
from loguru import logger

from ledgerpilot.config import RAG_DIR, PERSIST_DATA

USE_VOYAGE = bool(os.environ.get("VOYAGE_API_KEY"))
VOYAGE_URL = "https://api.voyageai.com/v1/embeddings"
VOYAGE_MODEL = os.environ.get("VOYAGE_MODEL", "voyage-3-lite")

# Chunk size targets
MAX_CHUNK_WORDS = 220
OVERLAP_WORDS = 40

MIN_SIMILARITY = 0.05


# ============================================================
# VECTOR STORE
# ============================================================
class VectorStore:
    """Knowledge chunks and their vectors, persisted as two JSON files.
    Brute-force cosine search; fine for a few thousand chunks."""

    def __init__(self, directory: Path = None, persist: bool = PERSIST_DATA):
        self.directory = Path(directory or RAG_DIR)
        self.persist = persist
        self.chunk_path = self.directory / "chunks.json"
        self.vector_path = self.directory / "vectors.json"
        if self.persist:
            self.directory.mkdir(parents=True, exist_ok=True)
        self.chunks = self._read_json(self.chunk_path) or []
        self.vectors = {cid: np.asarray(v, dtype=float)
                        for cid, v in (self._read_json(self.vector_path) or {}).items()}

    def _read_json(self, path: Path):
        if not (self.persist and path.exists()):
            return None
        return json.loads(path.read_text())

    def save(self):
        if not self.persist:
            return
        self.chunk_path.write_text(json.dumps(self.chunks, indent=2, default=str))
        self.vector_path.write_text(json.dumps({cid: v.tolist() for cid, v in self.vectors.items()}))

    def add(self, chunk_id: str, text: str, embedding: list, metadata: dict):
        self.chunks = [c for c in self.chunks if c["id"] != chunk_id]
        self.chunks.append({"id": chunk_id, "text": text, "metadata": metadata,
                            "addedAt": datetime.now().isoformat()})
        self.set_vector(chunk_id, embedding)

    def set_vector(self, chunk_id: str, embedding: list):
        self.vectors[chunk_id] = np.asarray(embedding, dtype=float)

    def search(self, query_embedding: list, top_k: int = 5) -> list:
        """Top_k (similarity, chunk) pairs by cosine similarity, best first."""
        query = np.asarray(query_embedding, dtype=float)
        q_norm = np.linalg.norm(query)
        if q_norm == 0:
            return []

        # Vectors from another embedding model have a different shape
        candidates = [c for c in self.chunks
                      if c["id"] in self.vectors and self.vectors[c["id"]].shape == query.shape]
        if not candidates:
            return []
        matrix = np.stack([self.vectors[c["id"]] for c in candidates])
        norms = np.linalg.norm(matrix, axis=1)
        sims = np.divide(matrix @ query, norms * q_norm, out=np.zeros(len(candidates)), where=norms > 0)

        order = np.argsort(-sims, kind="stable")[:top_k]
        return [(float(sims[i]), candidates[i]) for i in order if norms[i] > 0]

    def delete_by_document(self, document_id: str):
        keep, dropped = [], []
        for c in self.chunks:
            (dropped if c.get("metadata", {}).get("documentId") == document_id else keep).append(c)
        self.chunks = keep
        for c in dropped:
            self.vectors.pop(c["id"], None)

    def stats(self):
        meta = [c.get("metadata", {}) for c in self.chunks]
        return {
            "total_chunks": len(self.chunks),
            "total_vectors": len(self.vectors),
            "unique_documents": len({m.get("documentId", "") for m in meta}),
            "unique_countries": len({m.get("country") for m in meta if m.get("country")}),
            "topics": dict(Counter(m.get("topic", "") for m in meta)),
        }

    def clear(self):
        self.chunks, self.vectors = [], {}
        self.save()


# ============================================================
# EMBEDDINGS
# ============================================================
TOKEN_RE = re.compile(r"\b[a-z0-9]+\b")


class TFIDFEmbedder:
    """Offline fallback embedder. The vocabulary is the `dim` most common
    words of the fitted corpus; vectors from different fits are not
    comparable, so the knowledge base refits and re-embeds on ingest."""

    def __init__(self, dim: int = 512):
        self.dim = dim
        self.vocab = {}
        self.idf = np.ones(dim)
        self._fitted = False

    def _tokenize(self, text: str) -> list:
        return TOKEN_RE.findall(text.lower())

    def fit(self, corpus: list):
        doc_freq = Counter(w for text in corpus for w in set(self._tokenize(text)))
        ranked = sorted(doc_freq.items(), key=lambda kv: (-kv[1], kv[0]))[:self.dim]
        self.vocab = {w: i for i, (w, _) in enumerate(ranked)}
        self.idf = np.ones(self.dim)
        n_docs = len(corpus) + 1
        for w, i in self.vocab.items():
            self.idf[i] = math.log(n_docs / (doc_freq[w] + 1)) + 1.0
        self._fitted = True

    def embed(self, text: str) -> list:
        if not self._fitted:
            self.fit([text])
        counts = Counter(self._tokenize(text))
        vec = np.zeros(self.dim)
        if not counts:
            return vec.tolist()
        peak = max(counts.values())
        for word, count in counts.items():
            i = self.vocab.get(word)
            if i is not None:
                # augmented term frequency
                vec[i] = (0.5 + 0.5 * count / peak) * self.idf[i]
        norm = np.linalg.norm(vec)
        return (vec / norm if norm > 0 else vec).tolist()

    def embed_batch(self, texts: list) -> list:
        return [self.embed(t) for t in texts]


async def embed_with_voyage(texts: list) -> list:
    """Voyage embedding API. Returns None on failure so callers can fall back."""
    headers = {"Authorization": f"Bearer {os.environ.get('VOYAGE_API_KEY', '')}"}
    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(VOYAGE_URL, headers=headers,
                                         json={"model": VOYAGE_MODEL, "input": texts})
        if response.status_code == 200:
            return [d["embedding"] for d in response.json()["data"]]
        logger.warning(f"[RAG] Voyage returned HTTP {response.status_code}, falling back to TF-IDF")
    except httpx.HTTPError as e:
        logger.warning(f"[RAG] Voyage embedding error: {e}, falling back to TF-IDF")
    return None


# ============================================================
# DOCUMENT CHUNKING
# ============================================================
def _split_long(paragraph: str) -> list:
    words = paragraph.split()
    if len(words) <= MAX_CHUNK_WORDS:
        return [paragraph]
    parts = []
    step = MAX_CHUNK_WORDS - OVERLAP_WORDS
    for start in range(0, len(words), step):
        parts.append(" ".join(words[start:start + MAX_CHUNK_WORDS]))
        if start + MAX_CHUNK_WORDS >= len(words):
            break
    return parts


def chunk_knowledge(doc: dict) -> list:
    """Break a knowledge document into paragraph chunks.

    doc: {id?, title, content, source?, country?, topic?}. The title is
    prefixed to each chunk so short paragraphs keep their subject.
    """
    doc_id = doc.get("id") or f"kb-{uuid.uuid4().hex[:10]}"
    title = (doc.get("title") or "").strip()
    source = doc.get("source") or title or doc_id
    paragraphs = [p.strip() for p in re.split(r"\n\s*\n", doc.get("content") or "") if p.strip()]

    chunks = []
    for para in paragraphs:
        for part in _split_long(para):
            text = f"{title}: {part}" if title else part
            chunks.append({
                "id": f"{doc_id}_p{len(chunks)}",
                "text": text,
                "metadata": {"documentId": doc_id, "source": source, "title": title,
                             "country": doc.get("country"), "topic": doc.get("topic", "general")},
            })
    return chunks


# ============================================================
# KNOWLEDGE BASE (RetrievalService)
# ============================================================
class KnowledgeBase:
    def __init__(self, store: VectorStore = None, embedder: TFIDFEmbedder = None, use_voyage: bool = USE_VOYAGE):
        self.store = store or VectorStore()
        self.embedder = embedder or TFIDFEmbedder()
        self.use_voyage = use_voyage
        if self.store.chunks:
            self.embedder.fit([c["text"] for c in self.store.chunks])

    async def _embed(self, texts: list) -> list:
        if self.use_voyage:
            vectors = await embed_with_voyage(texts)
            if vectors is not None:
                return vectors
        return self.embedder.embed_batch(texts)

    def _reindex_local(self):
        """Refit TF-IDF on every chunk and re-embed so all vectors share one vocabulary."""
        texts = [c["text"] for c in self.store.chunks]
        self.embedder.fit(texts)
        for chunk in self.store.chunks:
            self.store.set_vector(chunk["id"], self.embedder.embed(chunk["text"]))

    async def ingest(self, doc: dict) -> dict:
        """Chunk a knowledge document and add all chunks to the vector store."""
        chunks = chunk_knowledge(doc)
        if not chunks:
            return {"documentId": doc.get("id"), "chunks": 0}
        doc_id = chunks[0]["metadata"]["documentId"]
        self.store.delete_by_document(doc_id)

        embeddings = await self._embed([c["text"] for c in chunks])
        for chunk, embedding in zip(chunks, embeddings):
            self.store.add(chunk["id"], chunk["text"], embedding, chunk["metadata"])
        if not self.use_voyage:
            self._reindex_local()
        self.store.save()

        logger.info(f"[RAG] Ingested '{doc_id}' ({len(chunks)} chunks)")
        return {"documentId": doc_id, "chunks": len(chunks)}

    async def retrieve(self, query: str, top_k: int = 5) -> list:
        """Top matches for query as [{content, score, source}]."""
        if not self.store.chunks:
            return []
        query_vec = (await self._embed([query]))[0]
        hits = []
        for sim, chunk in self.store.search(query_vec, top_k=top_k):
            if sim < MIN_SIMILARITY:  # Skip very low similarity
                continue
            hits.append({"content": chunk["text"], "score": round(sim, 4),
                         "source": chunk.get("metadata", {}).get("source", "knowledge_base")})
        return hits

    def stats(self) -> dict:
        return {**self.store.stats(), "embedding": "voyage" if self.use_voyage else "tfidf"}

    def clear(self):
        self.store.clear()
