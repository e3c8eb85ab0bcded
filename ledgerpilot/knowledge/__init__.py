"""
LedgerPilot — Knowledge Retriever

Turns a decision request into 1-3 category-specific semantic queries, fans
them out to the retrieval service and returns ranked snippets tagged with the
query that produced them.

Retrieval is optional context: any failure yields an empty result.
"""
import asyncio

from loguru import logger

from ledgerpilot.config import KNOWLEDGE_TOP_K, MAX_KNOWLEDGE_QUERIES, RETRIEVAL_TIMEOUT_S
from ledgerpilot.models import DecisionRequest, KnowledgeResult, KnowledgeSnippet, _n


def build_queries(request: DecisionRequest) -> list:
    """Render the category's query templates from payload fields."""
    queries = []
    for template, required in request.category.query_templates:
        if required and not request.payload.get(required):
            continue
        queries.append(template.format(**{k: request.payload.get(k, "") for k in ("country", "productCategory")}))
    return queries[:MAX_KNOWLEDGE_QUERIES]


class KnowledgeRetriever:
    def __init__(self, service, top_k: int = KNOWLEDGE_TOP_K, timeout_s: float = RETRIEVAL_TIMEOUT_S):
        self.service = service
        self.top_k = top_k
        self.timeout_s = timeout_s

    async def _query(self, query: str) -> list:
        logger.debug(f"[Knowledge] Querying: \"{query}\"")
        hits = await asyncio.wait_for(self.service.retrieve(query, self.top_k), self.timeout_s)
        return [KnowledgeSnippet(content=str(h.get("content") or ""),
                                 score=_n(h.get("score")),
                                 source=str(h.get("source") or "unknown"),
                                 query=query)
                for h in (hits or [])]

    async def retrieve(self, request: DecisionRequest) -> KnowledgeResult:
        queries = build_queries(request)
        if not queries or self.service is None:
            return KnowledgeResult.empty()
        batches = await asyncio.gather(*(self._query(q) for q in queries), return_exceptions=True)
        failed = [b for b in batches if isinstance(b, BaseException)]
        if failed:
            e = failed[0]
            logger.warning(f"[Knowledge] Retrieval failed ({type(e).__name__}: {e}), continuing without context")
            return KnowledgeResult.empty()

        snippets = [s for batch in batches for s in batch]
        logger.info(f"[Knowledge] Retrieved {len(snippets)} snippets for {len(queries)} queries")
        return KnowledgeResult(queries=queries, snippets=snippets)
