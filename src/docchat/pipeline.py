from __future__ import annotations

import asyncio
import logging
from typing import Sequence

from opentelemetry import trace

from .embeddings import OpenAIQueryEmbedder, QueryEmbedder
from .reranking import PassThroughReranker, build_reranker
from .retrieval import keyword_search, reciprocal_rank_fusion
from .schema import Passage, Query, RetrievalResult
from .settings import RetrievalSettings, Settings
from .tracing import ATTR_EMBEDDING_MODEL_NAME, ATTR_RETRIEVAL_DOCUMENTS, get_tracer
from .vector_store import VectorIndex, VectorRetriever

logger = logging.getLogger(__name__)

HYBRID_METHOD = "hybrid_search_with_rrf"
NO_DOCUMENTS_METHOD = "none"


def no_documents_result() -> RetrievalResult:
    return RetrievalResult(
        passages=[],
        search_method=NO_DOCUMENTS_METHOD,
        reranking_applied=False,
        no_documents=True,
    )


def merge_query_results(results: Sequence[RetrievalResult], limit: int | None = None) -> RetrievalResult:
    """Merge independent searches for different formulations of one question.

    Passages are concatenated in input order, deduplicated by ``(title, page)``
    (first occurrence wins), then sorted by current score, best first.

    Args:
        results: One result per query formulation.
        limit: Optional cap on the merged passage count.

    Returns:
        A single RetrievalResult. Reranking counts as applied only if every
        branch applied it.
    """
    seen: set[tuple[str, int]] = set()
    merged: list[Passage] = []
    for result in results:
        for passage in result.passages:
            if passage.key in seen:
                continue
            seen.add(passage.key)
            merged.append(passage)

    merged.sort(key=lambda passage: passage.score, reverse=True)
    if limit is not None:
        merged = merged[:limit]

    return RetrievalResult(
        passages=merged,
        search_method=HYBRID_METHOD,
        reranking_applied=bool(results) and all(result.reranking_applied for result in results),
        no_documents=bool(results) and all(result.no_documents for result in results),
    )


class HybridSearcher:
    """Vector search, fuzzy keyword rescue, RRF fusion and reranking in one call."""

    def __init__(
        self,
        embedder: QueryEmbedder,
        retriever: VectorRetriever,
        reranker: PassThroughReranker | None = None,
        settings: RetrievalSettings | None = None,
        tracer: trace.Tracer | None = None,
        rrf_k: int = 60,
    ):
        self.embedder = embedder
        self.retriever = retriever
        self.reranker = reranker or PassThroughReranker()
        self.settings = settings or RetrievalSettings()
        self.tracer = tracer or get_tracer(__name__)
        self.rrf_k = rrf_k

    async def hybrid_search(
        self,
        query: str,
        user_id: str,
        document_ids: Sequence[str],
        top_k: int | None = None,
    ) -> RetrievalResult:
        """Run the full hybrid pipeline for one query formulation.

        Steps run strictly in order: embed, vector search, keyword search over
        the vector results, RRF fusion of both lists, rerank of the fused head.

        Args:
            query: Query text.
            user_id: Owner of the searchable documents.
            document_ids: Authorized document scope. Empty means nothing to search.
            top_k: Vector search cap; defaults to the configured ``top_k``.

        Returns:
            RetrievalResult with at most ``rerank_top_n`` passages.

        Raises:
            ProviderError: If embedding or the vector index fails.
        """
        if not document_ids:
            logger.info("No documents in scope for user %s", user_id)
            return no_documents_result()

        if top_k is None:
            top_k = self.settings.top_k

        with self.tracer.start_as_current_span("embed") as span:
            model_name = getattr(self.embedder, "model", None)
            if model_name:
                span.set_attribute(ATTR_EMBEDDING_MODEL_NAME, model_name)
            query_vector = await self.embedder.embed(query)

        with self.tracer.start_as_current_span("vector_search") as span:
            vector_results = await self.retriever.search(
                query_vector,
                user_id,
                document_ids,
                top_k=top_k,
                similarity_threshold=self.settings.similarity_threshold,
            )
            span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(vector_results))

        with self.tracer.start_as_current_span("keyword_search") as span:
            keyword_results = keyword_search(query, vector_results)
            span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(keyword_results))

        with self.tracer.start_as_current_span("rank_fusion") as span:
            fused = reciprocal_rank_fusion([vector_results, keyword_results], k=self.rrf_k)
            span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(fused))

        with self.tracer.start_as_current_span("rerank") as span:
            outcome = await self.reranker.rerank_with_outcome(query, fused, top_n=self.settings.rerank_top_n)
            span.set_attribute(ATTR_RETRIEVAL_DOCUMENTS, len(outcome.passages))

        logger.debug(
            "Hybrid search: %d vector, %d keyword, %d fused, %d final (reranked=%s)",
            len(vector_results),
            len(keyword_results),
            len(fused),
            len(outcome.passages),
            outcome.applied,
        )
        return RetrievalResult(
            passages=outcome.passages,
            search_method=HYBRID_METHOD,
            reranking_applied=outcome.applied,
        )

    async def search(self, query: Query, top_k: int | None = None) -> RetrievalResult:
        """Hybrid search for a `Query`, using its rewritten text when present."""
        return await self.hybrid_search(query.effective_text, query.user_id, query.document_ids, top_k=top_k)

    async def multi_query_search(
        self,
        queries: Sequence[str],
        user_id: str,
        document_ids: Sequence[str],
        top_k: int | None = None,
        limit: int | None = None,
    ) -> RetrievalResult:
        """Search several formulations concurrently and merge the results.

        All branches must finish before merging; the first failure propagates.

        Args:
            queries: Query formulations, e.g. the tool query and the latest user message.
            user_id: Owner of the searchable documents.
            document_ids: Authorized document scope.
            top_k: Vector search cap per formulation.
            limit: Final merged size; defaults to the configured ``context_size``.
        """
        if not document_ids:
            logger.info("No documents in scope for user %s", user_id)
            return no_documents_result()

        branches = await asyncio.gather(
            *(self.hybrid_search(query, user_id, document_ids, top_k=top_k) for query in queries)
        )
        for query, branch in zip(queries, branches):
            logger.debug("Formulation %r returned %d passages", query[:80], len(branch.passages))
        return merge_query_results(branches, limit=limit or self.settings.context_size)


def build_hybrid_searcher(
    settings: Settings,
    index: VectorIndex,
    tracer: trace.Tracer | None = None,
) -> HybridSearcher:
    """Wire a HybridSearcher from settings around an existing vector index."""
    embedder = OpenAIQueryEmbedder(
        model=settings.openai.embedding_model,
        dimensions=settings.openai.embedding_dimensions,
    )
    return HybridSearcher(
        embedder=embedder,
        retriever=VectorRetriever(index),
        reranker=build_reranker(settings.rerank),
        settings=settings.retrieval,
        tracer=tracer,
    )
