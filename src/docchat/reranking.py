from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace

import cohere
from sentence_transformers import CrossEncoder

from .schema import Passage
from .settings import RerankSettings

logger = logging.getLogger(__name__)

# Per-document character cap sent to the rerank service (~1000 tokens).
MAX_RERANK_CHARS = 4000


@dataclass(slots=True)
class RerankOutcome:
    """Reranked passages plus whether the reranker actually ran."""

    passages: list[Passage]
    applied: bool


def _with_rerank_score(passage: Passage, relevance: float) -> Passage:
    return replace(passage, score=relevance, rerank_score=relevance, score_kind="rerank")


class PassThroughReranker:
    """Reranker used when no reranking backend is available.

    Keeps the incoming order and truncates to ``top_n``.
    """

    available = False

    async def rerank_with_outcome(self, query: str, passages: list[Passage], top_n: int = 15) -> RerankOutcome:
        return RerankOutcome(passages=passages[:top_n], applied=False)

    async def rerank(self, query: str, passages: list[Passage], top_n: int = 15) -> list[Passage]:
        return (await self.rerank_with_outcome(query, passages, top_n)).passages


class CohereReranker(PassThroughReranker):
    """Second-stage reranker backed by the Cohere rerank API.

    Without an API key this behaves exactly like `PassThroughReranker`.
    Service errors are logged and also fall back to the incoming order.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "rerank-english-v3.0",
        client=None,
        max_chars: int = MAX_RERANK_CHARS,
    ):
        """Configure the Cohere reranker.

        Args:
            api_key: Cohere credential; ``None`` or empty disables reranking.
            model: Cohere rerank model identifier.
            client: Pre-built async Cohere client, mainly for tests.
            max_chars: Characters of each passage sent to the service.
        """
        self.api_key = api_key or None
        self.model = model
        self.max_chars = max_chars
        self._client = client

    @property
    def available(self) -> bool:
        return self.api_key is not None

    @property
    def client(self):
        if self._client is None:
            self._client = cohere.AsyncClientV2(api_key=self.api_key)
        return self._client

    async def rerank_with_outcome(self, query: str, passages: list[Passage], top_n: int = 15) -> RerankOutcome:
        """Reorder passages by cross-encoder relevance.

        Args:
            query: User query string.
            passages: Fused candidates, best first.
            top_n: Number of passages to return.

        Returns:
            RerankOutcome whose passages carry rerank scores when ``applied``.
        """
        if not self.available:
            logger.warning("COHERE_API_KEY not set, skipping reranking")
            return await super().rerank_with_outcome(query, passages, top_n)
        if not passages:
            return RerankOutcome(passages=[], applied=True)

        try:
            response = await self.client.rerank(
                model=self.model,
                query=query,
                documents=[passage.text[: self.max_chars] for passage in passages],
                top_n=min(top_n, len(passages)),
            )
        except Exception as exc:  # noqa: BLE001 - reranking is best-effort
            logger.warning("Reranking failed, using original order", exc_info=exc)
            return RerankOutcome(passages=passages[:top_n], applied=False)

        reranked = [
            _with_rerank_score(passages[result.index], float(result.relevance_score))
            for result in response.results
        ]
        return RerankOutcome(passages=reranked, applied=True)


class LocalCrossEncoderReranker(PassThroughReranker):
    """Second-stage reranker using a local sentence-transformers cross-encoder."""

    available = True

    def __init__(self, model_name: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"):
        """Initialize the cross-encoder used for pairwise query-passage scoring.

        Args:
            model_name: Sentence-transformers cross-encoder model identifier.
        """
        self.model = CrossEncoder(model_name)

    async def rerank_with_outcome(self, query: str, passages: list[Passage], top_n: int = 15) -> RerankOutcome:
        if not passages:
            return RerankOutcome(passages=[], applied=True)

        pairs = [[query, passage.text[:MAX_RERANK_CHARS]] for passage in passages]
        try:
            scores = await asyncio.to_thread(self.model.predict, pairs)
        except Exception as exc:  # noqa: BLE001 - reranking is best-effort
            logger.warning("Local reranking failed, using original order", exc_info=exc)
            return RerankOutcome(passages=passages[:top_n], applied=False)

        ranked = sorted(
            (
                _with_rerank_score(passage, float(score))
                for passage, score in zip(passages, scores, strict=True)
            ),
            key=lambda passage: passage.score,
            reverse=True,
        )
        return RerankOutcome(passages=ranked[:top_n], applied=True)


def build_reranker(settings: RerankSettings) -> PassThroughReranker:
    """Pick the reranking backend named by ``settings.provider``."""
    if settings.provider == "local":
        return LocalCrossEncoderReranker(model_name=settings.local_model)
    if settings.provider == "cohere":
        return CohereReranker(api_key=settings.cohere_api_key, model=settings.cohere_model)
    raise ValueError(f"Unknown rerank provider '{settings.provider}'. Expected 'cohere' or 'local'.")
