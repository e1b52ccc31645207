from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

ScoreKind = Literal["similarity", "keyword", "rrf", "rerank"]


@dataclass(frozen=True, slots=True)
class Query:
    """One chat turn's retrieval request, scoped to a user's documents."""

    text: str
    user_id: str
    document_ids: tuple[str, ...] = ()
    rewritten: str | None = None
    retry_count: int = 0

    @property
    def effective_text(self) -> str:
        return self.rewritten or self.text


@dataclass(slots=True)
class Passage:
    """Page-level chunk of a source document returned by retrieval.

    ``score`` always holds the score written by the most recent pipeline
    stage; ``score_kind`` records which stage that was.
    """

    id: str
    text: str
    title: str
    page: int
    score: float
    score_kind: ScoreKind = "similarity"
    total_pages: int | None = None
    rerank_score: float | None = None
    timestamp: str | None = None
    ai_title: str | None = None
    ai_description: str | None = None
    ai_maintopics: str | None = None
    ai_keyentities: str | None = None

    @property
    def key(self) -> tuple[str, int]:
        """Deduplication identity within a user's corpus."""
        return (self.title, self.page)


@dataclass(slots=True)
class RetrievalResult:
    """Ranked passages produced by one search, with provenance."""

    passages: list[Passage] = field(default_factory=list)
    search_method: str = "hybrid_search_with_rrf"
    reranking_applied: bool = False
    no_documents: bool = False


@dataclass(slots=True)
class ContextItem:
    """Passage rendered for the answer generator and the chat UI."""

    title: str
    page: int
    content: str
    pdf_link: str
    type: str = "document"
    ai_title: str | None = None
    total_pages: int | None = None
    relevance_score: float | None = None


@dataclass(slots=True)
class SearchMetadata:
    total_results: int
    search_method: str
    reranking_applied: bool


@dataclass(slots=True)
class DocumentSearchOutput:
    """Complete payload returned by the document search tool."""

    instructions: str
    context: list[ContextItem]
    search_metadata: SearchMetadata
