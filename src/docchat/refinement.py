"""Relevance-gated retrieval loop.

A small finite-state machine around plain vector retrieval:

  RETRIEVE -> GRADE -> (REWRITE -> RETRIEVE | OUTPUT)

GRADE scores the aggregate relevance of what was retrieved. When the score
is low the question is expanded with a templated suffix and retrieval runs
again, at most ``MAX_RETRIES`` times, so a query triggers no more than three
retrievals in total.

Node handlers return the fields they change; `next_node` is a pure
transition function, so both can be tested without any I/O.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from .embeddings import QueryEmbedder
from .schema import Passage
from .vector_store import VectorRetriever

logger = logging.getLogger(__name__)

RELEVANT_SIMILARITY = 0.5
RELEVANCE_GATE = 0.4
MAX_RETRIES = 2
TOP_DOCS = 5
RETRIEVE_TOP_K = 30
RETRIEVE_THRESHOLD = 0.3

QUERY_EXPANSIONS = (
    "{question} (detailed explanation)",
    "{question} (specific information and context)",
    "{question} (relevant sections and references)",
)


class Node(enum.Enum):
    RETRIEVE = "retrieve"
    GRADE = "grade"
    REWRITE = "rewrite"
    OUTPUT = "output"


@dataclass(slots=True)
class RAGState:
    """Per-query state threaded through the loop."""

    question: str
    user_id: str
    document_ids: tuple[str, ...]
    rewritten_question: str | None = None
    passages: list[Passage] = field(default_factory=list)
    relevance_score: float = 0.0
    retry_count: int = 0

    @property
    def current_question(self) -> str:
        return self.rewritten_question or self.question


@dataclass(slots=True)
class RefinementResult:
    passages: list[Passage]
    relevance_score: float
    retry_count: int
    rewritten_question: str | None
    trace: list[Node]


def relevance_score(passages: Sequence[Passage]) -> float:
    """Aggregate relevance: half mean similarity, half share of relevant top passages."""
    if not passages:
        return 0.0
    average = sum(passage.score for passage in passages) / len(passages)
    relevant_top = sum(1 for passage in passages[:TOP_DOCS] if passage.score > RELEVANT_SIMILARITY)
    return 0.5 * average + 0.5 * (relevant_top / TOP_DOCS)


def grade(state: RAGState) -> dict[str, Any]:
    return {"relevance_score": relevance_score(state.passages)}


def rewrite(state: RAGState) -> dict[str, Any]:
    """Expand the original question with the suffix for the current retry."""
    if state.retry_count < len(QUERY_EXPANSIONS):
        rewritten = QUERY_EXPANSIONS[state.retry_count].format(question=state.question)
    else:
        rewritten = state.question
    return {"rewritten_question": rewritten, "retry_count": state.retry_count + 1}


def next_node(node: Node, state: RAGState) -> Node:
    """Pure transition function of the loop. OUTPUT is terminal."""
    if node is Node.RETRIEVE:
        return Node.GRADE
    if node is Node.GRADE:
        if state.relevance_score < RELEVANCE_GATE and state.retry_count < MAX_RETRIES:
            return Node.REWRITE
        return Node.OUTPUT
    if node is Node.REWRITE:
        return Node.RETRIEVE
    return Node.OUTPUT


class RefinementLoop:
    """Drive the state machine with real embedding and vector retrieval."""

    def __init__(
        self,
        embedder: QueryEmbedder,
        retriever: VectorRetriever,
        top_k: int = RETRIEVE_TOP_K,
        similarity_threshold: float = RETRIEVE_THRESHOLD,
    ):
        self.embedder = embedder
        self.retriever = retriever
        self.top_k = top_k
        self.similarity_threshold = similarity_threshold

    async def retrieve(self, state: RAGState) -> dict[str, Any]:
        if not state.document_ids:
            return {"passages": []}
        query_vector = await self.embedder.embed(state.current_question)
        passages = await self.retriever.search(
            query_vector,
            state.user_id,
            state.document_ids,
            top_k=self.top_k,
            similarity_threshold=self.similarity_threshold,
        )
        return {"passages": passages}

    async def run(self, question: str, user_id: str, document_ids: Sequence[str]) -> RefinementResult:
        """Run the loop from RETRIEVE until OUTPUT.

        Raises:
            ProviderError: If embedding or retrieval fails on any attempt.
        """
        state = RAGState(question=question, user_id=user_id, document_ids=tuple(document_ids))
        node = Node.RETRIEVE
        visited: list[Node] = []

        while True:
            visited.append(node)
            if node is Node.OUTPUT:
                break
            if node is Node.RETRIEVE:
                updates = await self.retrieve(state)
            elif node is Node.GRADE:
                updates = grade(state)
            else:
                updates = rewrite(state)
                logger.info(
                    "Relevance %.3f below gate; retry %d with %r",
                    state.relevance_score,
                    updates["retry_count"],
                    updates["rewritten_question"],
                )
            state = replace(state, **updates)
            node = next_node(node, state)

        return RefinementResult(
            passages=state.passages,
            relevance_score=state.relevance_score,
            retry_count=state.retry_count,
            rewritten_question=state.rewritten_question,
            trace=visited,
        )
