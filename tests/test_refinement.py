"""Tests for refinement.py — grading, rewriting, transitions and the bounded loop."""
from __future__ import annotations

import asyncio
from dataclasses import replace

import numpy as np
import pytest

from docchat.errors import ProviderError
from docchat.refinement import (
    MAX_RETRIES,
    Node,
    RAGState,
    RefinementLoop,
    grade,
    next_node,
    relevance_score,
    rewrite,
)
from docchat.schema import Passage
from docchat.vector_store import VectorRetriever


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class RecordingEmbedder:
    def __init__(self, error: Exception | None = None):
        self.calls: list[str] = []
        self.error = error

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return np.array([1.0, 0.0], dtype=np.float32)


class StaticIndex:
    def __init__(self, matches: list[Passage]):
        self.matches = matches

    async def match(self, query_vector, user_id, document_ids, match_count, similarity_threshold):
        return [replace(p) for p in self.matches]


def _make_passage(pid: str, score: float) -> Passage:
    return Passage(id=pid, text="t", title=pid, page=1, score=score)


def _state(**overrides) -> RAGState:
    fields = {"question": "What is the notice period?", "user_id": "u", "document_ids": ("d",)}
    fields.update(overrides)
    return RAGState(**fields)


def _loop(matches: list[Passage], embedder=None) -> tuple[RefinementLoop, RecordingEmbedder]:
    embedder = embedder or RecordingEmbedder()
    return RefinementLoop(embedder, VectorRetriever(StaticIndex(matches))), embedder


# ---------------------------------------------------------------------------
# relevance_score / grade
# ---------------------------------------------------------------------------

class TestRelevanceScore:
    def test_empty_passages_score_zero(self):
        assert relevance_score([]) == 0.0

    def test_combines_average_and_top_share(self):
        passages = [_make_passage(str(i), s) for i, s in enumerate([0.9, 0.7, 0.4, 0.3])]
        # avg = 0.575, top-5 above 0.5 = 2 -> 0.5*0.575 + 0.5*0.4
        assert relevance_score(passages) == pytest.approx(0.4875)

    def test_threshold_is_strict(self):
        assert relevance_score([_make_passage("a", 0.5)]) == pytest.approx(0.25)

    def test_only_top_five_counted(self):
        passages = [_make_passage(str(i), 0.9) for i in range(8)]
        assert relevance_score(passages) == pytest.approx(0.5 * 0.9 + 0.5)

    def test_grade_returns_score_field(self):
        updates = grade(_state(passages=[_make_passage("a", 0.8)]))
        assert updates == {"relevance_score": pytest.approx(0.5 * 0.8 + 0.5 * 0.2)}


# ---------------------------------------------------------------------------
# rewrite
# ---------------------------------------------------------------------------

class TestRewrite:
    def test_first_retry_suffix(self):
        updates = rewrite(_state())
        assert updates["rewritten_question"] == "What is the notice period? (detailed explanation)"
        assert updates["retry_count"] == 1

    def test_second_retry_suffix_uses_original_question(self):
        state = _state(retry_count=1, rewritten_question="What is the notice period? (detailed explanation)")
        updates = rewrite(state)
        assert updates["rewritten_question"] == "What is the notice period? (specific information and context)"
        assert updates["retry_count"] == 2

    def test_exhausted_templates_fall_back_to_question(self):
        updates = rewrite(_state(retry_count=7))
        assert updates["rewritten_question"] == "What is the notice period?"
        assert updates["retry_count"] == 8


# ---------------------------------------------------------------------------
# next_node
# ---------------------------------------------------------------------------

class TestNextNode:
    def test_retrieve_goes_to_grade(self):
        assert next_node(Node.RETRIEVE, _state()) is Node.GRADE

    def test_low_score_with_retries_left_rewrites(self):
        assert next_node(Node.GRADE, _state(relevance_score=0.39, retry_count=1)) is Node.REWRITE

    def test_good_score_outputs(self):
        assert next_node(Node.GRADE, _state(relevance_score=0.4, retry_count=0)) is Node.OUTPUT

    def test_low_score_without_retries_outputs(self):
        assert next_node(Node.GRADE, _state(relevance_score=0.0, retry_count=MAX_RETRIES)) is Node.OUTPUT

    def test_rewrite_goes_to_retrieve(self):
        assert next_node(Node.REWRITE, _state()) is Node.RETRIEVE

    def test_output_is_terminal(self):
        assert next_node(Node.OUTPUT, _state()) is Node.OUTPUT


# ---------------------------------------------------------------------------
# RefinementLoop.run
# ---------------------------------------------------------------------------

class TestRefinementLoop:
    def test_relevant_results_output_immediately(self):
        loop, embedder = _loop([_make_passage("a", 0.9), _make_passage("b", 0.8)])
        result = asyncio.run(loop.run("notice period", "u", ["d"]))
        assert result.trace == [Node.RETRIEVE, Node.GRADE, Node.OUTPUT]
        assert result.retry_count == 0
        assert result.rewritten_question is None
        assert embedder.calls == ["notice period"]
        assert len(result.passages) == 2

    def test_always_irrelevant_stops_after_two_rewrites(self):
        loop, embedder = _loop([])
        result = asyncio.run(loop.run("notice period", "u", ["d"]))

        assert result.retry_count == 2
        assert result.relevance_score == 0.0
        assert result.trace == [
            Node.RETRIEVE, Node.GRADE, Node.REWRITE,
            Node.RETRIEVE, Node.GRADE, Node.REWRITE,
            Node.RETRIEVE, Node.GRADE, Node.OUTPUT,
        ]
        assert embedder.calls == [
            "notice period",
            "notice period (detailed explanation)",
            "notice period (specific information and context)",
        ]

    def test_weak_results_are_still_output(self):
        loop, _ = _loop([_make_passage("a", 0.32)])
        result = asyncio.run(loop.run("q", "u", ["d"]))
        assert result.retry_count == 2
        assert [p.id for p in result.passages] == ["a"]
        assert result.rewritten_question == "q (specific information and context)"

    def test_empty_scope_never_embeds(self):
        loop, embedder = _loop([_make_passage("a", 0.9)])
        result = asyncio.run(loop.run("q", "u", []))
        assert embedder.calls == []
        assert result.passages == []
        assert result.retry_count == 2

    def test_provider_error_propagates(self):
        loop, _ = _loop([], embedder=RecordingEmbedder(error=ProviderError("down")))
        with pytest.raises(ProviderError):
            asyncio.run(loop.run("q", "u", ["d"]))
