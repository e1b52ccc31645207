from __future__ import annotations

import logging
from dataclasses import replace

from rapidfuzz import fuzz, utils

from .schema import Passage

logger = logging.getLogger(__name__)

KEYWORD_FIELDS = ("text", "title", "ai_title", "ai_description")
KEYWORD_THRESHOLD = 0.4
MIN_MATCH_CHARS = 2


def _similarity_from_distance(distance: float | None) -> float:
    """Map a match distance (0 = perfect) onto a similarity (1 = perfect)."""
    if distance is None:
        return 0.5
    return 1.0 - distance


def _field_ratio(query: str, value: str) -> float:
    """Score the query located inside a field, on a 0-100 scale.

    A field shorter than the query is compared whole, so a short title never
    counts as a hit just because it occurs somewhere inside the query.
    """
    if len(value) < len(query):
        return fuzz.ratio(query, value)
    return fuzz.partial_ratio(query, value)


def _match_distance(query: str, passage: Passage) -> float | None:
    """Best fuzzy distance between the query and any searchable field."""
    best: float | None = None
    for field_name in KEYWORD_FIELDS:
        value = utils.default_process(getattr(passage, field_name) or "")
        if len(value) < MIN_MATCH_CHARS:
            continue
        distance = 1.0 - _field_ratio(query, value) / 100.0
        if best is None or distance < best:
            best = distance
    return best


def keyword_search(query: str, candidates: list[Passage], threshold: float = KEYWORD_THRESHOLD) -> list[Passage]:
    """Fuzzy lexical search over an already-retrieved candidate set.

    Rescues passages whose wording matches the query closely but which the
    vector search ranked low. Matching is case-insensitive and tolerant of
    small edits; it never looks beyond ``candidates``.

    Args:
        query: Raw user query text.
        candidates: Passages to search, typically vector search output.
        threshold: Maximum accepted distance (0 = exact, 1 = unrelated).

    Returns:
        Copies of matching passages, best match first, scored by similarity.
    """
    processed_query = utils.default_process(query)
    if not candidates or len(processed_query) < MIN_MATCH_CHARS:
        return []

    scored: list[tuple[float, Passage]] = []
    for passage in candidates:
        distance = _match_distance(processed_query, passage)
        # No searchable field means no match, so every hit carries a distance
        # and the 0.5 default of _similarity_from_distance never applies here.
        if distance is not None and distance <= threshold:
            scored.append((distance, passage))

    scored.sort(key=lambda item: item[0])
    results = [
        replace(passage, score=_similarity_from_distance(distance), score_kind="keyword")
        for distance, passage in scored
    ]
    logger.debug("Keyword search matched %d of %d candidates", len(results), len(candidates))
    return results


def reciprocal_rank_fusion(result_lists: list[list[Passage]], k: int = 60) -> list[Passage]:
    """Fuse any number of rankings via Reciprocal Rank Fusion (RRF).

    Each occurrence contributes ``1 / (k + rank + 1)`` (0-based rank) to the
    total for its ``(title, page)`` key. The occurrence with the highest
    incoming score represents the key (first seen wins ties) and its score is
    replaced by the fused total.

    Args:
        result_lists: Ranked result lists to combine.
        k: RRF smoothing constant controlling rank contribution decay.

    Returns:
        Deduplicated passages sorted by fused score; equal scores keep first-seen order.
    """
    fused_scores: dict[tuple[str, int], float] = {}
    representatives: dict[tuple[str, int], Passage] = {}

    for results in result_lists:
        for rank, passage in enumerate(results):
            key = passage.key
            contribution = 1 / (k + rank + 1)
            if key in fused_scores:
                fused_scores[key] += contribution
                if passage.score > representatives[key].score:
                    representatives[key] = passage
            else:
                fused_scores[key] = contribution
                representatives[key] = passage

    ordered = sorted(fused_scores, key=lambda key: fused_scores[key], reverse=True)
    return [replace(representatives[key], score=fused_scores[key], score_kind="rrf") for key in ordered]
