from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Protocol, Sequence

import chromadb
import numpy as np

from .errors import RetrievalError
from .schema import Passage

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    """Similarity index scoped by user and document-id allowlist."""

    async def match(
        self,
        query_vector: np.ndarray,
        user_id: str,
        document_ids: Sequence[str],
        match_count: int,
        similarity_threshold: float,
    ) -> list[Passage]: ...


def embedding_literal(vector: Sequence[float] | np.ndarray) -> str:
    """Serialize a vector as the bracketed literal expected by pgvector."""
    return "[" + ",".join(str(float(value)) for value in vector) + "]"


def passage_from_row(row: dict[str, Any]) -> Passage:
    """Map one ``match_documents`` row to a Passage."""
    return Passage(
        id=str(row["id"]),
        text=row.get("text_content") or "",
        title=row.get("title") or "",
        page=int(row.get("page_number") or 0),
        score=float(row.get("similarity") or 0.0),
        score_kind="similarity",
        total_pages=row.get("total_pages"),
        timestamp=row.get("doc_timestamp"),
        ai_title=row.get("ai_title"),
        ai_description=row.get("ai_description"),
        ai_maintopics=row.get("ai_maintopics"),
        ai_keyentities=row.get("ai_keyentities"),
    )


class MatchDocumentsIndex:
    """Vector index served by the ``match_documents`` database function.

    ``client`` is a Supabase client (anything exposing
    ``rpc(name, params).execute()``).
    """

    def __init__(self, client, function_name: str = "match_documents"):
        self.client = client
        self.function_name = function_name

    def _call(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        response = self.client.rpc(self.function_name, params).execute()
        return response.data or []

    async def match(
        self,
        query_vector: np.ndarray,
        user_id: str,
        document_ids: Sequence[str],
        match_count: int,
        similarity_threshold: float,
    ) -> list[Passage]:
        params = {
            "query_embedding": embedding_literal(query_vector),
            "match_count": match_count,
            "filter_user_id": user_id,
            "file_ids": list(document_ids),
            "similarity_threshold": similarity_threshold,
        }
        try:
            rows = await asyncio.to_thread(self._call, params)
        except Exception as exc:  # noqa: BLE001 - any transport or SQL failure
            raise RetrievalError(f"{self.function_name} failed: {exc}") from exc

        logger.debug("%s returned %d rows", self.function_name, len(rows))
        return [passage_from_row(row) for row in rows]


def build_chroma_collection(
    passages: list[Passage],
    embeddings: list[list[float]],
    document_ids: list[str],
    user_id: str,
    collection_name: str,
    persist_dir: str = "artifacts/chroma",
):
    """Create (or replace) a persistent cosine-space Chroma collection of passages.

    Args:
        passages: Passages to index.
        embeddings: Embedding vectors aligned to passages.
        document_ids: Owning document id for each passage.
        user_id: Owner of every indexed document.
        collection_name: Chroma collection name.
        persist_dir: Local path for Chroma persistence.

    Returns:
        The created Chroma collection instance.
    """
    Path(persist_dir).mkdir(parents=True, exist_ok=True)
    client = chromadb.PersistentClient(path=persist_dir)
    existing = {collection.name for collection in client.list_collections()}
    if collection_name in existing:
        client.delete_collection(collection_name)

    collection = client.create_collection(name=collection_name, metadata={"hnsw:space": "cosine"})
    metadatas = []
    for passage, document_id in zip(passages, document_ids, strict=True):
        metadata = {
            "user_id": user_id,
            "document_id": document_id,
            "title": passage.title,
            "page_number": passage.page,
            "total_pages": passage.total_pages,
            "doc_timestamp": passage.timestamp,
            "ai_title": passage.ai_title,
            "ai_description": passage.ai_description,
            "ai_maintopics": passage.ai_maintopics,
            "ai_keyentities": passage.ai_keyentities,
        }
        metadatas.append({key: value for key, value in metadata.items() if value is not None})

    collection.add(
        ids=[passage.id for passage in passages],
        embeddings=embeddings,
        documents=[passage.text for passage in passages],
        metadatas=metadatas,
    )
    return collection


class ChromaIndex:
    """Local vector index over a collection built by `build_chroma_collection`."""

    def __init__(self, collection):
        self.collection = collection

    def _query(
        self,
        query_vector: list[float],
        user_id: str,
        document_ids: list[str],
        match_count: int,
    ) -> list[dict[str, Any]]:
        available = self.collection.count()
        if available == 0:
            return []

        response = self.collection.query(
            query_embeddings=[query_vector],
            n_results=min(match_count, available),
            where={"$and": [{"user_id": user_id}, {"document_id": {"$in": document_ids}}]},
            include=["documents", "metadatas", "distances"],
        )
        rows = []
        for chunk_id, text, metadata, distance in zip(
            response["ids"][0],
            response["documents"][0],
            response["metadatas"][0],
            response["distances"][0],
            strict=True,
        ):
            rows.append({**metadata, "id": chunk_id, "text_content": text, "similarity": 1.0 - distance})
        return rows

    async def match(
        self,
        query_vector: np.ndarray,
        user_id: str,
        document_ids: Sequence[str],
        match_count: int,
        similarity_threshold: float,
    ) -> list[Passage]:
        vector = [float(value) for value in query_vector]
        try:
            rows = await asyncio.to_thread(self._query, vector, user_id, list(document_ids), match_count)
        except Exception as exc:  # noqa: BLE001 - chromadb raises several unrelated types
            raise RetrievalError(f"Chroma query failed: {exc}") from exc

        return [passage_from_row(row) for row in rows if row["similarity"] >= similarity_threshold]


class VectorRetriever:
    """Scope-checked similarity search over a `VectorIndex`."""

    def __init__(self, index: VectorIndex):
        self.index = index

    async def search(
        self,
        query_vector: np.ndarray,
        user_id: str,
        document_ids: Sequence[str],
        top_k: int = 30,
        similarity_threshold: float = 0.3,
    ) -> list[Passage]:
        """Return passages above the similarity floor, best first.

        An empty ``document_ids`` scope means no documents are available; the
        index is not queried at all in that case.

        Raises:
            RetrievalError: If the index query fails.
        """
        if not document_ids:
            logger.debug("Empty document scope for user %s; skipping vector search", user_id)
            return []

        matches = await self.index.match(
            query_vector,
            user_id,
            document_ids,
            top_k,
            similarity_threshold,
        )
        passages = [passage for passage in matches if passage.score >= similarity_threshold]
        for passage in passages:
            passage.score_kind = "similarity"
        passages.sort(key=lambda passage: passage.score, reverse=True)
        logger.debug(
            "Vector search kept %d of %d matches (threshold %.2f)",
            len(passages),
            len(matches),
            similarity_threshold,
        )
        return passages[:top_k]
