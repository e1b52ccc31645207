from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


@dataclass(slots=True)
class OpenAISettings:
    """Embedding model configuration."""

    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int | None = None


@dataclass(slots=True)
class RerankSettings:
    """Second-stage reranker selection and credentials."""

    provider: str = "cohere"
    cohere_api_key: str | None = None
    cohere_model: str = "rerank-english-v3.0"
    local_model: str = "cross-encoder/ms-marco-MiniLM-L-6-v2"


@dataclass(slots=True)
class SupabaseSettings:
    """Connection details for the hosted vector index and document table."""

    url: str | None = None
    key: str | None = None


@dataclass(slots=True)
class RetrievalSettings:
    """Sizes and floors used by hybrid search."""

    top_k: int = 30
    similarity_threshold: float = 0.3
    rerank_top_n: int = 15
    context_size: int = 10


@dataclass(slots=True)
class Settings:
    openai: OpenAISettings = field(default_factory=OpenAISettings)
    rerank: RerankSettings = field(default_factory=RerankSettings)
    supabase: SupabaseSettings = field(default_factory=SupabaseSettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)


def _optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    return int(raw) if raw else None


def load_settings() -> Settings:
    """Load environment-backed settings and return typed config objects.

    Returns:
        Settings grouping embedding, rerank, index and retrieval configuration.
    """
    load_dotenv()
    return Settings(
        openai=OpenAISettings(
            embedding_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
            embedding_dimensions=_optional_int("OPENAI_EMBEDDING_DIMENSIONS"),
        ),
        rerank=RerankSettings(
            provider=os.getenv("RERANK_PROVIDER", "cohere"),
            cohere_api_key=os.getenv("COHERE_API_KEY") or None,
            cohere_model=os.getenv("COHERE_RERANK_MODEL", "rerank-english-v3.0"),
            local_model=os.getenv("LOCAL_RERANK_MODEL", "cross-encoder/ms-marco-MiniLM-L-6-v2"),
        ),
        supabase=SupabaseSettings(
            url=os.getenv("SUPABASE_URL") or None,
            key=os.getenv("SUPABASE_KEY") or None,
        ),
        retrieval=RetrievalSettings(
            top_k=int(os.getenv("RETRIEVAL_TOP_K", "30")),
            similarity_threshold=float(os.getenv("RETRIEVAL_SIMILARITY_THRESHOLD", "0.3")),
            rerank_top_n=int(os.getenv("RERANK_TOP_N", "15")),
            context_size=int(os.getenv("CONTEXT_SIZE", "10")),
        ),
    )
