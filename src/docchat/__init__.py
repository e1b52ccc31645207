"""Hybrid document retrieval for chatting with uploaded PDFs."""

from .errors import ProviderError, RetrievalError
from .schema import ContextItem, DocumentSearchOutput, Passage, Query, RetrievalResult, SearchMetadata

__all__ = [
    "Query",
    "Passage",
    "RetrievalResult",
    "ContextItem",
    "SearchMetadata",
    "DocumentSearchOutput",
    "ProviderError",
    "RetrievalError",
]
