"""Exceptions raised by the retrieval core.

Reranking failures are not represented here: they are recovered locally and
reported through ``RerankOutcome.applied``.
"""
from __future__ import annotations


class ProviderError(RuntimeError):
    """An external embedding or retrieval service failed."""


class RetrievalError(ProviderError):
    """The vector index or document table could not be queried."""
