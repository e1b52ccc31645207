from __future__ import annotations

import logging
from typing import Protocol

import numpy as np
from openai import AsyncOpenAI, OpenAIError

from .errors import ProviderError

logger = logging.getLogger(__name__)


class QueryEmbedder(Protocol):
    async def embed(self, text: str) -> np.ndarray: ...


class OpenAIQueryEmbedder:
    """Turn query text into a dense vector with the OpenAI embeddings API.

    Failures are not retried here; the SDK's own transport retries are the
    only ones applied.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        dimensions: int | None = None,
        client: AsyncOpenAI | None = None,
    ):
        """Configure the embedding model.

        Args:
            model: Embedding model name.
            dimensions: Optional output dimensionality for models that support it.
            client: Pre-built async client; one is created from the environment otherwise.
        """
        self.model = model
        self.dimensions = dimensions
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI()
        return self._client

    async def embed(self, text: str) -> np.ndarray:
        """Embed a single query string.

        Args:
            text: Non-empty query text. Truncation is left to the provider.

        Returns:
            A 1D `float32` NumPy vector.

        Raises:
            ProviderError: If the embedding service errors or times out.
        """
        options: dict = {"model": self.model, "input": [text]}
        if self.dimensions is not None:
            options["dimensions"] = self.dimensions

        try:
            response = await self.client.embeddings.create(**options)
        except OpenAIError as exc:
            raise ProviderError(f"Embedding request failed: {exc}") from exc

        vector = np.array(response.data[0].embedding, dtype=np.float32)
        logger.debug("Embedded query with %s (%d dims)", self.model, vector.shape[0])
        return vector
