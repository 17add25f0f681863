"""OpenAI embeddings client.

Uses text-embedding-3-small by default. Every failure (missing key,
HTTP error, malformed payload) is raised as EmbeddingError so callers
can degrade to keyword search.
"""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

logger = logging.getLogger("rag.embedder")

EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
BATCH_SIZE = 16


class EmbeddingError(RuntimeError):
    pass


class Embedder:
    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._timeout = timeout
        self._transport = transport

    async def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed a batch of texts, preserving input order."""
        if not texts:
            return []
        if not self._api_key:
            raise EmbeddingError("OpenAI API key not configured for embeddings")

        headers = {"Authorization": f"Bearer {self._api_key}"}
        all_embeddings: list[list[float]] = []

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                for i in range(0, len(texts), BATCH_SIZE):
                    batch = list(texts[i : i + BATCH_SIZE])
                    resp = await client.post(
                        EMBEDDINGS_URL, headers=headers, json={"model": self.model, "input": batch}
                    )
                    if resp.status_code != 200:
                        logger.error("Embedding error (%s): %s", resp.status_code, resp.text[:500])
                        raise EmbeddingError(f"Embedding API error: {resp.status_code}")

                    # Sort by index to preserve order
                    items = sorted(resp.json()["data"], key=lambda x: x["index"])
                    all_embeddings.extend(item["embedding"] for item in items)
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise EmbeddingError(f"Malformed embedding response: {exc}") from exc

        logger.debug("Generated %d embeddings", len(all_embeddings))
        return all_embeddings

    async def embed_query(self, text: str) -> list[float]:
        results = await self.embed_texts([text])
        if not results or not results[0]:
            raise EmbeddingError("Empty embedding returned")
        return results[0]
