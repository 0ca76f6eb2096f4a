"""Embedding generation on top of the Ollama client.

One ``embed`` call is one network request and is all-or-nothing: either
every input gets a vector, in input order, or EmbeddingBackendError is
raised. Batching and retries are left to the caller.
"""
import math
from typing import AsyncIterator, Iterator, List, Sequence, Tuple, TypeVar, Union

import httpx
import structlog

from docchat.errors import EmbeddingBackendError
from docchat.llm_client import OllamaClient

logger = structlog.get_logger()

EmbeddingVector = List[float]
T = TypeVar("T")


class Embedder:
    """Batch embedder backed by a remote embedding model."""

    def __init__(self, client: OllamaClient, model: str):
        self.client = client
        self.model = model

    async def embed(self, texts: List[str]) -> List[EmbeddingVector]:
        """Embed texts in one request.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text, in input order

        Raises:
            EmbeddingBackendError: If the call fails or the response is unusable
        """
        if not texts:
            return []

        try:
            data = await self.client.embed(list(texts), model=self.model)
        except httpx.HTTPStatusError as e:
            raise EmbeddingBackendError(
                f"Embedding request failed with status {e.response.status_code}",
                payload=_response_payload(e.response),
            ) from e
        except httpx.HTTPError as e:
            raise EmbeddingBackendError(
                f"Embedding request failed: {e}", payload={"error": str(e)}
            ) from e
        except ValueError as e:
            raise EmbeddingBackendError(
                f"Embedding response is not valid JSON: {e}"
            ) from e

        return self._parse_vectors(data, expected=len(texts))

    def _parse_vectors(self, data, expected: int) -> List[EmbeddingVector]:
        embeddings = data.get("embeddings") if isinstance(data, dict) else None

        if not isinstance(embeddings, list):
            logger.error("embedding_response_malformed", model=self.model)
            raise EmbeddingBackendError(
                "Invalid response from embedding backend: missing 'embeddings' list",
                payload=data,
            )

        if len(embeddings) != expected:
            logger.error(
                "embedding_count_mismatch",
                model=self.model,
                expected=expected,
                received=len(embeddings),
            )
            raise EmbeddingBackendError(
                f"Embedding backend returned {len(embeddings)} vectors for "
                f"{expected} inputs",
                payload=data,
            )

        vectors = []
        for position, vector in enumerate(embeddings):
            if not isinstance(vector, list) or not vector or not all(
                _is_number(v) for v in vector
            ):
                raise EmbeddingBackendError(
                    f"Embedding at position {position} is not a numeric vector",
                    payload=data,
                )
            vectors.append([float(v) for v in vector])

        if len({len(v) for v in vectors}) > 1:
            raise EmbeddingBackendError(
                "Embedding backend returned vectors of different lengths",
                payload=data,
            )

        return vectors

    async def try_embed(
        self, texts: List[str]
    ) -> Union[List[EmbeddingVector], EmbeddingBackendError]:
        """Embed one batch, returning the failure instead of raising it."""
        try:
            return await self.embed(texts)
        except EmbeddingBackendError as e:
            logger.error(
                "embedding_batch_failed",
                batch_size=len(texts),
                error=str(e),
                text_preview=texts[0][:100] if texts else "",
            )
            return e

    async def embed_batches(
        self, texts: List[str], batch_size: int
    ) -> AsyncIterator[Tuple[int, List[str], Union[List[EmbeddingVector], EmbeddingBackendError]]]:
        """Embed texts batch by batch, yielding failures instead of raising.

        Yields:
            (start_index, batch_texts, vectors or the batch's EmbeddingBackendError)
        """
        for start, batch in iter_batches(texts, batch_size):
            yield start, batch, await self.try_embed(batch)


def iter_batches(items: Sequence[T], batch_size: int) -> Iterator[Tuple[int, List[T]]]:
    """Split items into consecutive (start_index, batch) slices."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    for start in range(0, len(items), batch_size):
        yield start, list(items[start : start + batch_size])


def _is_number(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _response_payload(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return {"body": response.text}
