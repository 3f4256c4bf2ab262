import logging
from typing import List, Sequence

import numpy as np
from mistralai import Mistral
from openai import AsyncOpenAI

from core.config import Settings
from core.errors import ConfigurationError, EmbeddingError
from core.models import EmbeddingOutcome

logger = logging.getLogger(__name__)


class EmbeddingBackend:
    """Maps text to vectors through one embedding provider.

    Subclasses only say how a request is submitted (`_create`); matching
    the response back to the inputs is shared. Each backend owns exactly one
    storage column and one distance metric, so vectors from different
    providers are never compared with each other.
    """

    name: str = None
    model: str = None
    dimensions: int = None
    metric: str = None
    column: str = None  # storage column, embedding_<name>_<dimensions>
    max_batch_size: int = 64

    async def _create(self, texts: List[str]) -> list:
        """Submit one request; returns the provider's `data` entries."""
        raise NotImplementedError

    async def embed(self, text: str) -> List[float]:
        """Embed a single text, raising EmbeddingError if nothing usable came back."""
        outcome = (await self.embed_batch([text]))[0]
        if not outcome.ok:
            raise EmbeddingError(outcome.error, index=0)
        return outcome.embedding

    async def embed_batch(self, texts: Sequence[str]) -> List[EmbeddingOutcome]:
        """Embed many texts; one outcome per input, in input order.

        A failed request raises EmbeddingError. Inputs the provider dropped or
        answered with a malformed vector come back as failed outcomes.
        """
        texts = list(texts)
        outcomes = []
        for start in range(0, len(texts), self.max_batch_size):
            chunk = texts[start : start + self.max_batch_size]
            try:
                data = await self._create(chunk)
            except Exception as e:
                raise EmbeddingError(f"{self.name} embedding request failed: {e}") from e
            outcomes.extend(self._correlate(chunk, data or [], offset=start))
        return outcomes

    def _correlate(
        self, texts: List[str], data: list, offset: int = 0
    ) -> List[EmbeddingOutcome]:
        vectors = {}
        for item in data:
            index = getattr(item, "index", None)
            if not isinstance(index, int) or not 0 <= index < len(texts):
                logger.warning("%s returned an entry with unusable index %r", self.name, index)
                continue
            if index in vectors:
                logger.warning("%s returned index %d more than once", self.name, index)
                continue
            vectors[index] = self._check_vector(item)

        outcomes = []
        for i, text in enumerate(texts):
            result = vectors.get(i, "no embedding returned")
            if isinstance(result, str):
                outcomes.append(EmbeddingOutcome(index=offset + i, text=text, error=result))
            else:
                outcomes.append(
                    EmbeddingOutcome(index=offset + i, text=text, embedding=result)
                )
        return outcomes

    def _check_vector(self, item):
        """Return the vector as a list of floats, or an error string."""
        kind = getattr(item, "object", None)
        if kind is not None and kind != "embedding":
            return f"unexpected object type {kind!r}"
        embedding = getattr(item, "embedding", None)
        if not embedding:
            return "empty embedding"
        try:
            vector = np.asarray(embedding, dtype=np.float32)
        except (TypeError, ValueError):
            return "non-numeric embedding"
        if vector.ndim != 1 or vector.shape[0] != self.dimensions:
            return f"expected {self.dimensions} dimensions, got {vector.shape}"
        if not np.isfinite(vector).all():
            return "embedding contains non-finite values"
        return vector.tolist()


class OpenAIEmbeddingBackend(EmbeddingBackend):
    name = "openai"
    model = "text-embedding-3-small"
    dimensions = 1536
    column = "embedding_openai_1536"
    metric = "inner_product"  # OpenAI vectors are unit length
    max_batch_size = 2048

    def __init__(self, api_key: str, timeout: float = 30.0):
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout)

    async def _create(self, texts):
        response = await self.client.embeddings.create(
            model=self.model,
            input=texts,
            encoding_format="float",
        )
        return response.data


class MistralEmbeddingBackend(EmbeddingBackend):
    name = "mistral"
    model = "mistral-embed"
    dimensions = 1024
    column = "embedding_mistral_1024"
    metric = "cosine"
    max_batch_size = 128

    def __init__(self, api_key: str, timeout: float = 30.0):
        self.client = Mistral(api_key=api_key, timeout_ms=int(timeout * 1000))

    async def _create(self, texts):
        response = await self.client.embeddings.create_async(
            model=self.model,
            inputs=texts,
        )
        if response is None or not response.data:
            logger.error(
                "No embedding in response from %s for inputs starting with %s",
                self.model,
                texts[:20],
            )
            return []
        return response.data


BACKENDS = {
    OpenAIEmbeddingBackend.name: OpenAIEmbeddingBackend,
    MistralEmbeddingBackend.name: MistralEmbeddingBackend,
}


def get_backend(settings: Settings, name: str = None) -> EmbeddingBackend:
    """Create the backend chosen in settings (or by `name`)."""
    name = name or settings.embedding_backend
    if name not in BACKENDS:
        raise ConfigurationError(f"Unknown embedding backend {name!r}")
    api_key = settings.require_backend_credentials(name)
    return BACKENDS[name](api_key=api_key, timeout=settings.embedding_timeout)
