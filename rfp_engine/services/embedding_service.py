"""Question embedding via a shared SentenceTransformer model."""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from sentence_transformers import SentenceTransformer

from rfp_engine.core.config import settings
from rfp_engine.core.exceptions import EmbeddingError
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

_embedding_model: Optional[SentenceTransformer] = None


def _get_embedding_model() -> SentenceTransformer:
    """Get or lazily load the shared SentenceTransformer model."""
    global _embedding_model
    if _embedding_model is None:
        LOGGER.info(f"Loading embedding model {settings.embedding.model_name}")
        _embedding_model = SentenceTransformer(settings.embedding.model_name)
    return _embedding_model


@dataclass
class BatchEmbeddingResult:
    embeddings: Dict[str, List[float]] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)


class EmbeddingService:
    """Converts text into fixed-dimension vectors."""

    def __init__(self, model: Optional[SentenceTransformer] = None, batch_size: Optional[int] = None):
        self._model = model
        self.batch_size = batch_size or settings.embedding.batch_size

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            self._model = _get_embedding_model()
        return self._model

    async def embed(self, text: str) -> List[float]:
        """Embed one text.

        Raises:
            EmbeddingError: If the text is blank or the model fails
        """
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed several texts in one model call (offloaded to a thread)."""
        if any(not text or not text.strip() for text in texts):
            raise EmbeddingError("Cannot embed blank text")
        try:
            # SentenceTransformer.encode is CPU-bound
            vectors = await asyncio.to_thread(
                self.model.encode, list(texts), batch_size=self.batch_size
            )
        except Exception as e:
            raise EmbeddingError(f"Embedding model failed: {e}", original_error=e) from e
        return [vector.tolist() for vector in vectors]

    async def embed_questions(self, items: Sequence[Tuple[str, str]]) -> BatchEmbeddingResult:
        """Embed (question_id, text) pairs, isolating per-question failures.

        The whole batch is tried first; if that fails every question is
        retried on its own so one bad input cannot sink its siblings.
        """
        result = BatchEmbeddingResult()
        if not items:
            return result

        try:
            vectors = await self.embed_many([text for _, text in items])
            for (question_id, _), vector in zip(items, vectors):
                result.embeddings[question_id] = vector
            return result
        except EmbeddingError as e:
            LOGGER.warning(f"Batch embedding failed, retrying per question: {e}")

        for question_id, text in items:
            try:
                result.embeddings[question_id] = await self.embed(text)
            except EmbeddingError as e:
                LOGGER.warning(
                    "Embedding failed for question",
                    extra={"question_id": question_id, "error": str(e)},
                )
                result.failures[question_id] = f"embedding failed: {e}"
        return result
