"""Tests for EmbeddingService with a stubbed SentenceTransformer model."""

from unittest.mock import MagicMock

import numpy as np
import pytest

from rfp_engine.core.exceptions import EmbeddingError
from rfp_engine.services.embedding_service import EmbeddingService


def fake_encode(texts, batch_size=32):
    if any("poison" in text for text in texts):
        raise RuntimeError("tokenizer crashed")
    return np.array([[float(len(text)), 1.0, 0.0] for text in texts])


@pytest.fixture
def model():
    model = MagicMock()
    model.encode.side_effect = fake_encode
    return model


class TestEmbeddingService:
    @pytest.mark.asyncio
    async def test_embed_returns_plain_floats(self, model):
        service = EmbeddingService(model=model, batch_size=8)

        vector = await service.embed("abc")

        assert vector == [3.0, 1.0, 0.0]
        assert model.encode.call_args.kwargs["batch_size"] == 8

    @pytest.mark.asyncio
    async def test_blank_text_rejected(self, model):
        service = EmbeddingService(model=model)

        with pytest.raises(EmbeddingError):
            await service.embed("   ")
        model.encode.assert_not_called()

    @pytest.mark.asyncio
    async def test_model_failure_wrapped(self, model):
        service = EmbeddingService(model=model)

        with pytest.raises(EmbeddingError):
            await service.embed("poison pill")

    @pytest.mark.asyncio
    async def test_batch_embeds_in_one_call(self, model):
        service = EmbeddingService(model=model)

        result = await service.embed_questions([("q1", "a"), ("q2", "bb")])

        assert result.embeddings == {"q1": [1.0, 1.0, 0.0], "q2": [2.0, 1.0, 0.0]}
        assert result.failures == {}
        assert model.encode.call_count == 1

    @pytest.mark.asyncio
    async def test_bad_question_does_not_sink_batch(self, model):
        service = EmbeddingService(model=model)

        result = await service.embed_questions([("q1", "a"), ("q2", "poison"), ("q3", "  ")])

        assert set(result.embeddings) == {"q1"}
        assert set(result.failures) == {"q2", "q3"}
        assert result.failures["q2"].startswith("embedding failed")

    @pytest.mark.asyncio
    async def test_empty_batch(self, model):
        result = await EmbeddingService(model=model).embed_questions([])

        assert result.embeddings == {}
        model.encode.assert_not_called()
