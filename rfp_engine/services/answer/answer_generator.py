"""Answer generation for cluster masters.

Only cluster masters are answered; any other question yields a ``skipped``
outcome without touching retrieval or the model. Generation-call problems
(API errors, timeouts, unparseable output) come back as a ``failed`` outcome
carrying the question id instead of raising.
"""

from typing import Any, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.config import settings
from rfp_engine.core.exceptions import AnswerGenerationError, APIClientError, AppError, EmbeddingError
from rfp_engine.core.llm_client import UnifiedLLMClient, create_llm_client
from rfp_engine.database.models import Question
from rfp_engine.repositories.answer_repository import AnswerRepository
from rfp_engine.repositories.knowledge_repository import KnowledgeRepository
from rfp_engine.repositories.question_repository import QuestionRepository
from rfp_engine.schemas.answer import AnswerSource, GenerationOutcome, GenerationStatus
from rfp_engine.services.answer.confidence_score import ConfidenceInputs, ConfidenceResult, compute_confidence
from rfp_engine.services.answer.context_builder import build_context
from rfp_engine.services.answer.prompts import ANSWER_SYSTEM_PROMPT, build_user_prompt
from rfp_engine.services.embedding_service import EmbeddingService
from rfp_engine.utils.json_parser import parse_json_object
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

CONTENT_LIBRARY_FILE_NAME = "Content Library"


def _coerce_confidence(value: Any) -> float:
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def _coerce_found(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


class AnswerGenerator:
    """Retrieves context and produces one scored answer per cluster master."""

    def __init__(
        self,
        session: AsyncSession,
        llm_client: Optional[UnifiedLLMClient] = None,
        embedding_service: Optional[EmbeddingService] = None,
    ):
        self.session = session
        self.question_repo = QuestionRepository(session)
        self.answer_repo = AnswerRepository(session)
        self.knowledge_repo = KnowledgeRepository(session)
        self._llm_client = llm_client
        self.embedding_service = embedding_service or EmbeddingService()
        self.top_k = settings.pipeline.retrieval_top_k
        self.max_context_chars = settings.pipeline.max_context_chars
        self.content_library_threshold = settings.pipeline.content_library_match_threshold

    @property
    def llm_client(self) -> UnifiedLLMClient:
        if self._llm_client is None:
            self._llm_client = create_llm_client()
        return self._llm_client

    async def generate(
        self,
        question_id: str,
        kb_ids: Optional[Sequence[str]] = None,
    ) -> GenerationOutcome:
        """Generate and persist the answer of one question.

        Application errors (model calls, retrieval, persistence) are turned
        into a ``failed`` outcome for this question and the session is
        rolled back.

        Args:
            question_id: Question to answer
            kb_ids: Optional knowledge-base subset for retrieval

        Returns:
            GenerationOutcome tagged generated, skipped or failed
        """
        try:
            question_uuid = UUID(str(question_id))
        except ValueError:
            return GenerationOutcome.failed(question_id, "invalid question id")

        try:
            question = await self.question_repo.get_by_id(question_uuid)
            if question is None:
                return GenerationOutcome.failed(question_id, "not found")
            if not question.is_cluster_master:
                return GenerationOutcome.skipped(question_id, "not a cluster master")
            return await self._answer_master(question, kb_ids)
        except AnswerGenerationError as e:
            LOGGER.warning("Answer generation failed", extra={"question_id": question_id, "error": str(e)})
            return GenerationOutcome.failed(question_id, str(e))
        except AppError as e:
            await self.session.rollback()
            LOGGER.error(
                "Answer generation failed",
                exc_info=True,
                extra={"question_id": question_id, "error": str(e)},
            )
            return GenerationOutcome.failed(question_id, f"generation failed: {e}")

    async def _answer_master(self, question: Question, kb_ids: Optional[Sequence[str]]) -> GenerationOutcome:
        question_id = str(question.id)
        try:
            embedding = (
                list(question.embedding)
                if question.embedding is not None
                else await self.embedding_service.embed(question.text)
            )
        except EmbeddingError as e:
            raise AnswerGenerationError(f"embedding failed: {e}", question_id, e) from e

        knowledge_base_ids = [UUID(str(kb)) for kb in kb_ids] if kb_ids else None

        library_hits = await self.knowledge_repo.query_content_library(
            question.org_id, embedding, limit=1, knowledge_base_ids=knowledge_base_ids
        )
        if library_hits and library_hits[0][1] >= self.content_library_threshold:
            item, similarity = library_hits[0]
            LOGGER.info(
                "Answering from content library",
                extra={"question_id": question_id, "item_id": str(item.id), "similarity": similarity},
            )
            source = AnswerSource(
                id=str(item.id),
                file_name=CONTENT_LIBRARY_FILE_NAME,
                chunk_key=f"content-library:{item.id}",
                text_content=item.question,
                relevance=round(similarity, 4),
                created_at=item.updated_at,
            )
            scored = compute_confidence(
                ConfidenceInputs(
                    question_text=question.text,
                    answer_text=item.answer,
                    llm_confidence=similarity,
                    found=True,
                    sources=[source],
                    similarity_scores=[similarity],
                    source_dates=[item.updated_at],
                    from_content_library=True,
                )
            )
            return await self._save(question, item.answer, [source], scored, found=True, from_content_library=True)

        hits = await self.knowledge_repo.query_chunks(
            question.org_id, embedding, self.top_k, knowledge_base_ids=knowledge_base_ids
        )
        if not hits:
            LOGGER.info("No passages retrieved, answering without context", extra={"question_id": question_id})
        context = build_context(hits, self.max_context_chars)

        try:
            raw = await self.llm_client.complete(
                ANSWER_SYSTEM_PROMPT,
                build_user_prompt(question.text, context.text, question.section_title),
                max_tokens=settings.llm.answer_max_tokens,
                temperature=settings.llm.answer_temperature,
            )
        except APIClientError as e:
            LOGGER.warning(
                "Answer generation call failed",
                extra={"question_id": question_id, "error": str(e)},
            )
            raise AnswerGenerationError(f"generation failed: {e}", question_id, e) from e

        parsed = parse_json_object(raw)
        answer_text = str(parsed.get("answer") or "").strip() if parsed else ""
        if not answer_text:
            LOGGER.warning("Malformed model output", extra={"question_id": question_id, "raw": (raw or "")[:300]})
            raise AnswerGenerationError("malformed model output", question_id)

        llm_confidence = _coerce_confidence(parsed.get("confidence"))
        found = _coerce_found(parsed.get("found"))
        sources = self._cited_first(context.sources, str(parsed.get("source") or "") if found else "")

        scored = compute_confidence(
            ConfidenceInputs(
                question_text=question.text,
                answer_text=answer_text,
                llm_confidence=llm_confidence,
                found=found,
                sources=sources,
                similarity_scores=[similarity for _, similarity in hits],
                source_dates=[chunk.created_at for chunk, _ in hits],
            )
        )
        return await self._save(question, answer_text, sources, scored, found=found, from_content_library=False)

    @staticmethod
    def _cited_first(sources: List[AnswerSource], cited_key: str) -> List[AnswerSource]:
        if not cited_key:
            return sources
        return sorted(sources, key=lambda s: s.chunk_key != cited_key)

    async def _save(
        self,
        question: Question,
        text: str,
        sources: List[AnswerSource],
        scored: ConfidenceResult,
        found: bool,
        from_content_library: bool,
    ) -> GenerationOutcome:
        answer = await self.answer_repo.upsert(
            question.id,
            question.project_id,
            text=text,
            sources=[s.model_dump(mode="json") for s in sources],
            confidence=scored.confidence,
            confidence_band=scored.band.value,
            confidence_breakdown=scored.breakdown.model_dump(),
            found=found,
            from_content_library=from_content_library,
            cloned_from_question_id=None,
            manual_override=False,
        )
        await self.session.commit()

        LOGGER.info(
            "Answer generated",
            extra={
                "question_id": str(question.id),
                "confidence": scored.confidence,
                "band": scored.band.value,
                "sources": len(sources),
            },
        )
        return GenerationOutcome(
            question_id=str(question.id),
            status=GenerationStatus.GENERATED,
            answer_id=str(answer.id),
            confidence=scored.confidence,
            confidence_band=scored.band,
            from_content_library=from_content_library,
        )
