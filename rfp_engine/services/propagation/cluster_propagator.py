"""Fans master answers out to cluster members and applies manual overrides."""

from typing import Dict, Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.exceptions import DatabaseError, PropagationError, QuestionNotFoundError, ValidationError
from rfp_engine.database.models import Answer
from rfp_engine.repositories.answer_repository import AnswerRepository
from rfp_engine.repositories.cluster_repository import ClusterRepository
from rfp_engine.repositories.question_repository import QuestionRepository
from rfp_engine.schemas.answer import PropagationResult
from rfp_engine.schemas.clustering import ApplyAnswerResponse
from rfp_engine.schemas.pipeline import FailedQuestion
from rfp_engine.services.clustering.member_views import apply_member_views, group_by_cluster
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _copied_fields(source: Answer) -> dict:
    """Answer content copied verbatim; clones are not re-scored."""
    return {
        "text": source.text,
        "sources": list(source.sources or []),
        "confidence": source.confidence,
        "confidence_band": source.confidence_band,
        "confidence_breakdown": dict(source.confidence_breakdown) if source.confidence_breakdown else None,
        "found": source.found,
        "from_content_library": source.from_content_library,
    }


class ClusterPropagator:
    """Writes cloned answers with provenance and keeps member views current."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.question_repo = QuestionRepository(session)
        self.cluster_repo = ClusterRepository(session)
        self.answer_repo = AnswerRepository(session)

    async def propagate(self, project_id: UUID) -> PropagationResult:
        """Clone every answered master's answer onto its members.

        A member is overwritten only when it has no answer or its answer is
        an automatic clone. Members with their own answers, and members of
        clusters whose master has no answer, are counted as skipped.
        """
        clusters = await self.cluster_repo.list_by_project(project_id)
        questions = await self.question_repo.list_by_project(project_id)
        answers: Dict[UUID, Answer] = await self.answer_repo.get_by_question_ids(q.id for q in questions)
        grouped = group_by_cluster(questions)

        result = PropagationResult()
        try:
            for cluster in clusters:
                members = grouped.get(cluster.id, [])
                others = [q for q in members if q.id != cluster.master_question_id]
                master_answer = answers.get(cluster.master_question_id)

                if master_answer is None:
                    result.skipped += len(others)
                else:
                    for member in others:
                        existing = answers.get(member.id)
                        if existing is not None and (
                            existing.cloned_from_question_id is None or existing.manual_override
                        ):
                            result.skipped += 1
                            continue
                        answers[member.id] = await self.answer_repo.upsert(
                            member.id,
                            project_id,
                            cloned_from_question_id=cluster.master_question_id,
                            manual_override=False,
                            **_copied_fields(master_answer),
                        )
                        result.applied += 1

                apply_member_views(cluster, members, answers)

            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            raise PropagationError(f"Propagation failed for project {project_id}: {e}", e) from e

        LOGGER.info(
            "Propagation completed",
            extra={"project_id": str(project_id), "applied": result.applied, "skipped": result.skipped},
        )
        return result

    async def apply_answer(
        self,
        project_id: UUID,
        source_question_id: UUID,
        target_question_ids: Sequence[str],
        custom_text: Optional[str] = None,
    ) -> ApplyAnswerResponse:
        """Copy the source answer (or ``custom_text``) onto arbitrary targets.

        Each target succeeds or fails on its own; the response lists both.

        Raises:
            QuestionNotFoundError: If the source question does not exist
            ValidationError: If ``custom_text`` is given but blank
        """
        source = await self.question_repo.get_in_project(project_id, source_question_id)
        if source is None:
            raise QuestionNotFoundError(f"Source question {source_question_id} not found in project {project_id}")

        text = None
        if custom_text is not None:
            text = custom_text.strip()
            if not text:
                raise ValidationError("custom_text must not be blank")

        source_answer = None if text is not None else await self.answer_repo.get_by_question_id(source.id)

        response = ApplyAnswerResponse()
        touched_clusters = set()
        seen = set()

        for raw_id in target_question_ids:
            if raw_id in seen:
                continue
            seen.add(raw_id)

            reason = None
            target = None
            try:
                target_id = UUID(str(raw_id))
            except ValueError:
                reason = "not found"
            else:
                if target_id == source.id:
                    reason = "same as source"
                else:
                    target = await self.question_repo.get_in_project(project_id, target_id)
                    if target is None:
                        reason = "not found"
                    elif text is None and source_answer is None:
                        reason = "source has no answer"

            if reason is not None:
                response.failed.append(FailedQuestion(question_id=str(raw_id), reason=reason))
                continue

            if text is not None:
                fields = {
                    "text": text,
                    "sources": [],
                    "confidence": None,
                    "confidence_band": None,
                    "confidence_breakdown": None,
                    "found": True,
                    "from_content_library": False,
                    "cloned_from_question_id": None,
                }
            else:
                fields = dict(_copied_fields(source_answer), cloned_from_question_id=source.id)

            try:
                async with self.session.begin_nested():
                    await self.answer_repo.upsert(target.id, project_id, manual_override=True, **fields)
            except DatabaseError as e:
                LOGGER.warning(
                    "Manual answer override failed for target",
                    extra={"question_id": str(target.id), "error": str(e)},
                )
                response.failed.append(FailedQuestion(question_id=str(raw_id), reason="save failed"))
                continue

            response.applied.append(str(raw_id))
            if target.cluster_id is not None:
                touched_clusters.add(target.cluster_id)

        await self._refresh_member_views(touched_clusters)
        await self.session.commit()

        LOGGER.info(
            "Manual answer override applied",
            extra={
                "project_id": str(project_id),
                "source_question_id": str(source.id),
                "applied": len(response.applied),
                "failed": len(response.failed),
            },
        )
        return response

    async def _refresh_member_views(self, cluster_ids: Iterable[UUID]) -> None:
        clusters = await self.cluster_repo.get_by_ids(cluster_ids)
        for cluster in clusters:
            members = await self.question_repo.list_by_cluster(cluster.id)
            answers = await self.answer_repo.get_by_question_ids(q.id for q in members)
            apply_member_views(cluster, members, answers)
