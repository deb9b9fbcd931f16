"""Temporal activities for the answer-generation pipeline.

Each activity opens its own session; workflow code only ever sees plain
dicts and strings.
"""

from typing import Any, Dict, List, Optional
from uuid import UUID

from temporalio import activity

from rfp_engine.core.database import async_session_maker
from rfp_engine.core.llm_client import UnifiedLLMClient, create_llm_client
from rfp_engine.repositories.answer_repository import AnswerRepository
from rfp_engine.repositories.pipeline_run_repository import PipelineRunRepository, TERMINAL_STAGES
from rfp_engine.repositories.question_repository import QuestionRepository
from rfp_engine.services.answer.answer_generator import AnswerGenerator
from rfp_engine.services.clustering.clustering_service import ClusteringService
from rfp_engine.services.propagation.cluster_propagator import ClusterPropagator
from rfp_engine.temporal.core.activity_registry import ActivityRegistry
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

_llm_client: Optional[UnifiedLLMClient] = None


def _get_llm_client() -> UnifiedLLMClient:
    """Worker-wide model client, built on first use."""
    global _llm_client
    if _llm_client is None:
        _llm_client = create_llm_client()
    return _llm_client


@ActivityRegistry.register("answer_pipeline", "prepare_questions_activity")
@activity.defn
async def prepare_questions_activity(project_id: str, force_recluster: bool = False) -> Dict[str, Any]:
    """Cluster the project's questions and return the generation order.

    Returns:
        Dict with ``question_ids`` (masters first), ``questions_total``,
        ``clusters_created`` and ``failed_questions``
    """
    LOGGER.info(f"Preparing questions for project {project_id} (force_recluster={force_recluster})")
    async with async_session_maker() as session:
        project_uuid = UUID(project_id)
        service = ClusteringService(session)
        clustered = await service.cluster_questions(project_uuid, force_recluster=force_recluster)
        question_ids = await service.generation_order(project_uuid)
        questions_total = await QuestionRepository(session).count(filters={"project_id": project_uuid})

    LOGGER.info(
        f"Prepared {len(question_ids)} of {questions_total} questions for project {project_id}, "
        f"{clustered.clusters_created} new clusters"
    )
    return {
        "question_ids": question_ids,
        "questions_total": questions_total,
        "clusters_created": clustered.clusters_created,
        "failed_questions": [f.model_dump() for f in clustered.failed_questions],
    }


@ActivityRegistry.register("answer_pipeline", "generate_answer_activity")
@activity.defn
async def generate_answer_activity(question_id: str, kb_ids: Optional[List[str]] = None) -> Dict[str, Any]:
    """Generate one answer.

    Per-question failures come back as a ``failed`` outcome. Errors raised
    before generation starts (opening the session, building the model
    client) propagate and are recorded by the workflow against this
    question.
    """
    async with async_session_maker() as session:
        generator = AnswerGenerator(session, llm_client=_get_llm_client())
        outcome = await generator.generate(question_id, kb_ids)
    return outcome.model_dump(mode="json")


@ActivityRegistry.register("answer_pipeline", "propagate_answers_activity")
@activity.defn
async def propagate_answers_activity(project_id: str) -> Dict[str, int]:
    """Clone master answers onto cluster members."""
    async with async_session_maker() as session:
        project_uuid = UUID(project_id)
        result = await ClusterPropagator(session).propagate(project_uuid)
        answered = await AnswerRepository(session).count_by_project(project_uuid)

    return {
        "applied": result.applied,
        "skipped": result.skipped,
        "questions_answered": answered,
    }


@ActivityRegistry.register("answer_pipeline", "update_pipeline_run_activity")
@activity.defn
async def update_pipeline_run_activity(run_id: str, changes: Dict[str, Any]) -> Optional[int]:
    """Persist run progress.

    When the update moves the run into a terminal stage the answered count
    is read back from the database, so a run cut short still reports the
    answers it produced.

    Returns:
        The run's answered count after the update, None if the run does not exist
    """
    async with async_session_maker() as session:
        repo = PipelineRunRepository(session)
        run = await repo.get_by_id(UUID(run_id))
        if run is None:
            LOGGER.warning(f"Pipeline run {run_id} not found, progress update dropped")
            return None

        changes = dict(changes)
        if changes.get("stage") in TERMINAL_STAGES:
            changes["questions_answered"] = await AnswerRepository(session).count_by_project(run.project_id)

        run = await repo.apply_progress(run.id, changes)
        await session.commit()
        return run.questions_answered
