"""Starts answer-generation runs and reads their progress."""

from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from temporalio.client import Client as TemporalClient
from temporalio.exceptions import WorkflowAlreadyStartedError

from rfp_engine.core.config import settings
from rfp_engine.core.exceptions import (
    PipelineAlreadyRunningError,
    PipelineError,
    PipelineRunNotFoundError,
    ValidationError,
)
from rfp_engine.core.temporal_client import get_temporal_client
from rfp_engine.repositories.pipeline_run_repository import PipelineRunRepository
from rfp_engine.repositories.question_repository import QuestionRepository
from rfp_engine.schemas.pipeline import PipelineRunSchema, PipelineStage
from rfp_engine.temporal.answer_pipeline.workflows.answer_generation import AnswerGenerationWorkflow
from rfp_engine.temporal.core.constants import answer_generation_workflow_id
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PipelineService:
    """Coordinates pipeline run records with the Temporal workflow."""

    def __init__(self, session: AsyncSession, temporal_client: Optional[TemporalClient] = None):
        self.session = session
        self.question_repo = QuestionRepository(session)
        self.run_repo = PipelineRunRepository(session)
        self._temporal_client = temporal_client

    async def _client(self) -> TemporalClient:
        if self._temporal_client is None:
            self._temporal_client = await get_temporal_client()
        return self._temporal_client

    async def run_answer_generation(
        self,
        project_id: UUID,
        org_id: UUID,
        kb_ids: Optional[List[UUID]] = None,
        force_recluster: bool = False,
    ) -> PipelineRunSchema:
        """Create a run record and start the answer-generation workflow.

        The workflow id is derived from the project, so Temporal refuses a
        second run while one is still in flight.

        Raises:
            ValidationError: If the project has no questions
            PipelineAlreadyRunningError: If a run is already in flight for the project
            PipelineError: If the workflow could not be started
        """
        question_count = await self.question_repo.count(filters={"project_id": project_id})
        if question_count == 0:
            raise ValidationError(f"No questions found for project {project_id}")

        workflow_id = answer_generation_workflow_id(str(project_id))
        run = await self.run_repo.create(
            project_id=project_id,
            org_id=org_id,
            stage=PipelineStage.PREPARING.value,
            questions_total=question_count,
            failed_questions=[],
            temporal_workflow_id=workflow_id,
        )
        # The workflow's first progress update needs the row to exist
        await self.session.commit()
        await self.session.refresh(run)

        payload = {
            "run_id": str(run.id),
            "project_id": str(project_id),
            "org_id": str(org_id),
            "kb_ids": [str(kb) for kb in kb_ids] if kb_ids else None,
            "force_recluster": force_recluster,
            "concurrency": settings.pipeline.concurrency,
            "run_budget_seconds": settings.pipeline.run_budget_seconds,
            "stage_timeout_seconds": settings.pipeline.stage_timeout_seconds,
            "unit_timeout_seconds": settings.pipeline.unit_timeout_seconds,
            "progress_report_interval": settings.pipeline.progress_report_interval,
        }

        try:
            client = await self._client()
            await client.start_workflow(
                AnswerGenerationWorkflow.run,
                payload,
                id=workflow_id,
                task_queue=settings.temporal_task_queue,
            )
        except WorkflowAlreadyStartedError as e:
            LOGGER.info(
                "Answer generation already running",
                extra={"project_id": str(project_id), "workflow_id": workflow_id},
            )
            await self.session.delete(run)
            await self.session.commit()
            raise PipelineAlreadyRunningError(
                f"An answer generation run is already in progress for project {project_id}", e
            ) from e
        except Exception as e:
            LOGGER.error(
                f"Failed to start answer generation workflow: {e}",
                exc_info=True,
                extra={"project_id": str(project_id), "run_id": str(run.id)},
            )
            await self.run_repo.apply_progress(
                run.id,
                {"stage": PipelineStage.FAILED.value, "error_message": f"Could not start workflow: {e}"},
            )
            await self.session.commit()
            raise PipelineError(f"Failed to start answer generation for project {project_id}", e) from e

        LOGGER.info(
            "Answer generation started",
            extra={"project_id": str(project_id), "run_id": str(run.id), "questions": question_count},
        )
        return PipelineRunSchema.model_validate(run)

    async def get_run(self, project_id: UUID, run_id: UUID) -> PipelineRunSchema:
        run = await self.run_repo.get_for_project(project_id, run_id)
        if run is None:
            raise PipelineRunNotFoundError(f"Pipeline run {run_id} not found for project {project_id}")
        return PipelineRunSchema.model_validate(run)

    async def get_latest_run(self, project_id: UUID) -> PipelineRunSchema:
        run = await self.run_repo.get_latest(project_id)
        if run is None:
            raise PipelineRunNotFoundError(f"No pipeline runs found for project {project_id}")
        return PipelineRunSchema.model_validate(run)
