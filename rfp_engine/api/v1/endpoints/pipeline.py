"""Answer-generation pipeline endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.api.v1.errors import to_http_exception
from rfp_engine.core.database import get_async_session as get_session
from rfp_engine.core.exceptions import AppError
from rfp_engine.schemas.pipeline import PipelineRunSchema, RunAnswerGenerationRequest
from rfp_engine.services.pipeline_service import PipelineService
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_pipeline_service(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> PipelineService:
    return PipelineService(db_session)


@router.post(
    "/{project_id}/answer-pipeline",
    response_model=PipelineRunSchema,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start answer generation",
    operation_id="run_answer_generation",
)
async def run_answer_generation(
    project_id: UUID,
    request: RunAnswerGenerationRequest,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
) -> PipelineRunSchema:
    """Start a background run: cluster, answer masters, propagate.

    Returns the run record immediately; poll the run endpoints for progress.
    A second run for the same project is refused with 409 while one is in flight.
    """
    try:
        return await service.run_answer_generation(
            project_id,
            org_id=request.org_id,
            kb_ids=request.kb_ids,
            force_recluster=request.force_recluster,
        )
    except AppError as e:
        LOGGER.warning(
            "Answer generation not started",
            extra={"project_id": str(project_id), "error": str(e)},
        )
        raise to_http_exception(e) from e


@router.get(
    "/{project_id}/answer-pipeline/runs/latest",
    response_model=PipelineRunSchema,
    summary="Get the latest pipeline run",
    operation_id="get_latest_pipeline_run",
)
async def get_latest_run(
    project_id: UUID,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
) -> PipelineRunSchema:
    try:
        return await service.get_latest_run(project_id)
    except AppError as e:
        raise to_http_exception(e) from e


@router.get(
    "/{project_id}/answer-pipeline/runs/{run_id}",
    response_model=PipelineRunSchema,
    summary="Get a pipeline run",
    operation_id="get_pipeline_run",
)
async def get_run(
    project_id: UUID,
    run_id: UUID,
    service: Annotated[PipelineService, Depends(get_pipeline_service)],
) -> PipelineRunSchema:
    try:
        return await service.get_run(project_id, run_id)
    except AppError as e:
        raise to_http_exception(e) from e
