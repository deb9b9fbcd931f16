"""Question clustering, similar-question lookup and manual answer override."""

from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.api.v1.errors import to_http_exception
from rfp_engine.core.database import get_async_session as get_session
from rfp_engine.core.exceptions import AppError
from rfp_engine.schemas.clustering import (
    ApplyAnswerRequest,
    ApplyAnswerResponse,
    ClusterQuestionsRequest,
    ClusterQuestionsResponse,
    FindSimilarQuestionsResponse,
    GetClustersResponse,
)
from rfp_engine.services.clustering.clustering_service import ClusteringService
from rfp_engine.services.propagation.cluster_propagator import ClusterPropagator
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_clustering_service(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> ClusteringService:
    return ClusteringService(db_session)


async def get_cluster_propagator(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> ClusterPropagator:
    return ClusterPropagator(db_session)


@router.post(
    "/{project_id}/clusters",
    response_model=ClusterQuestionsResponse,
    summary="Cluster project questions",
    operation_id="cluster_project_questions",
)
async def cluster_questions(
    project_id: UUID,
    service: Annotated[ClusteringService, Depends(get_clustering_service)],
    request: Optional[ClusterQuestionsRequest] = None,
) -> ClusterQuestionsResponse:
    """Embed and cluster the project's questions.

    Existing clusters are kept unless ``force_recluster`` is set.
    """
    request = request or ClusterQuestionsRequest()
    try:
        return await service.cluster_questions(
            project_id,
            opportunity_id=request.opportunity_id,
            force_recluster=request.force_recluster,
        )
    except AppError as e:
        LOGGER.error(
            "Clustering failed",
            extra={"project_id": str(project_id), "error": str(e)},
        )
        raise to_http_exception(e) from e


@router.get(
    "/{project_id}/clusters",
    response_model=GetClustersResponse,
    summary="List project clusters",
    operation_id="get_project_clusters",
)
async def get_clusters(
    project_id: UUID,
    service: Annotated[ClusteringService, Depends(get_clustering_service)],
) -> GetClustersResponse:
    try:
        return await service.get_clusters(project_id)
    except AppError as e:
        raise to_http_exception(e) from e


@router.get(
    "/{project_id}/questions/{question_id}/similar",
    response_model=FindSimilarQuestionsResponse,
    summary="Find similar questions",
    operation_id="find_similar_questions",
)
async def find_similar_questions(
    project_id: UUID,
    question_id: UUID,
    service: Annotated[ClusteringService, Depends(get_clustering_service)],
    threshold: Optional[float] = Query(default=None, description="Minimum similarity, clamped to [0, 1]"),
    limit: Optional[int] = Query(default=None, description="Maximum suggestions, clamped to [1, 50]"),
) -> FindSimilarQuestionsResponse:
    try:
        return await service.find_similar_questions(project_id, question_id, threshold=threshold, limit=limit)
    except AppError as e:
        raise to_http_exception(e) from e


@router.post(
    "/{project_id}/clusters/apply-answer",
    response_model=ApplyAnswerResponse,
    summary="Apply an answer to other questions",
    operation_id="apply_cluster_answer",
)
async def apply_answer(
    project_id: UUID,
    request: ApplyAnswerRequest,
    propagator: Annotated[ClusterPropagator, Depends(get_cluster_propagator)],
) -> ApplyAnswerResponse:
    """Copy the source question's answer, or custom text, onto the targets.

    Targets succeed or fail individually; failures are listed with a reason.
    """
    try:
        return await propagator.apply_answer(
            project_id,
            request.source_question_id,
            request.target_question_ids,
            custom_text=request.custom_text,
        )
    except AppError as e:
        raise to_http_exception(e) from e
