"""Organization configuration endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.database import get_async_session as get_session
from rfp_engine.repositories.organization_repository import OrganizationRepository
from rfp_engine.schemas.clustering import ClusteringThresholds
from rfp_engine.schemas.organization import ClusteringSettingsResponse
from rfp_engine.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_organization_repository(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> OrganizationRepository:
    return OrganizationRepository(db_session)


@router.get(
    "/{org_id}/clustering-settings",
    response_model=ClusteringSettingsResponse,
    summary="Get clustering thresholds",
    operation_id="get_clustering_settings",
)
async def get_clustering_settings(
    org_id: UUID,
    org_repo: Annotated[OrganizationRepository, Depends(get_organization_repository)],
) -> ClusteringSettingsResponse:
    """Effective thresholds; unset values fall back to the defaults."""
    thresholds = await org_repo.get_thresholds(org_id)
    return ClusteringSettingsResponse(org_id=org_id, thresholds=thresholds)


@router.put(
    "/{org_id}/clustering-settings",
    response_model=ClusteringSettingsResponse,
    summary="Update clustering thresholds",
    operation_id="update_clustering_settings",
)
async def update_clustering_settings(
    org_id: UUID,
    thresholds: ClusteringThresholds,
    org_repo: Annotated[OrganizationRepository, Depends(get_organization_repository)],
) -> ClusteringSettingsResponse:
    """Store thresholds for the organization.

    Values outside [0, 1] are rejected; a similar threshold above the
    cluster threshold is clamped down to it.
    """
    org = await org_repo.set_thresholds(org_id, thresholds)
    if org is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Organization {org_id} not found",
        )
    LOGGER.info(
        "Clustering thresholds updated",
        extra={
            "org_id": str(org_id),
            "cluster_threshold": thresholds.cluster_threshold,
            "similar_threshold": thresholds.similar_threshold,
        },
    )
    return ClusteringSettingsResponse(org_id=org_id, thresholds=thresholds)
