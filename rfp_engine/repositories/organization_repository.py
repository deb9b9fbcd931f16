from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from rfp_engine.core.config import settings
from rfp_engine.database.models import Organization
from rfp_engine.repositories.base_repository import BaseRepository
from rfp_engine.schemas.clustering import ClusteringThresholds


class OrganizationRepository(BaseRepository[Organization]):
    """Data access for organization clustering settings."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Organization)

    async def get_thresholds(self, org_id: Optional[UUID]) -> ClusteringThresholds:
        """Stored thresholds of the organization, falling back to the defaults."""
        defaults = settings.clustering
        org = await self.get_by_id(org_id) if org_id else None

        cluster_threshold = defaults.cluster_threshold
        similar_threshold = defaults.similar_threshold
        if org is not None:
            if org.cluster_threshold is not None:
                cluster_threshold = org.cluster_threshold
            if org.similar_threshold is not None:
                similar_threshold = org.similar_threshold

        return ClusteringThresholds(
            cluster_threshold=cluster_threshold,
            similar_threshold=similar_threshold,
        )

    async def set_thresholds(self, org_id: UUID, thresholds: ClusteringThresholds) -> Optional[Organization]:
        return await self.update(
            org_id,
            commit=True,
            cluster_threshold=thresholds.cluster_threshold,
            similar_threshold=thresholds.similar_threshold,
        )
