"""Organization configuration schemas."""

from uuid import UUID

from pydantic import BaseModel

from rfp_engine.schemas.clustering import ClusteringThresholds


class ClusteringSettingsResponse(BaseModel):
    org_id: UUID
    thresholds: ClusteringThresholds
