from fastapi import APIRouter
from rfp_engine.api.v1.endpoints import clusters, pipeline, organizations

# Create API router
api_router = APIRouter()

# Include routers
api_router.include_router(clusters.router, prefix="/projects", tags=["Clusters"])
api_router.include_router(pipeline.router, prefix="/projects", tags=["Answer Pipeline"])
api_router.include_router(organizations.router, prefix="/organizations", tags=["Organizations"])

__all__ = ["api_router"]
