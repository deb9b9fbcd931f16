"""Question clustering: greedy single-pass grouping and its persistence."""

from rfp_engine.services.clustering.clustering_engine import ClusteringEngine, ClusteringResult
from rfp_engine.services.clustering.clustering_service import ClusteringService

__all__ = ["ClusteringEngine", "ClusteringResult", "ClusteringService"]
