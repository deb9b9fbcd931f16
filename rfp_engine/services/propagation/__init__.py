from rfp_engine.services.propagation.cluster_propagator import ClusterPropagator

__all__ = ["ClusterPropagator"]
