"""Answer-generation pipeline: cluster, generate for masters, propagate."""
