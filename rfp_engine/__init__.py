"""RFP answer engine: question clustering, answer generation and propagation."""
