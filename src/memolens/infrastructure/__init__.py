"""Infrastructure adapters (queue store, persistence)."""
