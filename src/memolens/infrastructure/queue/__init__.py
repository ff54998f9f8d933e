"""Queue store adapters for the analysis job dispatcher."""

from .store import JobStore, JobStoreConfig

__all__ = ["JobStore", "JobStoreConfig"]
