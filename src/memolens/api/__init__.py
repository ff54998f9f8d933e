"""HTTP routers exposed by memolens."""

from .ops_api import router as ops_router

__all__ = ["ops_router"]
