"""
API routes module.
"""

from jobcore.api.routes.health import router as health_router
from jobcore.api.routes.jobs import router as jobs_router
from jobcore.api.routes.queues import router as queues_router

__all__ = ["health_router", "jobs_router", "queues_router"]
