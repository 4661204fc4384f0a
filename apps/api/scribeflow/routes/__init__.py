"""Route modules."""

from .admin import router as admin_router
from .assignments import router as assignments_router
from .balance import router as balance_router
from .internal import router as internal_router
from .jobs import router as jobs_router

__all__ = ["admin_router", "assignments_router", "balance_router", "internal_router", "jobs_router"]
