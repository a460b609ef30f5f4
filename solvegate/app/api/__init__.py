"""API endpoints package for the gateway."""

from solvegate.app.api.admin import router as admin_router
from solvegate.app.api.auth import router as auth_router
from solvegate.app.api.history import router as history_router
from solvegate.app.api.solve import router as solve_router
from solvegate.app.api.users import router as users_router

__all__ = [
    "admin_router",
    "auth_router",
    "history_router",
    "solve_router",
    "users_router",
]
