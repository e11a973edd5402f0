"""FastAPI API endpoints under /api.

Endpoint groups: session (health, login, logout), dashboard (character sheet
load and edit actions), backups (GM backup management). The dashboard and
backup endpoints each take a single POST body discriminated on ``action``.
"""

from fastapi import APIRouter

from .backups import router as backups_router
from .dashboard import router as dashboard_router
from .session import router as session_router

router = APIRouter()
router.include_router(session_router)
router.include_router(dashboard_router)
router.include_router(backups_router)
