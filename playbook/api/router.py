"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter, Depends

from ..core.dependencies import get_user

router = APIRouter()


# ── Health (no auth) ─────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "playbook"}


# ── V1 routes (auth required) ───────────────────────────────────────

from .chat import chat_router
from .sessions import sessions_router
from .workflows import workflows_router

router.include_router(chat_router, prefix="/v1", dependencies=[Depends(get_user)])
router.include_router(sessions_router, prefix="/v1", dependencies=[Depends(get_user)])
router.include_router(workflows_router, prefix="/v1", dependencies=[Depends(get_user)])
