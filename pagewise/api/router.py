"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter

from ..core.database import ping_db

router = APIRouter()


# ── Health (no auth) ─────────────────────────────────────────────────

@router.get("/health")
async def health():
    db_ok = await ping_db()
    return {"status": "ok" if db_ok else "degraded", "service": "pagewise", "database": db_ok}


# ── V1 routes (auth resolved per route) ──────────────────────────────

from .ai import ai_router
from .documents import documents_router

router.include_router(documents_router, prefix="/v1")
router.include_router(ai_router, prefix="/v1")
