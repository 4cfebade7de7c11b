import os

from fastapi import APIRouter, Depends

from quicklist.core.config import Settings, get_settings

router = APIRouter(tags=["meta"])


# ✅ Root (GET /)
@router.get("/")
def root():
    return {
        "name": "QuickList API",
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "version": "/version",
    }


# ✅ Health Check (GET /health)
@router.get("/health")
def health():
    return {"ok": True}


# ✅ Version endpoint (GET /version)
@router.get("/version")
def version(settings: Settings = Depends(get_settings)):
    return {
        "version": settings.APP_VERSION,
        "build": settings.BUILD_ID,
        "render_git_commit": os.environ.get("RENDER_GIT_COMMIT"),
    }
