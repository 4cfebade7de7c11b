"""
QuickList API - FastAPI Main Entry

✅ LOCAL:
    cd backend
    source .venv/bin/activate
    python -m uvicorn quicklist.main:app --reload --host 0.0.0.0 --port 8000

✅ TEST LOCALLY:
    curl -i http://127.0.0.1:8000/
    curl -i http://127.0.0.1:8000/docs
    curl -i http://127.0.0.1:8000/health
    curl -i http://127.0.0.1:8000/version

    curl -i -F "photos=@front.jpg" -F "photos=@tag.jpg" -F "marketplace=ebay" \
        http://127.0.0.1:8000/v1/listings/analyze
    curl -i -F "photo=@front.jpg" http://127.0.0.1:8000/v1/photos/check
    curl -i "http://127.0.0.1:8000/v1/pricing?q=Nike+Air+Max+90&brand=Nike"

✅ PRODUCTION (Render):
    Build Command:
        pip install -r requirements.txt

    Start Command:
        cd backend && python -m uvicorn quicklist.main:app --host 0.0.0.0 --port $PORT
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# ✅ Routers
from quicklist.api.routes_listings import router as listings_router
from quicklist.api.routes_meta import router as meta_router
from quicklist.api.routes_photos import router as photos_router
from quicklist.api.routes_pricing import router as pricing_router
from quicklist.core.config import get_settings


def create_app() -> FastAPI:
    settings = get_settings()

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="QuickList API",
        version=settings.APP_VERSION,
        description="Photos in, priced marketplace listing out (Analyze + Enrich + Photo check + Pricing)",
    )

    # ✅ CORS
    # NOTE:
    # - the mobile app does NOT require CORS
    # - browser uploads / Swagger docs do
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ✅ Mount routers
    app.include_router(meta_router)
    app.include_router(listings_router)
    app.include_router(photos_router)
    app.include_router(pricing_router)

    return app


app = create_app()
