from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.database import register_database
from .core.dates import business_day
from .routers import challenges, health


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title="Castlink API", version="0.1.0")

    origins = list(settings.cors_origins or ["*"])
    if settings.frontend_base_url:
        frontend_origin = str(settings.frontend_base_url).rstrip("/")
        if frontend_origin not in origins:
            origins.append(frontend_origin)
    allow_origins = ["*"] if "*" in origins else origins

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/health", tags=["health"])
    app.include_router(challenges.router, prefix="/challenges", tags=["challenges"])

    register_database(app)

    return app


app = create_app()


@app.on_event("startup")
async def warm_daily_challenges() -> None:
    try:
        await challenges.get_lifecycle_manager().ensure_daily_challenges(business_day())
    except Exception as exc:
        logger.warning("Failed to prepare today's challenges: %s", exc)
