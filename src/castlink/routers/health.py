from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..core.database import get_engine
from ..core.dates import business_day

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/live", response_model=dict)
async def live() -> dict:
    return {"ok": True, "business_day": business_day().isoformat()}


@router.get("/ready", response_model=dict)
async def ready() -> dict:
    try:
        async with get_engine().connect() as connection:
            await connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness check failed: %s", exc)
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    return {"ok": True, "database": "up"}
