"""
Health check endpoints
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.database import get_session

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "mawid-api"}


@router.get("/ready")
async def readiness(db: AsyncSession = Depends(get_session)) -> Any:
    """
    Kubernetes readiness probe - checks the database and payment configuration
    """
    checks = {
        "database": False,
        "qicard_configured": all([
            settings.QICARD_USERNAME,
            settings.QICARD_PASSWORD,
            settings.QICARD_TERMINAL_ID,
        ]),
        "api": True
    }

    try:
        result = await db.execute(text("SELECT 1"))
        checks["database"] = result.scalar() == 1
    except SQLAlchemyError as e:
        logger.error(f"Readiness database check failed: {e}")

    ready = checks["database"] and checks["api"]
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not ready",
            "checks": checks,
            "version": settings.APP_VERSION
        }
    )
