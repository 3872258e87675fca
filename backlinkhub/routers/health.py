"""
Health check endpoint.

- GET /health  cheap liveness probe plus a one-query database check
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from backlinkhub import __version__
from backlinkhub.core.database import get_engine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check():
    database = "ok"
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Health check database probe failed: %s", exc)
        database = "down"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "version": __version__,
        "service": "backlinkhub",
        "database": database,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
