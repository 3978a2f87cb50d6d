"""
Health check endpoints
"""
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from api.config import settings
from api.dependencies import get_db, get_queue_service, get_storage_service
from api.services.queue import QueueService
from api.services.storage import StorageService

logger = structlog.get_logger()
router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    queue: QueueService = Depends(get_queue_service),
) -> Dict[str, Any]:
    """Service health with database, storage and dispatch status."""
    health_status: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.VERSION,
        "components": {},
    }

    try:
        await db.execute(text("SELECT 1"))
        health_status["components"]["database"] = {"status": "healthy"}
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        health_status["status"] = "unhealthy"
        health_status["components"]["database"] = {"status": "unhealthy", "error": str(e)}

    backend = storage.backend
    health_status["components"]["storage"] = {
        "status": "healthy" if backend is not None else "unavailable",
        "backend": backend.name if backend is not None else None,
    }
    if backend is None:
        health_status["status"] = "degraded"

    health_status["components"]["dispatch"] = {
        "mode": queue.mode,
        "in_flight": queue.in_flight,
    }
    health_status["components"]["stylization"] = {
        "configured": bool(settings.WAVESPEED_API_KEY),
    }

    return health_status
