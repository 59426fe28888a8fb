"""Health check endpoints for API and database monitoring."""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text, select, func
from alphachecker.api.deps import get_db
from alphachecker.models import AlphaToken
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "alphachecker-api"}


@router.get("/health/db")
async def check_database_health(db: AsyncSession = Depends(get_db)):
    """
    Database health check.
    
    Returns connectivity status and the number of tracked and cached tokens.
    """
    try:
        await db.execute(text("SELECT 1"))
        result = await db.execute(
            select(AlphaToken.is_tracked, func.count()).group_by(AlphaToken.is_tracked)
        )
        counts = {bool(tracked): count for tracked, count in result.all()}
        
        return {
            "status": "healthy",
            "tracked_tokens": counts.get(True, 0),
            "cached_tokens": counts.get(False, 0)
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {
            "status": "unhealthy",
            "error": str(e),
            "error_type": type(e).__name__
        }
