# GET /api/stats, /api/health

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
import structlog

from analytics_pipeline.core.context import ServiceContext, get_context
from analytics_pipeline.core.errors import PersistenceError
from analytics_pipeline.schemas.event import HealthResponse, StatsResponse

logger = structlog.get_logger()
router = APIRouter(prefix="/api", tags=["analytics"])


@router.get("/stats", response_model=StatsResponse)
def get_stats(response: Response, context: ServiceContext = Depends(get_context)):
    """
    Count stored events, overall and per event_type.
    """
    response.headers["Access-Control-Allow-Origin"] = "*"

    try:
        result = context.store.get_stats()
    except PersistenceError as e:
        logger.error("stats_query_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Database error")

    logger.info("stats_query_executed", total_events=result["total_events"])
    return result


@router.get("/health", response_model=HealthResponse)
def health_check(context: ServiceContext = Depends(get_context)):
    """Health check endpoint"""
    try:
        context.store.ping()
    except PersistenceError as e:
        logger.warning("health_check_failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "error": "database connection failed"}
        )

    return {"status": "healthy", "database": "connected"}
