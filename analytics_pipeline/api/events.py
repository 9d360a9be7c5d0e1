# POST /api/analytics

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from starlette.concurrency import run_in_threadpool
import structlog

from analytics_pipeline.core.context import ServiceContext, get_context
from analytics_pipeline.core.errors import InvalidPayload, PublishError
from analytics_pipeline.schemas.event import AnalyticsEvent, PublishResponse

logger = structlog.get_logger()
router = APIRouter(prefix="/api/analytics", tags=["events"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


@router.options("")
async def preflight():
    """Answer CORS preflight without touching the broker"""
    return Response(status_code=status.HTTP_200_OK, headers=CORS_HEADERS)


@router.post("", response_model=PublishResponse, status_code=status.HTTP_201_CREATED)
async def record_event(
        request: Request,
        response: Response,
        context: ServiceContext = Depends(get_context)
):
    """
    Queue one analytics event on the topic.

    - **event_type**, **page**, **session_id**: non-empty strings
    - **timestamp**: when the event happened (never filled in by the server)
    - **user_agent**: taken from the User-Agent header when omitted

    Returns the partition and offset the broker assigned.
    """
    response.headers.update(CORS_HEADERS)

    body = await request.body()
    try:
        event = AnalyticsEvent.from_wire(body)
    except InvalidPayload as e:
        logger.warning("invalid_event_payload", error=str(e.cause or e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON",
            headers=CORS_HEADERS
        )

    event = event.with_user_agent(request.headers.get("user-agent"))

    try:
        # The send blocks until acks=all, so keep it off the event loop
        placement = await run_in_threadpool(context.publisher.publish, event)
    except PublishError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to record event",
            headers=CORS_HEADERS
        )
    except Exception as e:
        logger.error("event_record_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
            headers=CORS_HEADERS
        )

    return PublishResponse(partition=placement.partition, offset=placement.offset)


@router.api_route("", methods=["GET", "PUT", "PATCH", "DELETE"], include_in_schema=False)
async def method_not_allowed():
    """Only POST and OPTIONS are served on this path"""
    raise HTTPException(
        status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
        detail="Method Not Allowed",
        headers={**CORS_HEADERS, "Allow": "POST, OPTIONS"}
    )
