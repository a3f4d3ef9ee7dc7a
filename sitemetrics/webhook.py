# sitemetrics/webhook.py

import logging
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from sitemetrics.collector import MetricsCollector
from sitemetrics.context import MetricsContext
from sitemetrics.dependencies import get_collector, get_context
from sitemetrics.schemas import (
    ErrorEvent,
    MetricsSnapshot,
    PageViewEvent,
    StoredSession,
    TrackResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def normalize_events(body: Any) -> List[Any]:
    """Accept a single event or an array of events"""
    if isinstance(body, dict):
        return [body]
    return body


def process_events(body: Any, schema: type[BaseModel], handle) -> TrackResponse:
    if not isinstance(body, (dict, list)):
        return TrackResponse(status="error", processed=0, errors=1)
    events = normalize_events(body)

    processed = 0
    errors = 0

    for event_data in events:
        try:
            handle(schema.model_validate(event_data))
            processed += 1
        except Exception as e:
            errors += 1
            logger.warning(f"Failed to process event: {e}")

    return TrackResponse(
        status="ok" if errors == 0 else "partial",
        processed=processed,
        errors=errors,
    )


@router.post("/api/track", response_model=TrackResponse)
async def track_page_views(
    request: Request,
    collector: MetricsCollector = Depends(get_collector),
) -> TrackResponse:
    """
    Receive page views from the web application.
    Accepts single event or array of events.
    """
    body = await request.json()

    def handle(event: PageViewEvent) -> None:
        collector.track_page_view(
            event.session_id,
            event.path,
            user_id=event.user_id,
            referrer=event.referrer,
            user_agent=event.user_agent,
        )

    return process_events(body, PageViewEvent, handle)


@router.post("/api/errors", response_model=TrackResponse)
async def track_errors(
    request: Request,
    collector: MetricsCollector = Depends(get_collector),
) -> TrackResponse:
    """Receive error signals from the web application"""
    body = await request.json()

    def handle(event: ErrorEvent) -> None:
        collector.track_error(event.session_id, event.error_type)

    return process_events(body, ErrorEvent, handle)


@router.get("/api/metrics", response_model=MetricsSnapshot)
async def metrics(collector: MetricsCollector = Depends(get_collector)) -> MetricsSnapshot:
    return collector.get_metrics()


@router.get("/api/sessions/{session_id}", response_model=StoredSession)
async def session_metrics(
    session_id: str,
    collector: MetricsCollector = Depends(get_collector),
) -> StoredSession:
    session = collector.get_session_metrics(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")

    return StoredSession(
        session_id=session.session_id,
        user_id=session.user_id,
        start_time=session.start_time,
        last_activity=session.last_activity,
        page_views=session.page_views,
        pages=list(session.pages),
        referrer=session.referrer,
        user_agent=session.user_agent,
    )


@router.get("/health")
async def health_check(context: MetricsContext = Depends(get_context)):
    """Simple health check endpoint"""
    return {
        "status": "healthy",
        "clients": context.event_stream.get_client_count(),
    }
