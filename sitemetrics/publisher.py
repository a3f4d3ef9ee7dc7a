# sitemetrics/publisher.py

import logging

from sitemetrics.context import MetricsContext
from sitemetrics.event_stream import now_ms
from sitemetrics.schemas import RealtimeEvent

logger = logging.getLogger(__name__)


def publish_metrics(context: MetricsContext) -> None:
    """
    Called every few seconds by scheduler.
    Pushes a fresh snapshot to connected observers.
    """
    if context.event_stream.get_client_count() == 0:
        return

    try:
        snapshot = context.collector.get_metrics()
        context.event_stream.broadcast_metrics(snapshot.model_dump(mode="json", by_alias=True))
    except Exception as e:
        logger.error(f"Metrics publish failed: {e}")


def publish_system_status(context: MetricsContext) -> None:
    """Push process status (uptime, observers, store sizes)"""
    if context.event_stream.get_client_count() == 0:
        return

    try:
        snapshot = context.collector.get_metrics()
        context.event_stream.broadcast_system_status({
            "status": "healthy",
            "uptime": snapshot.uptime,
            "clients": context.event_stream.get_client_count(),
            "sessions": snapshot.total_visitors,
            "activeSessions": snapshot.active_sessions,
            "pageViews": snapshot.page_views,
        })
    except Exception as e:
        logger.error(f"System status publish failed: {e}")


def publish_heartbeat(context: MetricsContext) -> None:
    """Keep idle streams open and flush out dead observers"""
    try:
        context.event_stream.broadcast(RealtimeEvent(type="heartbeat", timestamp=now_ms()))
    except Exception as e:
        logger.error(f"Heartbeat failed: {e}")
