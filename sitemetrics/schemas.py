# sitemetrics/schemas.py

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake case in Python, camelCase on the wire"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Inbound signals

class PageViewEvent(CamelModel):
    """Page view reported by the web application"""

    session_id: str = Field(min_length=1)
    path: str = Field(min_length=1)
    user_id: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None


class ErrorEvent(CamelModel):
    """Error reported by the web application"""

    session_id: Optional[str] = None
    error_type: Optional[str] = None


class TrackResponse(BaseModel):
    status: str
    processed: int
    errors: int = 0


# Snapshot

class TopPage(CamelModel):
    path: str
    views: int
    unique_visitors: int
    percentage: float


class TrafficSource(CamelModel):
    source: str
    visits: int
    percentage: float = 0.0


class RequestDurationBuckets(CamelModel):
    """
    Synthetic distribution derived from the request count.
    Not measured latency - do not read these as percentiles.
    """

    bucket1: int  # ~70% of requests, "under 0.1s"
    bucket2: int  # ~90%, "under 0.5s"
    bucket3: int  # ~98%, "under 1s"
    total: int


class MetricsSnapshot(CamelModel):
    model_config = ConfigDict(frozen=True)

    total_visitors: int
    active_users: int
    page_views: int
    total_requests: int
    total_errors: int
    avg_session_duration: str
    bounce_rate: float
    top_pages: List[TopPage]
    traffic_sources: List[TrafficSource]
    active_sessions: int
    uptime: float
    request_rate: float
    error_rate: float
    request_duration: RequestDurationBuckets


# Event stream

EventType = Literal["connection", "heartbeat", "metrics", "logs", "alerts", "system"]


class RealtimeEvent(CamelModel):
    """Envelope pushed to every event stream observer"""

    type: EventType
    timestamp: int  # Epoch ms
    data: Optional[Any] = None
    client_id: Optional[str] = None
    message: Optional[str] = None


# Persisted documents

class StoredPage(CamelModel):
    path: str
    views: int
    unique_visitors: List[str]
    last_accessed: datetime


class StoredSession(CamelModel):
    session_id: str
    user_id: Optional[str] = None
    start_time: datetime
    last_activity: datetime
    page_views: int
    pages: List[str]
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
