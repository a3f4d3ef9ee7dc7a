# sitemetrics/dependencies.py

from fastapi import Depends, Request

from sitemetrics.collector import MetricsCollector
from sitemetrics.context import MetricsContext
from sitemetrics.event_stream import EventStreamManager


def get_context(request: Request) -> MetricsContext:
    return request.app.state.metrics  # type: ignore[no-any-return]


def get_collector(context: MetricsContext = Depends(get_context)) -> MetricsCollector:
    return context.collector


def get_event_stream(context: MetricsContext = Depends(get_context)) -> EventStreamManager:
    return context.event_stream
