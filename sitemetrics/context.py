# sitemetrics/context.py

from dataclasses import dataclass
from typing import Optional

from sitemetrics.collector import MetricsCollector, create_metrics_collector
from sitemetrics.config import MetricsSettings, get_metrics_config
from sitemetrics.event_stream import EventStreamManager


@dataclass
class MetricsContext:
    """Process-scoped owner of the collector and the broadcaster"""
    config: MetricsSettings
    collector: MetricsCollector
    event_stream: EventStreamManager

    def close(self) -> None:
        self.collector.destroy()
        self.event_stream.clear()


def create_context(config: Optional[MetricsSettings] = None) -> MetricsContext:
    config = config or get_metrics_config()
    return MetricsContext(
        config=config,
        collector=create_metrics_collector(config),
        event_stream=EventStreamManager(logger=config.logger_factory()),
    )


# Default collector for callers without a context (scripts, tests)
_collector: Optional[MetricsCollector] = None


def get_metrics_collector() -> MetricsCollector:
    """Return the default collector, creating it on first call"""
    global _collector
    if _collector is None:
        _collector = create_metrics_collector()
    return _collector


def reset_metrics_collector() -> None:
    """Destroy and forget the default collector"""
    global _collector
    if _collector is not None:
        _collector.destroy()
        _collector = None
