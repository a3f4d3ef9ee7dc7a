# sitemetrics/event_stream.py

import logging
import queue
import time
from threading import Lock
from typing import Any, Dict, Optional, Protocol

from sitemetrics.config import get_metrics_config
from sitemetrics.schemas import EventType, RealtimeEvent


class ChannelClosedError(Exception):
    """Raised when a frame cannot be delivered to an observer"""


class Channel(Protocol):
    def send(self, frame: str) -> None: ...


class StreamChannel:
    """
    Bounded, thread-safe buffer between broadcasts and one SSE response.
    A full buffer means the observer stopped reading, so send() fails
    and the broadcaster prunes it.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: "queue.Queue[str]" = queue.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: str) -> None:
        if self._closed:
            raise ChannelClosedError("channel closed")
        try:
            self._queue.put_nowait(frame)
        except queue.Full:
            self._closed = True
            raise ChannelClosedError("channel buffer full") from None

    def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """Next frame, or None if nothing arrived within timeout"""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._closed = True


def now_ms() -> int:
    return int(time.time() * 1000)


def format_event(event: RealtimeEvent) -> str:
    """SSE frame: data: <json>\\n\\n"""
    payload = event.model_dump_json(by_alias=True, exclude_defaults=True)
    return f"data: {payload}\n\n"


class EventStreamManager:
    """
    Registry of event stream observers with fan-out broadcast.
    One failing observer never affects delivery to the others.
    """

    _instance: Optional["EventStreamManager"] = None

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._streams: Dict[str, Channel] = {}
        self._lock = Lock()
        self._logger = logger or get_metrics_config().logger_factory()

    @classmethod
    def get_instance(cls) -> "EventStreamManager":
        """Return the shared instance, creating it on first call"""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the shared instance (tests)"""
        cls._instance = None

    def add_client(self, client_id: str, channel: Channel) -> None:
        with self._lock:
            self._streams[client_id] = channel
        self._logger.info(f"Client {client_id} connected to event stream")

    def remove_client(self, client_id: str, channel: Optional[Channel] = None) -> None:
        """
        Unregister client_id. With channel given, only when it is still the
        registered one, so a stale stream cannot drop a reconnected client.
        """
        with self._lock:
            current = self._streams.get(client_id)
            if current is None or (channel is not None and current is not channel):
                return
            del self._streams[client_id]
        self._logger.info(f"Client {client_id} disconnected from event stream")

    def get_client_count(self) -> int:
        with self._lock:
            return len(self._streams)

    def clear(self) -> None:
        with self._lock:
            self._streams.clear()

    def broadcast(self, event: RealtimeEvent) -> None:
        """Send event to every registered observer, pruning the ones that fail"""
        frame = format_event(event)

        with self._lock:
            streams = list(self._streams.items())

        for client_id, channel in streams:
            self._deliver(client_id, channel, frame)

    def send_to(self, client_id: str, event: RealtimeEvent) -> bool:
        """Send event to a single observer. Returns False if it was pruned."""
        with self._lock:
            channel = self._streams.get(client_id)
        if channel is None:
            return False
        return self._deliver(client_id, channel, format_event(event))

    def _deliver(self, client_id: str, channel: Channel, frame: str) -> bool:
        try:
            channel.send(frame)
            return True
        except Exception as e:
            self._logger.error(
                f"Failed to send event to client {client_id}: {e}",
                extra={"client_id": client_id, "error": str(e)},
            )
            self.remove_client(client_id, channel)
            return False

    def _broadcast_typed(self, event_type: EventType, data: Any) -> None:
        self.broadcast(RealtimeEvent(type=event_type, timestamp=now_ms(), data=data))

    def broadcast_metrics(self, metrics: Any) -> None:
        self._broadcast_typed("metrics", metrics)

    def broadcast_logs(self, logs: list) -> None:
        self._broadcast_typed("logs", logs)

    def broadcast_alert(self, alert: Any) -> None:
        self._broadcast_typed("alerts", alert)

    def broadcast_system_status(self, status: Any) -> None:
        self._broadcast_typed("system", status)


def get_event_stream_manager() -> EventStreamManager:
    return EventStreamManager.get_instance()


def reset_event_stream_manager() -> None:
    EventStreamManager.reset_instance()
