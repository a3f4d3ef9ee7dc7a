"""Tests for the HTTP layer, the SSE relay and the publishing jobs."""

import asyncio
import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from sitemetrics.context import create_context
from sitemetrics.event_stream import EventStreamManager, StreamChannel
from sitemetrics.main import create_app
from sitemetrics.publisher import publish_heartbeat, publish_metrics, publish_system_status
from sitemetrics.stream import stream_frames

from conftest import RecordingChannel, parse_frame


@pytest.fixture
def client(config):
    with TestClient(create_app(config)) as test_client:
        yield test_client


def test_track_single_event(client):
    resp = client.post("/api/track", json={"sessionId": "s1", "path": "/home"})
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "processed": 1, "errors": 0}
    assert client.get("/api/metrics").json()["pageViews"] == 1


def test_track_batch_accepts_snake_case(client):
    resp = client.post("/api/track", json=[
        {"session_id": "s1", "path": "/a", "referrer": "https://facebook.com/x"},
        {"sessionId": "s1", "path": "/b"},
    ])
    assert resp.json()["processed"] == 2

    body = client.get("/api/metrics").json()
    assert body["totalVisitors"] == 1
    assert body["bounceRate"] == 0
    assert body["trafficSources"][0]["source"] == "Social Media"


def test_track_partial_batch(client):
    resp = client.post("/api/track", json=[
        {"sessionId": "s1", "path": "/a"},
        {"path": "/missing-session"},
    ])
    assert resp.json() == {"status": "partial", "processed": 1, "errors": 1}


def test_track_rejects_non_event_body(client):
    resp = client.post("/api/track", json="nope")
    assert resp.json() == {"status": "error", "processed": 0, "errors": 1}


def test_track_empty_batch(client):
    resp = client.post("/api/track", json=[])
    assert resp.json() == {"status": "ok", "processed": 0, "errors": 0}


def test_track_errors(client):
    client.post("/api/errors", json={"sessionId": "s1", "errorType": "TypeError"})
    client.post("/api/errors", json=[{}, {}])
    assert client.get("/api/metrics").json()["totalErrors"] == 3


def test_session_lookup(client):
    client.post("/api/track", json={"sessionId": "s1", "path": "/home", "userId": "u1"})
    resp = client.get("/api/sessions/s1")
    assert resp.status_code == 200
    body = resp.json()
    assert body["sessionId"] == "s1"
    assert body["userId"] == "u1"
    assert body["pages"] == ["/home"]


def test_session_lookup_unknown(client):
    assert client.get("/api/sessions/ghost").status_code == 404


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy", "clients": 0}


def test_shutdown_persists(config, data_dir):
    with TestClient(create_app(config)) as test_client:
        test_client.post("/api/track", json={"sessionId": "s1", "path": "/home"})
    pages = json.loads((data_dir / "page-metrics.json").read_text())
    assert pages[0]["path"] == "/home"


class FakeRequest:
    def __init__(self, disconnect_after: int):
        self._checks = 0
        self._disconnect_after = disconnect_after

    async def is_disconnected(self) -> bool:
        self._checks += 1
        return self._checks > self._disconnect_after


def test_stream_relays_frames_until_disconnect():
    event_stream = EventStreamManager()
    context = SimpleNamespace(
        config=SimpleNamespace(stream_poll_seconds=0.01),
        event_stream=event_stream,
    )
    channel = StreamChannel()
    event_stream.add_client("c1", channel)
    event_stream.broadcast_alert({"level": "warning"})

    async def collect():
        return [frame async for frame in stream_frames(FakeRequest(1), context, "c1", channel)]

    frames = asyncio.run(collect())

    assert parse_frame(frames[0])["type"] == "alerts"
    assert channel.closed
    assert event_stream.get_client_count() == 0


class TestPublisher:

    @pytest.fixture
    def context(self, config):
        ctx = create_context(config)
        yield ctx
        ctx.close()

    def test_publish_metrics(self, context):
        channel = RecordingChannel()
        context.event_stream.add_client("c1", channel)
        context.collector.track_page_view("s1", "/home")

        publish_metrics(context)

        parsed = parse_frame(channel.frames[0])
        assert parsed["type"] == "metrics"
        assert parsed["data"]["pageViews"] == 1
        assert parsed["data"]["topPages"][0]["path"] == "/home"

    def test_publish_skips_without_clients(self, context, monkeypatch):
        calls = []
        monkeypatch.setattr(context.collector, "get_metrics", lambda: calls.append(1))
        publish_metrics(context)
        publish_system_status(context)
        assert calls == []

    def test_publish_system_status(self, context):
        channel = RecordingChannel()
        context.event_stream.add_client("c1", channel)

        publish_system_status(context)

        parsed = parse_frame(channel.frames[0])
        assert parsed["type"] == "system"
        assert parsed["data"]["status"] == "healthy"
        assert parsed["data"]["clients"] == 1

    def test_heartbeat(self, context):
        channel = RecordingChannel()
        context.event_stream.add_client("c1", channel)
        publish_heartbeat(context)
        parsed = parse_frame(channel.frames[0])
        assert parsed["type"] == "heartbeat"
        assert set(parsed) == {"type", "timestamp"}
