import json
import logging

import pytest

from sitemetrics.collector import MetricsCollector
from sitemetrics.config import MetricsSettings, reset_metrics_config
from sitemetrics.context import reset_metrics_collector
from sitemetrics.event_stream import reset_event_stream_manager

TEST_LOGGER = "tests.sitemetrics"


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Every test starts from defaults with its own data directory"""
    reset_metrics_config()
    reset_event_stream_manager()
    monkeypatch.setenv("SITEMETRICS_DATA_DIR", str(tmp_path / "metrics"))
    yield
    reset_metrics_collector()
    reset_event_stream_manager()
    reset_metrics_config()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "metrics"


@pytest.fixture
def config(data_dir) -> MetricsSettings:
    return MetricsSettings(
        data_dir=str(data_dir),
        logger_factory=lambda: logging.getLogger(TEST_LOGGER),
    )


@pytest.fixture
def dev_config(data_dir) -> MetricsSettings:
    return MetricsSettings(
        data_dir=str(data_dir),
        is_development=True,
        logger_factory=lambda: logging.getLogger(TEST_LOGGER),
    )


@pytest.fixture
def collector(config):
    instance = MetricsCollector(config)
    yield instance
    instance.destroy()


class RecordingChannel:
    def __init__(self):
        self.frames = []

    def send(self, frame):
        self.frames.append(frame)


class FailingChannel:
    def __init__(self):
        self.attempts = 0

    def send(self, frame):
        self.attempts += 1
        raise RuntimeError("closed")


def parse_frame(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])
