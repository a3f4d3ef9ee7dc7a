"""Tests for configuration resolution."""

import logging

import pytest
from pydantic import ValidationError

from sitemetrics.config import (
    MetricsSettings,
    configure_metrics,
    get_metrics_config,
    reset_metrics_config,
)


@pytest.fixture
def no_env_data_dir(monkeypatch):
    monkeypatch.delenv("SITEMETRICS_DATA_DIR", raising=False)


class TestDefaults:
    """Defaults when nothing is configured."""

    def test_data_dir(self, no_env_data_dir):
        assert get_metrics_config().data_dir == "data/metrics"

    def test_is_development_false(self):
        assert get_metrics_config().is_development is False

    def test_default_logger_is_noop(self, caplog):
        logger = get_metrics_config().logger_factory()
        assert logger.disabled
        assert logger is not logging.getLogger(logger.name)
        with caplog.at_level(logging.DEBUG):
            logger.info("test")
            logger.warning("test")
            logger.error("test", extra={"error": "boom"})
            logger.debug("test")
        assert caplog.records == []

    def test_default_logger_ignores_handlers_added_later(self, caplog):
        logger = get_metrics_config().logger_factory()
        logger.addHandler(caplog.handler)
        try:
            logger.error("test")
        finally:
            logger.removeHandler(caplog.handler)
        assert caplog.records == []

    def test_intervals(self):
        cfg = get_metrics_config()
        assert cfg.cleanup_interval_ms == 3_600_000
        assert cfg.persist_interval_ms == 300_000

    def test_shutdown_hook_off(self):
        assert get_metrics_config().register_shutdown_hook is False

    def test_internal_domains_default_to_localhost(self):
        assert get_metrics_config().internal_domains == ("localhost",)


class TestConfigureMetrics:
    """Overrides merge key by key."""

    def test_sets_data_dir(self):
        configure_metrics(data_dir="/tmp/metrics")
        assert get_metrics_config().data_dir == "/tmp/metrics"

    def test_sets_custom_logger(self):
        custom = logging.getLogger("custom")
        configure_metrics(logger_factory=lambda: custom)
        assert get_metrics_config().logger_factory() is custom

    def test_merges_with_existing(self):
        configure_metrics(data_dir="/tmp/a")
        configure_metrics(is_development=True)
        cfg = get_metrics_config()
        assert cfg.data_dir == "/tmp/a"
        assert cfg.is_development is True

    def test_overrides_existing(self):
        configure_metrics(data_dir="/tmp/a")
        configure_metrics(data_dir="/tmp/b")
        assert get_metrics_config().data_dir == "/tmp/b"

    def test_rejects_unknown_option(self):
        configure_metrics(data_directory="/tmp/typo")
        with pytest.raises(ValidationError):
            get_metrics_config()

    def test_site_domain_is_internal(self):
        configure_metrics(site_domain="Example.org")
        assert get_metrics_config().internal_domains == ("example.org", "localhost")

    def test_environment_is_read(self, monkeypatch):
        monkeypatch.setenv("SITEMETRICS_PERSIST_INTERVAL_MS", "1000")
        assert get_metrics_config().persist_interval_ms == 1000

    def test_override_beats_environment(self, monkeypatch):
        monkeypatch.setenv("SITEMETRICS_PERSIST_INTERVAL_MS", "1000")
        configure_metrics(persist_interval_ms=2000)
        assert get_metrics_config().persist_interval_ms == 2000


def test_reset_restores_defaults(no_env_data_dir):
    configure_metrics(data_dir="/custom", is_development=True, cleanup_interval_ms=999)
    reset_metrics_config()
    cfg = get_metrics_config()
    assert cfg.data_dir == "data/metrics"
    assert cfg.is_development is False
    assert cfg.cleanup_interval_ms == 3_600_000


@pytest.mark.parametrize("size", [0, -1])
def test_stream_buffer_must_be_bounded(size):
    with pytest.raises(ValidationError):
        MetricsSettings(stream_buffer_size=size)


def test_settings_can_be_built_directly():
    cfg = MetricsSettings(data_dir="/x", register_shutdown_hook=True)
    assert cfg.data_dir == "/x"
    assert cfg.register_shutdown_hook is True
