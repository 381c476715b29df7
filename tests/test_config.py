"""Tests for Settings configuration model."""

from pathlib import Path

import httpx
import pytest

from src.config import Settings


class TestDefaults:
    def test_listen_address(self):
        s = Settings()
        assert (s.listen_ip, s.listen_port) == ("0.0.0.0", 6777)

    def test_default_database_path(self):
        s = Settings()
        assert s.database_path == Path("data/callme.db")

    def test_turso_disabled_by_default(self):
        s = Settings()
        assert s.turso_database_url == ""

    def test_scheduler_intervals(self):
        s = Settings()
        assert s.tick_interval_seconds == 60
        assert s.catchup_interval_minutes == 5

    def test_dispatch_pool(self):
        s = Settings()
        assert s.dispatch_workers == 16
        assert s.dispatch_queue_size == 1000
        assert s.shutdown_grace_seconds == 10.0


class TestEffectiveLogLevel:
    def test_uses_log_level(self):
        assert Settings(log_level="warning").effective_log_level() == "WARNING"

    def test_debug_overrides(self):
        assert Settings(debug=True, log_level="ERROR").effective_log_level() == "DEBUG"


class TestHttpTimeout:
    def test_converts_milliseconds(self):
        timeout = Settings(connect_timeout_ms=500, client_timeout_ms=2500).http_timeout()
        assert isinstance(timeout, httpx.Timeout)
        assert timeout.connect == 0.5
        assert timeout.read == 2.5


class TestValidation:
    def test_unknown_env_var_raises(self):
        with pytest.raises(ValueError, match="extra_forbidden"):
            Settings(**{"nonexistent_field": "value"})

    def test_zero_workers_rejected(self):
        with pytest.raises(ValueError):
            Settings(dispatch_workers=0)

    def test_zero_catchup_interval_allowed(self):
        assert Settings(catchup_interval_minutes=0).catchup_interval_minutes == 0
