"""Tests for client configuration."""

import json

import pytest

from lookout.config import ClientConfig, DeliveryMode, LogConfig, TransportConfig
from lookout.errors import ConfigError


class TestDefaults:
    def test_defaults(self, monkeypatch):
        for name in (
            "LOOKOUT_DSN",
            "LOOKOUT_DELIVERY",
            "LOOKOUT_ENVIRONMENT",
            "LOOKOUT_SAMPLE_RATE",
            "LOOKOUT_ENABLE_LOGS",
        ):
            monkeypatch.delenv(name, raising=False)

        config = ClientConfig().validate()

        assert config.dsn is None
        assert config.environment == "production"
        assert config.delivery == DeliveryMode.ASYNC
        assert config.sample_rate == 1.0
        assert config.transport.retry_backoff == [1.0, 2.0, 4.0, 8.0]
        assert config.transport.attempts == 5
        assert config.dedup.enabled
        assert config.dedup.window_seconds == 3.0
        assert config.client_reports.enabled
        assert not config.logs.enabled
        assert config.logs.batch_size == 100

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("LOOKOUT_DSN", "https://public@ingest.example.com/1")
        monkeypatch.setenv("LOOKOUT_DELIVERY", "sync")
        monkeypatch.setenv("LOOKOUT_DEDUP_EVENTS", "false")
        monkeypatch.setenv("LOOKOUT_SEND_CLIENT_REPORTS", "0")
        monkeypatch.setenv("LOOKOUT_ENABLE_LOGS", "true")

        config = ClientConfig()

        assert config.dsn == "https://public@ingest.example.com/1"
        assert config.delivery == DeliveryMode.SYNC
        assert not config.dedup.enabled
        assert config.logs.enabled

    @pytest.mark.parametrize("name, value", [
        ("LOOKOUT_SAMPLE_RATE", "lots"),
        ("LOOKOUT_DELIVERY", "carrier-pigeon"),
        ("LOOKOUT_TIMEOUT", "soon"),
    ])
    def test_invalid_environment_variable(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)
        with pytest.raises(ConfigError, match=name):
            ClientConfig()

    def test_disabled_ignores_environment(self, monkeypatch):
        monkeypatch.setenv("LOOKOUT_DSN", "not a dsn")
        monkeypatch.setenv("LOOKOUT_SAMPLE_RATE", "lots")
        monkeypatch.setenv("LOOKOUT_DELIVERY", "carrier-pigeon")
        monkeypatch.setenv("LOOKOUT_TIMEOUT", "soon")

        config = ClientConfig.disabled().validate()

        assert config.dsn is None
        assert config.delivery is DeliveryMode.NONE


class TestValidate:
    @pytest.mark.parametrize("options", [
        {"sample_rate": 1.5},
        {"sample_rate": -0.1},
        {"delivery": "carrier-pigeon"},
        {"transport": TransportConfig(retry_backoff=[1.0, 1.0])},
        {"transport": TransportConfig(retry_backoff=[4.0, 2.0])},
        {"transport": TransportConfig(max_attempts=0)},
        {"transport": TransportConfig(timeout=0)},
        {"transport": TransportConfig(retry_backoff=[1.0, 2.0], max_attempts=4)},
        {"logs": LogConfig(batch_size=0)},
        {"logs": LogConfig(batch_size=200, max_size=100)},
        {"logs": LogConfig(flush_interval_seconds=0)},
    ])
    def test_invalid(self, options):
        with pytest.raises(ConfigError):
            ClientConfig(**options).validate()

    def test_attempts_may_use_whole_schedule(self):
        transport = TransportConfig(retry_backoff=[1.0, 2.0], max_attempts=3)
        ClientConfig(transport=transport).validate()
        assert transport.attempts == 3

    def test_config_error_is_value_error(self):
        with pytest.raises(ValueError):
            ClientConfig(sample_rate=2.0).validate()

    def test_delivery_string_normalized(self):
        assert ClientConfig(delivery="none").validate().delivery is DeliveryMode.NONE


class TestLoading:
    def test_from_dict_nested_and_flat(self):
        config = ClientConfig.from_dict({
            "dsn": "https://public@ingest.example.com/1",
            "release": "1.0.0",
            "dedup_events": False,
            "send_client_reports": False,
            "enable_logs": True,
            "logs": {"batch_size": 10},
            "transport": {"retry_backoff": [0.5, 1.0], "legacy_store": True},
            "client_reports": {"flush_interval_seconds": 10},
        })

        assert config.release == "1.0.0"
        assert not config.dedup.enabled
        assert not config.client_reports.enabled
        assert config.client_reports.flush_interval_seconds == 10
        assert config.logs.enabled
        assert config.logs.batch_size == 10
        assert config.transport.attempts == 3
        assert config.transport.legacy_store

    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigError):
            ClientConfig.from_dict({"dns": "typo"})

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "lookout.yaml"
        path.write_text(
            "dsn: https://public@ingest.example.com/1\n"
            "environment: staging\n"
            "delivery: sync\n"
            "transport:\n"
            "  timeout: 2.5\n"
        )

        config = ClientConfig.from_yaml(str(path))

        assert config.environment == "staging"
        assert config.delivery == DeliveryMode.SYNC
        assert config.transport.timeout == 2.5

    def test_from_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert ClientConfig.from_yaml(str(path)).transport.attempts == 5

    def test_from_json(self, tmp_path):
        path = tmp_path / "lookout.json"
        path.write_text(json.dumps({"sample_rate": 0.25, "dedup": {"window_seconds": 10}}))

        config = ClientConfig.from_json(str(path))

        assert config.sample_rate == 0.25
        assert config.dedup.window_seconds == 10
