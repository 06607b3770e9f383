"""Tests de la configuración YAML."""

import pytest

from common.config import AppConfig, ConfigError
from sense_ingest.udp.queue_config import DropStrategy, QueueConfig


class TestAppConfig:

    def test_dotted_get(self):
        config = AppConfig.from_dict({"a": {"b": {"c": 3}}})

        assert config.get("a.b.c") == 3
        assert config.has("a.b")
        assert not config.has("a.x")

    def test_missing_key_raises(self):
        with pytest.raises(ConfigError):
            AppConfig.from_dict({}).get("auditEvents.enable")

    def test_default(self):
        assert AppConfig.from_dict({}).get("x.y", 5) == 5

    def test_is_true_is_strict(self):
        config = AppConfig.from_dict({"a": True, "b": "true", "c": 1})

        assert config.is_true("a")
        assert not config.is_true("b")
        assert not config.is_true("c")
        assert not config.is_true("missing")

    def test_from_dict_copies(self):
        data = {"a": {"b": 1}}
        config = AppConfig.from_dict(data)
        data["a"]["b"] = 2

        assert config.get("a.b") == 1


class TestLoad:

    def test_load_yaml_with_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text("logging:\n  level: INFO\nauditEvents:\n  enable: true\n", encoding="utf-8")
        monkeypatch.setenv("SENSE_ENV_FILE", str(tmp_path / "missing.env"))
        monkeypatch.setenv("SENSE_LOG_LEVEL", "debug")

        config = AppConfig.load(str(path))

        assert config.is_true("auditEvents.enable")
        assert config.get("logging.level") == "DEBUG"
        assert config.source == str(path)

    def test_missing_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SENSE_ENV_FILE", "")
        with pytest.raises(ConfigError):
            AppConfig.load(str(tmp_path / "nope.yaml"))

    def test_invalid_root(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SENSE_ENV_FILE", "")
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with pytest.raises(ConfigError):
            AppConfig.load(str(path))


class TestQueueConfigFromYaml:

    def test_reads_udp_server_config(self):
        config = AppConfig.from_dict({
            "userEvents": {
                "udpServerConfig": {
                    "messageQueue": {
                        "maxConcurrent": 3, "maxSize": 30, "dropStrategy": "NEWEST",
                        "taskTimeout": 5000,
                    },
                    "rateLimit": {"enable": True, "maxMessagesPerMinute": 100},
                    "maxMessageSize": 1024,
                }
            }
        })

        qc = QueueConfig.from_config(config, "userEvents.udpServerConfig", "user_events")

        assert qc.max_concurrent == 3
        assert qc.max_size == 30
        assert qc.drop_strategy is DropStrategy.NEWEST
        assert qc.rate_limit_enable is True
        assert qc.max_messages_per_minute == 100
        assert qc.max_message_size_bytes == 1024
        assert qc.task_timeout_seconds == 5.0

    def test_defaults(self):
        qc = QueueConfig.from_config(AppConfig.from_dict({}), "auditEvents.queue", "audit_events")

        assert qc.max_concurrent == 10
        assert qc.max_size == 200
        assert qc.drop_strategy is DropStrategy.OLDEST
        assert qc.rate_limit_enable is False
