"""Tests for configuration loading and validation."""

import json
import tempfile

import pytest
import yaml

from chat_relay.config import load_config, validate_config


class TestLoadConfig:
    def test_load_defaults(self):
        config = load_config(config_dict={})
        assert config.version == "0.1"
        assert config.relay.request_timeout == 30.0
        assert config.relay.probe_url == "https://httpbin.org/ip"
        assert config.relay.follow_redirects is True
        assert config.server.host == "127.0.0.1"
        assert config.server.port == 5858
        assert config.logging.level == "info"
        assert config.storage.sqlite_path.endswith("database.sqlite")

    def test_load_from_dict(self):
        config = load_config(config_dict={
            "relay": {
                "request_timeout": 300,
                "user_agent": "my-client/2.0",
                "probe_url": "https://probe.example/ip",
            },
            "server": {"port": 9000},
            "logging": {"level": "DEBUG"},
        })
        assert config.relay.request_timeout == 300.0
        assert config.relay.user_agent == "my-client/2.0"
        assert config.relay.probe_url == "https://probe.example/ip"
        assert config.server.port == 9000
        assert config.logging.level == "debug"

    def test_load_from_yaml_file(self):
        raw = {
            "version": "0.1",
            "relay": {"request_timeout": 45},
            "storage": {"sqlite_path": "/tmp/relay.sqlite"},
        }
        with tempfile.NamedTemporaryFile(suffix=".yaml", mode="w", delete=False) as f:
            yaml.dump(raw, f)
            f.flush()
            config = load_config(config_path=f.name)
        assert config.relay.request_timeout == 45.0
        assert config.storage.sqlite_path == "/tmp/relay.sqlite"

    def test_load_from_json_file(self):
        with tempfile.NamedTemporaryFile(suffix=".json", mode="w", delete=False) as f:
            json.dump({"server": {"host": "0.0.0.0"}}, f)
            f.flush()
            config = load_config(config_path=f.name)
        assert config.server.host == "0.0.0.0"

    def test_empty_yaml_file(self):
        with tempfile.NamedTemporaryFile(suffix=".yaml", mode="w", delete=False) as f:
            f.write("")
            f.flush()
            config = load_config(config_path=f.name)
        assert config.server.port == 5858

    def test_discovers_config_in_cwd(self, tmp_path, monkeypatch):
        (tmp_path / "chat-relay.yaml").write_text("server:\n  port: 7001\n")
        monkeypatch.chdir(tmp_path)
        config = load_config()
        assert config.server.port == 7001

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError):
            load_config(config_path="/nonexistent/path.yaml")


class TestValidateConfig:
    def test_valid_default_config(self):
        config = load_config(config_dict={})
        errors = validate_config(config)
        assert errors == []

    def test_non_positive_timeout(self):
        config = load_config(config_dict={"relay": {"request_timeout": 0}})
        errors = validate_config(config)
        assert any("request_timeout" in e for e in errors)

    def test_probe_url_must_be_http(self):
        config = load_config(config_dict={"relay": {"probe_url": "ftp://example.com"}})
        errors = validate_config(config)
        assert any("probe_url" in e for e in errors)

    def test_port_out_of_range(self):
        config = load_config(config_dict={})
        config.server.port = 0
        errors = validate_config(config)
        assert any("server.port" in e for e in errors)

    def test_unknown_log_level(self):
        config = load_config(config_dict={"logging": {"level": "verbose"}})
        errors = validate_config(config)
        assert any("logging.level" in e for e in errors)

    def test_empty_sqlite_path(self):
        config = load_config(config_dict={})
        config.storage.sqlite_path = ""
        errors = validate_config(config)
        assert any("sqlite_path" in e for e in errors)
