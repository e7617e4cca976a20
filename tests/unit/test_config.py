"""Tests for configuration loading."""

from careflow.config import load_config
from careflow.engine import build_engine
from careflow.persistence import SQLiteWorkflowRepository
from careflow.transports import get_transport
from careflow.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
engine:
  step_timeout: 5
  sweep_batch_size: 20
"""
    )
    monkeypatch.setenv("CAREFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.engine.step_timeout == 5
    assert config.engine.sweep_batch_size == 20
    assert config.engine.sweep_interval == 60.0


def test_defaults_without_file(tmp_path):
    config = load_config(str(tmp_path / "nope.yaml"))

    assert config.transport.backend == "inmemory"
    assert config.engine.step_timeout == 30.0
    assert config.database_url is None


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from/file.db\n")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///from/env.db")

    assert load_config(str(config_path)).database_url == "sqlite:///from/env.db"

    monkeypatch.setenv("CAREFLOW_DATABASE_URL", "sqlite:///from/careflow.db")
    assert load_config(str(config_path)).database_url == "sqlite:///from/careflow.db"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("CAREFLOW_CONFIG", str(config_path))

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380


def test_build_engine_from_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        f"""
database_url: sqlite://{tmp_path / 'careflow.db'}
engine:
  step_timeout: 3
"""
    )
    monkeypatch.setenv("CAREFLOW_CONFIG", str(config_path))

    engine = build_engine(load_config())

    assert isinstance(engine.repository, SQLiteWorkflowRepository)
    assert engine.runner._step_timeout == 3
