"""Tests for configuration loading."""

import pytest

from stepflow.config import load_config
from stepflow.constants import SQS_SEND_MESSAGE
from stepflow.transports import get_transport
from stepflow.transports.inmemory import InMemoryTransport
from stepflow.transports.redis import RedisTransport
from stepflow.transports.sqs import SQSTransport


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("STEPFLOW_TRANSPORT", raising=False)
    monkeypatch.delenv("STEPFLOW_CONFIG", raising=False)


def test_load_config_defaults(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"))
    assert config.transport.backend == "inmemory"
    assert config.services == [SQS_SEND_MESSAGE]
    assert config.handlers == {}
    assert config.provider == {}


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
handlers:
  validate: orders.handlers:validate
provider:
  region: eu-central-1
"""
    )
    monkeypatch.setenv("STEPFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.transport.redis.port == 1234
    assert config.handlers == {"validate": "orders.handlers:validate"}
    assert config.provider == {"region": "eu-central-1"}


def test_transport_backend_env_override(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("transport:\n  backend: redis\n")
    monkeypatch.setenv("STEPFLOW_TRANSPORT", "INMEMORY")

    config = load_config(str(config_path))
    assert config.transport.backend == "inmemory"


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
    monkeypatch.setenv("STEPFLOW_CONFIG", str(config_path))

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380


def test_get_transport_sqs_settings(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: sqs
  sqs:
    region: us-east-1
    endpoint_url: http://localhost:4566
"""
    )

    transport = get_transport(config=load_config(str(config_path)))
    assert isinstance(transport, SQSTransport)
    assert transport.region == "us-east-1"
    assert transport.endpoint_url == "http://localhost:4566"


def test_get_transport_explicit_backend(tmp_path):
    config = load_config(str(tmp_path / "missing.yaml"))
    assert isinstance(get_transport("inmemory", config), InMemoryTransport)
    with pytest.raises(ValueError):
        get_transport("carrier-pigeon", config)
