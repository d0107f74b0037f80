from __future__ import annotations

import os
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import SQS_SEND_MESSAGE


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class SQSConfig(BaseModel):
    """Configuration for the SQS transport."""

    region: str = "eu-west-1"
    endpoint_url: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport used by queue service integrations."""

    backend: Literal["inmemory", "redis", "sqs"] = "inmemory"
    redis: RedisConfig = Field(default_factory=RedisConfig)
    sqs: SQSConfig = Field(default_factory=SQSConfig)


class StepflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    # Task resources dispatched to service integrations instead of handlers
    services: List[str] = Field(default_factory=lambda: [SQS_SEND_MESSAGE])
    # Handler name -> "package.module:function"
    handlers: Dict[str, str] = Field(default_factory=dict)
    # Forwarded to handlers through their invocation context
    provider: Dict[str, Any] = Field(default_factory=dict)


def load_config(path: Optional[str] = None) -> StepflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPFLOW_CONFIG env
            variable or 'stepflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPFLOW_CONFIG", "stepflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepflowConfig(**data)
    else:
        config = StepflowConfig()

    env_backend = os.getenv("STEPFLOW_TRANSPORT")
    if env_backend:
        config.transport.backend = env_backend.lower()
    return config
