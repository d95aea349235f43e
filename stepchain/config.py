from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel

DEFAULT_BASE_PATH = "/var/stepchain/instances"


class EngineConfig(BaseModel):
    """Settings applied to every task engine created for a step."""

    concurrency: int = 1


class StepChainConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    base_path: str = DEFAULT_BASE_PATH
    service_principal: str = "stepchain-service"
    log_level: str = "INFO"
    engine: EngineConfig = EngineConfig()


def load_config(path: Optional[str] = None) -> StepChainConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STEPCHAIN_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STEPCHAIN_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = StepChainConfig(**data)
    else:
        config = StepChainConfig()

    env_db_url = os.getenv("STEPCHAIN_DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
