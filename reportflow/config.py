from __future__ import annotations

import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel


class PollingConfig(BaseModel):
    """Wait policy for the external processing job."""

    interval_seconds: float = 5.0
    max_wait_seconds: float = 300.0


class ScoringConfig(BaseModel):
    """Quality score penalties applied at finalization."""

    failed_stage_penalty: int = 20
    slow_processing_penalty: int = 10
    slow_processing_threshold_seconds: float = 600.0


class StorageConfig(BaseModel):
    """Object storage settings for uploaded recordings."""

    backend: Literal["memory", "filesystem"] = "memory"
    root: str = "./objects"
    key_prefix: str = "edf-files"


class ExternalJobConfig(BaseModel):
    """Connection settings for the external signal processor."""

    backend: Literal["inmemory", "http"] = "inmemory"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    request_timeout: float = 30.0


class ReportFlowConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    estimated_duration_seconds: float = 480.0
    reconcile_after_seconds: float = 900.0
    polling: PollingConfig = PollingConfig()
    scoring: ScoringConfig = ScoringConfig()
    storage: StorageConfig = StorageConfig()
    external_jobs: ExternalJobConfig = ExternalJobConfig()


def load_config(path: Optional[str] = None) -> ReportFlowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to REPORTFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("REPORTFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ReportFlowConfig(**data)
    else:
        config = ReportFlowConfig()

    env_db_url = os.getenv("REPORTFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
