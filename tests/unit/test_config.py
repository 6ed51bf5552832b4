"""Tests for configuration loading."""

import pytest

from reportflow.collaborators import (
    FileSystemObjectStore,
    InMemoryJobClient,
    get_job_client,
    get_object_store,
)
from reportflow.collaborators.http import HttpExternalJobClient
from reportflow.config import ReportFlowConfig, load_config
from reportflow.persistence import SQLiteWorkflowRecordStore, get_store


def test_defaults_without_config_file(tmp_path, monkeypatch):
    monkeypatch.setenv("REPORTFLOW_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("REPORTFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.database_url is None
    assert config.polling.interval_seconds == 5.0
    assert config.polling.max_wait_seconds == 300.0
    assert config.scoring.failed_stage_penalty == 20
    assert config.scoring.slow_processing_threshold_seconds == 600.0
    assert config.estimated_duration_seconds == 480.0
    assert config.storage.key_prefix == "edf-files"


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
polling:
  interval_seconds: 1
  max_wait_seconds: 30
storage:
  backend: filesystem
  root: /tmp/objects
external_jobs:
  backend: http
  base_url: https://processor.example
  api_key: secret
"""
    )
    monkeypatch.setenv("REPORTFLOW_CONFIG", str(config_path))
    monkeypatch.delenv("REPORTFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.polling.interval_seconds == 1
    assert config.polling.max_wait_seconds == 30
    assert config.storage.backend == "filesystem"
    assert config.external_jobs.base_url == "https://processor.example"


def test_database_url_env_overrides_file(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("REPORTFLOW_CONFIG", str(config_path))
    monkeypatch.setenv("REPORTFLOW_DATABASE_URL", "redis://localhost:6379/0")

    assert load_config().database_url == "redis://localhost:6379/0"


def test_get_store_uses_config(tmp_path, monkeypatch):
    monkeypatch.delenv("REPORTFLOW_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = ReportFlowConfig(database_url=f"sqlite://{tmp_path / 'wf.db'}")

    store = get_store(config=config)
    assert isinstance(store, SQLiteWorkflowRecordStore)
    assert store.db_path == str(tmp_path / "wf.db")
    assert get_store() is store
    store.close()


def test_get_store_rejects_unknown_scheme():
    with pytest.raises(ValueError):
        get_store(database_url="mysql://localhost/db")


def test_collaborator_factories_follow_config(tmp_path):
    config = ReportFlowConfig.model_validate(
        {
            "storage": {"backend": "filesystem", "root": str(tmp_path)},
            "external_jobs": {"backend": "http", "base_url": "https://processor.example"},
        }
    )

    store = get_object_store(config)
    assert isinstance(store, FileSystemObjectStore)
    assert store.root == tmp_path.resolve()
    assert isinstance(get_job_client(config), HttpExternalJobClient)

    assert isinstance(get_job_client(ReportFlowConfig()), InMemoryJobClient)


def test_http_job_client_requires_base_url():
    config = ReportFlowConfig.model_validate({"external_jobs": {"backend": "http"}})

    with pytest.raises(ValueError):
        get_job_client(config)
