"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from mcoda.context.store import ContextStore
from mcoda.jobs.engine import JobEngine
from mcoda.jobs.repository import JobRepository
from mcoda.routing.repository import RoutingRepository

_ENV_PREFIXES = ("MCODA_",)


@pytest.fixture(autouse=True)
def _isolate_mcoda_env(monkeypatch):
    """Drop MCODA_* variables inherited from the developer shell."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture()
def job_repository(workspace: Path) -> Iterator[JobRepository]:
    repository = JobRepository(workspace / ".mcoda" / "mcoda.db")
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def job_engine(job_repository: JobRepository, workspace: Path) -> JobEngine:
    return JobEngine(job_repository, workspace_root=workspace, workspace_id="ws-1")


@pytest.fixture()
def routing_repository(workspace: Path) -> Iterator[RoutingRepository]:
    repository = RoutingRepository(workspace / ".mcoda" / "mcoda.db")
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@pytest.fixture()
def context_store(workspace: Path) -> ContextStore:
    return ContextStore(workspace)
