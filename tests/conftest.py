"""Shared fixtures for trackdown tests."""

from pathlib import Path

import pytest

from trackdown import cli
from trackdown.codec import write_record
from trackdown.ids import record_filename
from trackdown.models import Entity
from trackdown.paths import ResolutionContext, ResolvedPaths, init_project, load_project_config
from trackdown.store import RecordStore


@pytest.fixture(autouse=True)
def quiet_logging() -> None:
    """Keep debug logging off stdout so command output can be asserted on."""
    cli.configure_logging("critical")


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Empty project directory."""
    return tmp_path.resolve()


@pytest.fixture
def paths(project_root: Path) -> ResolvedPaths:
    """Initialized project with every category directory."""
    return init_project(ResolutionContext(project_root=project_root), name="demo")


@pytest.fixture
def store(paths: ResolvedPaths) -> RecordStore:
    """Record store over the initialized project."""
    return RecordStore(paths, load_project_config(paths.project_root))


def write_entity(paths: ResolvedPaths, entity: Entity) -> Path:
    """Write a record file directly, bypassing the store."""
    path = paths.directory_for(entity.record_type) / record_filename(entity.id, entity.title, paths.extension)
    write_record(path, entity)
    return path
