"""Tests for tasks-root resolution and directory layout checks."""

from pathlib import Path

from trackdown.config import Config, ProjectConfig
from trackdown.models import Category, RecordType
from trackdown.paths import (
    ResolutionContext,
    detect_legacy_structure,
    ensure_structure,
    init_project,
    resolve_paths,
    resolve_tasks_root,
    validate_structure,
)


def test_override_then_config_priority(tmp_path: Path) -> None:
    """Test override beats config, and config beats the default once the override is cleared."""
    config = ProjectConfig(tasks_directory="tasks")
    context = ResolutionContext.from_environment(project_root=tmp_path, override="work", environ={})

    assert resolve_tasks_root(context, config) == tmp_path.resolve() / "work"
    assert resolve_tasks_root(context.with_override(None), config) == tmp_path.resolve() / "tasks"


def test_environment_priority(tmp_path: Path) -> None:
    """Test the environment sits between the override and the config."""
    config = ProjectConfig(tasks_directory="from-config")
    context = ResolutionContext.from_environment(
        project_root=tmp_path, environ={"TRACKDOWN_TASKS_DIR": "from-env"}
    )
    assert resolve_tasks_root(context, config).name == "from-env"
    assert resolve_tasks_root(context.with_override("from-flag"), config).name == "from-flag"


def test_legacy_environment_variable(tmp_path: Path) -> None:
    """Test the older environment variable is still honoured."""
    context = ResolutionContext.from_environment(project_root=tmp_path, environ={"TRACKDOWN_ROOT_DIR": "legacy"})
    assert context.env_tasks_dir == "legacy"


def test_default_and_empty_values(tmp_path: Path) -> None:
    """Test empty values count as unset and the default applies last."""
    context = ResolutionContext(project_root=tmp_path, override="", env_tasks_dir="  ")
    paths = resolve_paths(context, ProjectConfig(tasks_directory=None))
    assert paths.tasks_root == tmp_path / "tasks"
    assert paths.source == "default"


def test_resolution_is_repeatable(tmp_path: Path) -> None:
    """Test the same inputs always give the same directories."""
    context = ResolutionContext(project_root=tmp_path, override="work")
    config = ProjectConfig()
    assert resolve_paths(context, config) == resolve_paths(context, config)


def test_absolute_override(tmp_path: Path) -> None:
    """Test an absolute tasks directory is used as is."""
    elsewhere = tmp_path / "elsewhere"
    context = ResolutionContext(project_root=tmp_path / "project", override=str(elsewhere))
    assert resolve_tasks_root(context, ProjectConfig()) == elsewhere


def test_category_directories(tmp_path: Path) -> None:
    """Test category directories follow the configured names."""
    config = ProjectConfig.from_dict({"structure": {"prs_dir": "pull-requests"}})
    paths = resolve_paths(ResolutionContext(project_root=tmp_path), config)
    assert paths.prs_dir == tmp_path / "tasks" / "pull-requests"
    assert paths.directory_for(RecordType.EPIC) == paths.epics_dir
    assert paths.index_file == tmp_path / ".trackdown" / "index.json"


def test_validate_missing_directories(tmp_path: Path) -> None:
    """Test missing category directories make the structure invalid."""
    paths = resolve_paths(ResolutionContext(project_root=tmp_path), ProjectConfig())
    report = validate_structure(paths)
    assert not report.valid
    assert set(report.missing) == set(Category)

    ensure_structure(paths)
    assert validate_structure(paths).valid


def test_legacy_directories_detected(tmp_path: Path) -> None:
    """Test category directories beside the tasks root are reported, not moved."""
    paths = resolve_paths(ResolutionContext(project_root=tmp_path), ProjectConfig())
    ensure_structure(paths)
    (tmp_path / "epics").mkdir()

    legacy = detect_legacy_structure(paths)
    assert legacy.detected
    assert legacy.directories == [tmp_path / "epics"]
    assert legacy.suggestions == ["move epics/ under tasks/epics"]
    assert (tmp_path / "epics").is_dir()

    report = validate_structure(paths)
    assert report.missing == []
    assert not report.valid


def test_old_single_directory_detected(tmp_path: Path) -> None:
    """Test the old trackdown/ directory counts as legacy structure."""
    paths = resolve_paths(ResolutionContext(project_root=tmp_path), ProjectConfig())
    (tmp_path / "trackdown").mkdir()
    assert detect_legacy_structure(paths).directories == [tmp_path / "trackdown"]


def test_tasks_root_at_project_root_is_not_legacy(tmp_path: Path) -> None:
    """Test categories directly under the project root are fine when that is the tasks root."""
    paths = resolve_paths(ResolutionContext(project_root=tmp_path, override="."), ProjectConfig())
    ensure_structure(paths)
    assert not detect_legacy_structure(paths).detected
    assert validate_structure(paths).valid


def test_init_project(tmp_path: Path) -> None:
    """Test init writes the config and creates every directory, twice without harm."""
    context = ResolutionContext(project_root=tmp_path)
    paths = init_project(context, name="demo")
    assert Config(project_root=tmp_path).get("name") == "demo"
    assert all(d.is_dir() for d in paths.category_dirs().values())

    again = init_project(context, name="other")
    assert again == paths
    assert Config(project_root=tmp_path).get("name") == "demo"
