"""Resolution of the tasks root and the category directories under it.

The tasks root comes from the first non-empty of: the per-invocation
override, the environment, the persisted configuration and the built-in
default. Every input arrives through a ``ResolutionContext`` value, so
resolving the same context twice always yields the same directories.
"""

import dataclasses
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import structlog

from trackdown.config import (
    CONFIG_DIR_NAME,
    DEFAULT_TASKS_DIRECTORY,
    Config,
    ProjectConfig,
    Structure,
    find_project_root,
)
from trackdown.models import Category, RecordType

logger = structlog.get_logger()

ENV_TASKS_DIR = "TRACKDOWN_TASKS_DIR"
ENV_ROOT_DIR = "TRACKDOWN_ROOT_DIR"
INDEX_FILE_NAME = "index.json"
COUNTERS_FILE_NAME = "counters.json"
LEGACY_DIRECTORY = "trackdown"



@dataclass(frozen=True)
class ResolutionContext:
    """Inputs to tasks-root resolution for one invocation.

    Attributes:
        project_root: Directory holding ``.trackdown/``
        override: Tasks directory given explicitly for this invocation
        env_tasks_dir: Tasks directory taken from the environment
    """

    project_root: Path
    override: str | None = None
    env_tasks_dir: str | None = None

    @classmethod
    def from_environment(
        cls,
        project_root: Path | None = None,
        override: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "ResolutionContext":
        """Capture the environment once, at the edge of the program."""
        environ = os.environ if environ is None else environ
        env_value = environ.get(ENV_TASKS_DIR) or environ.get(ENV_ROOT_DIR) or None
        root = Path(project_root) if project_root is not None else find_project_root()
        return cls(project_root=root.resolve(), override=override, env_tasks_dir=env_value)

    def with_override(self, override: str | None) -> "ResolutionContext":
        return dataclasses.replace(self, override=override)


@dataclass(frozen=True)
class ResolvedPaths:
    """Absolute locations of everything a project keeps on disk."""

    project_root: Path
    tasks_root: Path
    source: str
    structure: Structure = field(default_factory=Structure)
    extension: str = ".md"

    @property
    def config_dir(self) -> Path:
        return self.project_root / CONFIG_DIR_NAME

    @property
    def index_file(self) -> Path:
        return self.config_dir / INDEX_FILE_NAME

    @property
    def counters_file(self) -> Path:
        return self.config_dir / COUNTERS_FILE_NAME

    def directory_for(self, kind: RecordType | Category) -> Path:
        category = kind.category if isinstance(kind, RecordType) else Category(kind)
        return self.tasks_root / self.structure.directory_name(category)

    @property
    def epics_dir(self) -> Path:
        return self.directory_for(Category.EPICS)

    @property
    def issues_dir(self) -> Path:
        return self.directory_for(Category.ISSUES)

    @property
    def tasks_dir(self) -> Path:
        return self.directory_for(Category.TASKS)

    @property
    def prs_dir(self) -> Path:
        return self.directory_for(Category.PRS)

    @property
    def templates_dir(self) -> Path:
        return self.directory_for(Category.TEMPLATES)

    def category_dirs(self) -> dict[Category, Path]:
        return {category: self.directory_for(category) for category in Category}

    def relative(self, path: Path) -> str:
        """Path relative to the project root when possible, for messages and the index."""
        try:
            return Path(path).relative_to(self.project_root).as_posix()
        except ValueError:
            return str(path)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def select_tasks_directory(context: ResolutionContext, config: ProjectConfig) -> tuple[str, str]:
    """Return the winning tasks directory value and the name of its source."""
    candidates = (
        ("override", context.override),
        ("environment", context.env_tasks_dir),
        ("config", config.tasks_directory),
    )
    for source, value in candidates:
        cleaned = _clean(value)
        if cleaned is not None:
            return cleaned, source
    return DEFAULT_TASKS_DIRECTORY, "default"


def resolve_tasks_root(context: ResolutionContext, config: ProjectConfig) -> Path:
    """Absolute tasks root for the given inputs.

    Args:
        context: Project root plus the override and environment values
        config: Persisted project configuration

    Returns:
        Absolute directory; relative values are taken from the project root
    """
    value, _ = select_tasks_directory(context, config)
    root = Path(value).expanduser()
    if not root.is_absolute():
        root = context.project_root / root
    return Path(os.path.normpath(root))


def resolve_paths(context: ResolutionContext, config: ProjectConfig) -> ResolvedPaths:
    _, source = select_tasks_directory(context, config)
    paths = ResolvedPaths(
        project_root=context.project_root,
        tasks_root=resolve_tasks_root(context, config),
        source=source,
        structure=config.structure,
        extension=config.naming_conventions.file_extension,
    )
    logger.debug("Resolved tasks root", tasks_root=str(paths.tasks_root), source=source)
    return paths


@dataclass
class LegacyReport:
    """Directories left over from older layouts, with suggested moves."""

    directories: list[Path] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def detected(self) -> bool:
        return bool(self.directories)


def detect_legacy_structure(paths: ResolvedPaths) -> LegacyReport:
    """Find category directories outside the resolved tasks root.

    Nothing is moved; the report only carries advisory remediation lines.
    """
    report = LegacyReport()
    tasks_root_name = paths.relative(paths.tasks_root)

    for category in Category:
        name = paths.structure.directory_name(category)
        candidate = paths.project_root / name
        if not candidate.is_dir():
            continue
        if candidate in (paths.tasks_root, paths.directory_for(category)):
            continue
        report.directories.append(candidate)
        report.suggestions.append(f"move {name}/ under {tasks_root_name}/{name}")

    legacy_root = paths.project_root / LEGACY_DIRECTORY
    if legacy_root.is_dir() and legacy_root != paths.tasks_root:
        report.directories.append(legacy_root)
        report.suggestions.append(f"move the contents of {LEGACY_DIRECTORY}/ under {tasks_root_name}/")

    if report.detected:
        logger.warning("Legacy directory structure detected", directories=[str(d) for d in report.directories])
    return report


@dataclass
class StructureReport:
    tasks_root: Path
    categories: dict[Category, bool]
    legacy: LegacyReport

    @property
    def missing(self) -> list[Category]:
        return [category for category, exists in self.categories.items() if not exists]

    @property
    def valid(self) -> bool:
        return not self.missing and not self.legacy.detected


def validate_structure(paths: ResolvedPaths) -> StructureReport:
    """Check every category directory exists and no legacy layout competes with it."""
    categories = {category: directory.is_dir() for category, directory in paths.category_dirs().items()}
    report = StructureReport(tasks_root=paths.tasks_root, categories=categories, legacy=detect_legacy_structure(paths))
    logger.debug("Structure validated", valid=report.valid, missing=[c.value for c in report.missing])
    return report


def ensure_structure(paths: ResolvedPaths) -> list[Path]:
    """Create any missing category directories; returns the ones created."""
    created = []
    for directory in paths.category_dirs().values():
        if not directory.is_dir():
            directory.mkdir(parents=True, exist_ok=True)
            created.append(directory)
    if created:
        logger.info("Created directories", directories=[str(d) for d in created])
    return created


def load_project_config(project_root: Path) -> ProjectConfig:
    return Config(project_root=project_root).project_config()


def init_project(
    context: ResolutionContext, name: str | None = None, tasks_directory: str | None = None
) -> ResolvedPaths:
    """Write the project configuration and create the directory layout.

    Running it again keeps existing configuration values and only creates what
    is missing.
    """
    config = Config(project_root=context.project_root)
    project_config = config.write_defaults(name or context.project_root.name, tasks_directory)
    paths = resolve_paths(context, project_config)
    ensure_structure(paths)
    logger.info("Project initialized", project_root=str(paths.project_root), tasks_root=str(paths.tasks_root))
    return paths
