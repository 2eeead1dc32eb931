"""Project configuration for trackdown using a YAML file.

The configuration lives in ``.trackdown/config.yaml`` at the project root and
holds the tasks-root directory name, the category directory names, id prefixes
per record type and the record file extension.
"""

import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from trackdown.errors import ConfigError
from trackdown.models import Category, RecordType

logger = structlog.get_logger()

CONFIG_DIR_NAME = ".trackdown"
CONFIG_FILE_NAME = "config.yaml"
DEFAULT_TASKS_DIRECTORY = "tasks"

DEFAULTS: dict[str, Any] = {
    "name": "",
    "version": "1.0.0",
    "tasks_directory": DEFAULT_TASKS_DIRECTORY,
    "structure": {
        "epics_dir": "epics",
        "issues_dir": "issues",
        "tasks_dir": "tasks",
        "prs_dir": "prs",
        "templates_dir": "templates",
    },
    "naming_conventions": {
        "epic_prefix": "EP",
        "issue_prefix": "ISS",
        "task_prefix": "TSK",
        "pr_prefix": "PR",
        "file_extension": ".md",
    },
    "default_assignee": "unassigned",
}


@dataclass(frozen=True)
class Structure:
    epics_dir: str = "epics"
    issues_dir: str = "issues"
    tasks_dir: str = "tasks"
    prs_dir: str = "prs"
    templates_dir: str = "templates"

    def directory_name(self, category: Category) -> str:
        return getattr(self, f"{category.value}_dir")


@dataclass(frozen=True)
class NamingConventions:
    epic_prefix: str = "EP"
    issue_prefix: str = "ISS"
    task_prefix: str = "TSK"
    pr_prefix: str = "PR"
    file_extension: str = ".md"

    def prefix(self, record_type: RecordType) -> str:
        return getattr(self, f"{record_type.value}_prefix")


@dataclass(frozen=True)
class ProjectConfig:
    """Validated, normalized view of the persisted configuration."""

    name: str = ""
    version: str = "1.0.0"
    tasks_directory: str | None = DEFAULT_TASKS_DIRECTORY
    structure: Structure = field(default_factory=Structure)
    naming_conventions: NamingConventions = field(default_factory=NamingConventions)
    default_assignee: str = "unassigned"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectConfig":
        """Build a config from raw YAML data, filling defaults.

        Raises:
            ConfigError: a directory name, prefix or extension is empty or not text
        """
        for section in ("structure", "naming_conventions"):
            if not isinstance(data.get(section) or {}, dict):
                raise ConfigError(f"Configuration {section} must be a mapping")
        structure_data = {**DEFAULTS["structure"], **(data.get("structure") or {})}
        naming_data = {**DEFAULTS["naming_conventions"], **(data.get("naming_conventions") or {})}

        for section, values in (("structure", structure_data), ("naming_conventions", naming_data)):
            for key in DEFAULTS[section]:
                value = values[key]
                if not isinstance(value, str) or not value.strip("/ "):
                    raise ConfigError(f"Configuration {section}.{key} must be a non-empty string")

        structure = Structure(
            **{k: v.strip().strip("/") for k, v in structure_data.items() if k in DEFAULTS["structure"]}
        )

        naming_values = {k: v.strip() for k, v in naming_data.items() if k in DEFAULTS["naming_conventions"]}
        if not naming_values["file_extension"].startswith("."):
            naming_values["file_extension"] = "." + naming_values["file_extension"]
        naming = NamingConventions(**naming_values)

        tasks_directory = data.get("tasks_directory", DEFAULT_TASKS_DIRECTORY)
        if tasks_directory is not None and not isinstance(tasks_directory, str):
            raise ConfigError("Configuration tasks_directory must be a string")

        return cls(
            name=str(data.get("name") or ""),
            version=str(data.get("version") or DEFAULTS["version"]),
            tasks_directory=tasks_directory,
            structure=structure,
            naming_conventions=naming,
            default_assignee=str(data.get("default_assignee") or DEFAULTS["default_assignee"]),
        )


class Config:
    """Configuration manager using YAML file storage.

    Values are addressed with dotted keys (``structure.epics_dir``). The file
    is only created when a value is first saved.
    """

    def __init__(self, project_root: Path | None = None, config_dir: Path | None = None) -> None:
        """Initialize configuration manager.

        Args:
            project_root: Project directory holding ``.trackdown/`` (defaults to the current directory)
            config_dir: Custom directory to store the config file (overrides project_root)
        """
        if config_dir is not None:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = Path(project_root or Path.cwd()) / CONFIG_DIR_NAME

        self.config_file = self.config_dir / CONFIG_FILE_NAME
        self._config: dict[str, Any] = self._load()

        logger.debug("Config initialized", config_file=str(self.config_file))

    def _load(self) -> dict[str, Any]:
        """Load configuration from YAML file.

        Returns:
            Configuration dictionary
        """
        if not self.config_file.exists():
            logger.debug("Config file does not exist, initializing empty config")
            return {}

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to load config", error=str(e))
            raise ConfigError(f"Failed to load config from {self.config_file}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigError(f"Config file {self.config_file} must contain a mapping")
        logger.debug("Config loaded successfully", keys=list(config.keys()))
        return config

    def _save(self) -> None:
        """Save configuration to YAML file."""
        try:
            self.config_dir.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)
            logger.debug("Config saved successfully")
        except OSError as e:
            logger.error("Failed to save config", error=str(e))
            raise ConfigError(f"Failed to save config to {self.config_file}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value.

        Args:
            key: Dotted configuration key
            default: Default value if key doesn't exist

        Returns:
            Configuration value or default
        """
        node: Any = self._config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                logger.debug("Config value not found", key=key)
                return default
            node = node[part]
        logger.debug("Getting config value", key=key)
        return node

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value.

        Args:
            key: Dotted configuration key
            value: Configuration value

        Raises:
            ConfigError: the value would make the configuration invalid
        """
        logger.debug("Setting config value", key=key)
        updated = copy.deepcopy(self._config)
        *parents, leaf = key.split(".")
        node = updated
        for part in parents:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[leaf] = value
        ProjectConfig.from_dict(updated)
        self._config = updated
        self._save()

    def unset(self, key: str) -> None:
        """Remove a configuration value.

        Args:
            key: Dotted configuration key
        """
        logger.debug("Unsetting config value", key=key)
        *parents, leaf = key.split(".")
        node: Any = self._config
        for part in parents:
            node = node.get(part) if isinstance(node, dict) else None
        if isinstance(node, dict) and leaf in node:
            del node[leaf]
            self._save()

    def list(self) -> dict[str, Any]:
        """List all configuration settings as flattened dotted keys."""
        flat: dict[str, Any] = {}

        def walk(prefix: str, node: dict[str, Any]) -> None:
            for key, value in node.items():
                dotted = f"{prefix}.{key}" if prefix else str(key)
                if isinstance(value, dict):
                    walk(dotted, value)
                else:
                    flat[dotted] = value

        walk("", self._config)
        logger.debug("Listing config values", count=len(flat))
        return flat

    def project_config(self) -> ProjectConfig:
        """Typed view of the stored values with defaults filled in."""
        return ProjectConfig.from_dict(self._config)

    def write_defaults(self, name: str, tasks_directory: str | None = None) -> ProjectConfig:
        """Write a full default configuration, keeping values already stored."""
        merged = copy.deepcopy(DEFAULTS)
        merged["name"] = name
        if tasks_directory:
            merged["tasks_directory"] = tasks_directory
        for key, value in self._config.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key].update(value)
            else:
                merged[key] = value
        self._config = merged
        self._save()
        return self.project_config()


def find_project_root(start: Path | None = None) -> Path:
    """Walk up from start to the nearest directory holding a trackdown config."""
    start = Path(start or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        if (directory / CONFIG_DIR_NAME / CONFIG_FILE_NAME).is_file():
            return directory
    return start


def get_config(project_root: Path | None = None) -> Config:
    """Get a configuration instance.

    Args:
        project_root: Project directory; defaults to the nearest configured ancestor of the cwd

    Returns:
        Config instance
    """
    return Config(project_root=project_root or find_project_root())
