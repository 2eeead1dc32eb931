"""Configuration commands for trackdown CLI."""

import yaml
from cyclopts import App

from trackdown.config import get_config

config_app = App(name="config", help="Manage project configuration")


def _parse_value(value: str):
    """Read a command-line value as YAML so lists and numbers keep their type."""
    parsed = yaml.safe_load(value)
    return value if parsed is None else parsed


@config_app.command
def set(key: str, value: str) -> None:
    """Set a configuration setting.

    Args:
        key: Dotted configuration key, e.g. structure.epics_dir
        value: Configuration value
    """
    from trackdown.cli import get_context

    config = get_config(get_context().project_root)
    config.set(key, _parse_value(value))
    print(f"Set {key} = {value}")


@config_app.command
def unset(key: str) -> None:
    """Unset a configuration setting.

    Args:
        key: Dotted configuration key
    """
    from trackdown.cli import get_context

    config = get_config(get_context().project_root)
    config.unset(key)
    print(f"Unset {key}")


@config_app.command
def get(key: str) -> None:
    """Get the value of a configuration setting.

    Args:
        key: Dotted configuration key
    """
    from trackdown.cli import get_context

    config = get_config(get_context().project_root)
    value = config.get(key)
    if value is None:
        print(f"{key} is not set")
    else:
        print(f"{key} = {value}")


@config_app.command(name="list")
def list_config() -> None:
    """List all configuration settings."""
    from trackdown.cli import get_context

    config = get_config(get_context().project_root)
    settings = config.list()

    if not settings:
        print("No configuration settings")
        return

    print("Configuration settings:\n")
    for key, value in settings.items():
        print(f"{key} = {value}")
