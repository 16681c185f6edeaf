"""
Configuration loading for hostmesh.

Config lives at ``~/.hostmesh/config.yaml`` (or ``$HOSTMESH_HOME``).
A missing or broken file never stops a run: we warn and fall back
to defaults: ~/dotfiles checked out from the main branch.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from . import HOSTMESH_HOME
from .models import HostmeshConfig

logger = logging.getLogger("hostmesh.config")

CONFIG_FILENAME = "config.yaml"


def config_path(home: Optional[Path] = None) -> Path:
    """Location of the config file for a given hostmesh home."""
    return (home or Path(HOSTMESH_HOME)).expanduser() / CONFIG_FILENAME


def load_config(home: Optional[Path] = None) -> HostmeshConfig:
    """Load the hostmesh configuration.

    Args:
        home: hostmesh home directory. Defaults to ``HOSTMESH_HOME``.

    Returns:
        HostmeshConfig, defaults if the file is missing or invalid.
    """
    path = config_path(home)
    if not path.exists():
        logger.debug("No config at %s, using defaults", path)
        return HostmeshConfig()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError("top level must be a mapping")
        return HostmeshConfig(**data)
    except (yaml.YAMLError, ValidationError, ValueError) as exc:
        logger.warning("Failed to load config %s: %s", path, exc)
        return HostmeshConfig()


def save_config(config: HostmeshConfig, home: Optional[Path] = None) -> Path:
    """Persist the configuration as YAML.

    Args:
        config: Configuration to write.
        home: hostmesh home directory.

    Returns:
        Path: The written file.
    """
    path = config_path(home)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json")
    path.write_text(yaml.dump(data, default_flow_style=False), encoding="utf-8")
    return path
