"""Find and read the guildbell YAML config, then hand it to pydantic-settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from guildbell.core.config.schema import Config
from guildbell.core.cron.errors import ValidationError

CONFIG_ENV = "GUILDBELL_CONFIG"
SEARCH_PATHS = (Path("config.yaml"), Path("~/.config/guildbell/config.yaml"))


def load_config(config_path: str | Path | None = None) -> Config:
    """Build a Config from the first YAML file found plus the environment.

    A file named explicitly (argument or ``GUILDBELL_CONFIG``) is used as is;
    otherwise ``./config.yaml`` then ``~/.config/guildbell/config.yaml`` are
    tried. ``GUILDBELL_*`` variables override whatever the file sets.
    """
    path = find_config_file(config_path)
    data = read_yaml(path) if path else {}
    return Config(**data)


def find_config_file(config_path: str | Path | None = None) -> Path | None:
    explicit = config_path or os.environ.get(CONFIG_ENV)
    if explicit:
        path = Path(explicit).expanduser()
        if path.is_file():
            return path
        logger.warning(f"Config file {path} not found, using defaults and environment")
        return None

    for candidate in SEARCH_PATHS:
        path = candidate.expanduser()
        if path.is_file():
            return path
    return None


def read_yaml(path: Path) -> dict[str, Any]:
    """Top-level mapping of ``path``. An empty file counts as ``{}``."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValidationError(f"Config file {path} is not valid YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError(f"Config file {path} must hold a mapping, got {type(data).__name__}")
    logger.info(f"Loaded config from {path}")
    return data
