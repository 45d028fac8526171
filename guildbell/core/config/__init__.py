"""Configuration module."""

from guildbell.core.config.loader import load_config
from guildbell.core.config.schema import Config

__all__ = ["Config", "load_config"]
