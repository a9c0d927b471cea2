"""Configuration management."""

from triage.config.manager import ConfigManager
from triage.config.schema import TriageConfig

__all__ = ["ConfigManager", "TriageConfig"]
