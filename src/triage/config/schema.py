"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field

from triage.config.defaults import (
    DEFAULT_HISTORY_CAPACITY,
    DEFAULT_PARALLEL_PATCH_THRESHOLD,
    DEFAULT_PHASE_SETTINGS,
    DEFAULT_STABLE_SLOPE,
    DEFAULT_TREND_WINDOW,
    DEFAULT_UNHEALTHY_THRESHOLD,
)
from triage.engine.models import BuildPhase


class PhaseSettings(BaseModel):
    """Defaults for cycles run in one build phase."""

    features: list[str] = Field(default_factory=list)
    target_components: list[str] = Field(default_factory=list)
    parallel_patch_threshold: int = Field(default=DEFAULT_PARALLEL_PATCH_THRESHOLD, ge=0)


class CycleSettings(BaseModel):
    """Cycle gate configuration."""

    block_on_critical: bool = True
    phases: dict[BuildPhase, PhaseSettings] = Field(
        default_factory=lambda: {
            BuildPhase(name): PhaseSettings(**values)
            for name, values in DEFAULT_PHASE_SETTINGS.items()
        }
    )

    def for_phase(self, phase: BuildPhase) -> PhaseSettings:
        """Get settings for a phase, falling back to bare defaults."""
        return self.phases.get(phase, PhaseSettings())


class AnalysisSettings(BaseModel):
    """Metrics analyzer configuration."""

    history_capacity: int = Field(default=DEFAULT_HISTORY_CAPACITY, ge=1)
    stable_slope: float = Field(default=DEFAULT_STABLE_SLOPE, ge=0)
    trend_window: int = Field(default=DEFAULT_TREND_WINDOW, ge=2)
    unhealthy_threshold: float = DEFAULT_UNHEALTHY_THRESHOLD


class StorageSettings(BaseModel):
    """Where JSONL event logs and cycle history are written."""

    data_dir: str | None = None


class TriageConfig(BaseModel):
    """Root configuration model for triage."""

    cycle: CycleSettings = Field(default_factory=CycleSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @classmethod
    def default(cls) -> "TriageConfig":
        """Create default configuration."""
        return cls()

    def get_data_dir(self) -> Path:
        """Resolve the storage directory."""
        if self.storage.data_dir:
            return Path(self.storage.data_dir).expanduser()
        return get_data_dir()


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_dir = Path.home() / ".config" / "triage"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_file() -> Path:
    """Get the main configuration file path."""
    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the default event log directory."""
    data_dir = get_config_dir() / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir
