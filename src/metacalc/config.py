"""Configuration management for the meta-analysis tool."""

import os
from pathlib import Path

from pydantic import BaseModel, Field

from metacalc.models import EffectMeasure, PoolingMethod


class PlotConfig(BaseModel):
    """Plot export settings."""

    dpi: int = 300
    format: str = "svg"  # svg, png or pdf
    funnel_steps: int = 50  # Points along each funnel boundary line


class Config(BaseModel):
    """Global configuration for the meta-analysis tool."""

    # Analysis defaults
    default_measure: EffectMeasure = EffectMeasure.SMD
    default_method: PoolingMethod = PoolingMethod.RANDOM
    confidence_z: float = 1.96  # Two-sided 95% interval

    # Plot settings
    plots: PlotConfig = Field(default_factory=PlotConfig)

    # Paths
    data_dir: Path | None = None
    database_path: Path | None = None

    def __init__(self, **data: object) -> None:
        super().__init__(**data)

        # Environment overrides
        if self.data_dir is None:
            env_dir = os.environ.get("METACALC_DATA_DIR")
            self.data_dir = Path(env_dir) if env_dir else Path.cwd() / ".metacalc"
        if "default_measure" not in data and os.environ.get("METACALC_DEFAULT_MEASURE"):
            self.default_measure = EffectMeasure(os.environ["METACALC_DEFAULT_MEASURE"].upper())
        if "default_method" not in data and os.environ.get("METACALC_DEFAULT_METHOD"):
            self.default_method = PoolingMethod(os.environ["METACALC_DEFAULT_METHOD"].lower())

        # Set default paths
        if self.database_path is None:
            self.database_path = self.data_dir / "meta.db"

    def ensure_data_dir(self) -> None:
        """Create the data directory if it doesn't exist."""
        if self.data_dir:
            self.data_dir.mkdir(parents=True, exist_ok=True)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
