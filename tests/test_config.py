"""Tests for configuration."""

from pathlib import Path

import pytest

from metacalc.config import Config, get_config, set_config
from metacalc.models import EffectMeasure, PoolingMethod


class TestConfig:
    """Tests for Config defaults and environment overrides."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
        """Test default paths and analysis settings."""
        for name in ("METACALC_DATA_DIR", "METACALC_DEFAULT_MEASURE", "METACALC_DEFAULT_METHOD"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.chdir(temp_dir)

        config = Config()

        assert config.data_dir == temp_dir / ".metacalc"
        assert config.database_path == temp_dir / ".metacalc" / "meta.db"
        assert config.default_measure == EffectMeasure.SMD
        assert config.default_method == PoolingMethod.RANDOM
        assert config.confidence_z == 1.96
        assert config.plots.funnel_steps == 50

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
        """Test METACALC_* environment variables."""
        monkeypatch.setenv("METACALC_DATA_DIR", str(temp_dir / "env"))
        monkeypatch.setenv("METACALC_DEFAULT_MEASURE", "or")
        monkeypatch.setenv("METACALC_DEFAULT_METHOD", "FIXED")

        config = Config()

        assert config.data_dir == temp_dir / "env"
        assert config.default_measure == EffectMeasure.OR
        assert config.default_method == PoolingMethod.FIXED

    def test_explicit_values_win(self, monkeypatch: pytest.MonkeyPatch, temp_dir: Path) -> None:
        """Test that constructor arguments beat the environment."""
        monkeypatch.setenv("METACALC_DEFAULT_MEASURE", "OR")

        config = Config(data_dir=temp_dir, default_measure=EffectMeasure.RD)

        assert config.default_measure == EffectMeasure.RD
        assert config.database_path == temp_dir / "meta.db"

    def test_ensure_data_dir(self, temp_dir: Path) -> None:
        """Test data directory creation."""
        config = Config(data_dir=temp_dir / "a" / "b")
        config.ensure_data_dir()
        assert (temp_dir / "a" / "b").is_dir()

    def test_global_config(self, test_config: Config) -> None:
        """Test get_config returns the installed instance."""
        assert get_config() is test_config
        replacement = Config(data_dir=test_config.data_dir)
        set_config(replacement)
        assert get_config() is replacement
