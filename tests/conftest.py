"""Pytest fixtures for metacalc tests."""

import tempfile
from collections.abc import Generator
from pathlib import Path

import matplotlib
import pytest

from metacalc.analysis.effect_sizes import LinearEffect
from metacalc.analysis.normalizer import StudyEffect
from metacalc.config import Config, set_config
from metacalc.models import BinaryData, ContinuousData, PrecalculatedData, StudyRecord

matplotlib.use("Agg")


@pytest.fixture
def continuous_study() -> StudyRecord:
    """Create a continuous-outcome study with typical values."""
    return StudyRecord(
        id="smith",
        name="Smith",
        year=2020,
        data=ContinuousData(n1=50, mean1=12.5, sd1=3.2, n2=48, mean2=10.1, sd2=2.9),
    )


@pytest.fixture
def binary_study() -> StudyRecord:
    """Create a binary-outcome study (15/50 vs 8/48)."""
    return StudyRecord(
        id="jones",
        name="Jones",
        year=2019,
        data=BinaryData(events1=15, total1=50, events2=8, total2=48),
    )


@pytest.fixture
def precalculated_study() -> StudyRecord:
    """Create a study with a reported effect and standard error."""
    return StudyRecord(
        id="lee",
        name="Lee",
        year=2021,
        data=PrecalculatedData(effect=0.45, se=0.12),
    )


@pytest.fixture
def precalculated_studies() -> list[StudyRecord]:
    """Create four pre-calculated studies in two subgroups."""
    rows = [
        ("a", "Adams", 0.45, 0.12, "adults"),
        ("b", "Baker", 0.30, 0.20, "adults"),
        ("c", "Clark", 0.10, 0.15, "children"),
        ("d", "Davis", -0.05, 0.25, "children"),
    ]
    return [
        StudyRecord(id=sid, name=name, year=2018, subgroup=group, data=PrecalculatedData(effect=effect, se=se))
        for sid, name, effect, se, group in rows
    ]


@pytest.fixture
def heterogeneous_effects() -> list[StudyEffect]:
    """Two canonical effects, 0 and 1, each with variance 0.1."""
    return [
        StudyEffect(study_id="s1", name="Study 1", estimate=LinearEffect(value=0.0, se=0.1**0.5)),
        StudyEffect(study_id="s2", name="Study 2", estimate=LinearEffect(value=1.0, se=0.1**0.5)),
    ]


@pytest.fixture
def study_csv() -> str:
    """CSV content with one study of each input shape."""
    return (
        "Study,Year,n1,mean1,sd1,n2,mean2,sd2,events1,total1,events2,total2,yi,sei,subgroup\n"
        "Smith,2020,50,12.5,3.2,48,10.1,2.9,,,,,,,adults\n"
        "Jones,2019,,,,,,,15,50,8,48,,,children\n"
        "Lee,2021,,,,,,,,,,,0.45,0.12,adults\n"
    )


@pytest.fixture
def temp_dir() -> Generator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> Generator[Config]:
    """Install a global config whose data directory is temporary."""
    config = Config(data_dir=temp_dir / "data")
    config.plots.format = "svg"
    set_config(config)
    yield config
    set_config(Config())
