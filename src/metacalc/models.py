"""Data models for meta-analysis studies and sessions."""

import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class EffectMeasure(str, Enum):
    """Supported effect size measures."""

    SMD = "SMD"  # Standardized Mean Difference (Hedges' g)
    MD = "MD"  # Mean Difference
    OR = "OR"  # Odds Ratio
    RR = "RR"  # Risk Ratio
    RD = "RD"  # Risk Difference
    HR = "HR"  # Hazard Ratio (pre-calculated only)

    @property
    def is_ratio(self) -> bool:
        """Ratio measures are pooled on the natural log scale."""
        return self in (EffectMeasure.OR, EffectMeasure.RR, EffectMeasure.HR)

    @property
    def null_value(self) -> float:
        """Value of no effect on the natural (display) scale."""
        return 1.0 if self.is_ratio else 0.0

    @property
    def label(self) -> str:
        return MEASURE_LABELS[self]


MEASURE_LABELS = {
    EffectMeasure.SMD: "Standardized Mean Difference (Hedges' g)",
    EffectMeasure.MD: "Mean Difference",
    EffectMeasure.OR: "Odds Ratio",
    EffectMeasure.RR: "Risk Ratio",
    EffectMeasure.RD: "Risk Difference",
    EffectMeasure.HR: "Hazard Ratio",
}


class PoolingMethod(str, Enum):
    """Meta-analysis pooling methods."""

    FIXED = "fixed"
    RANDOM = "random"

    @property
    def label(self) -> str:
        if self == PoolingMethod.FIXED:
            return "Fixed Effect (Inverse Variance)"
        return "Random Effects (DerSimonian-Laird)"


class ContinuousData(BaseModel):
    """Group means and standard deviations for two arms."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["continuous"] = "continuous"
    n1: int | None = None  # intervention N
    mean1: float | None = None
    sd1: float | None = None
    n2: int | None = None  # control N
    mean2: float | None = None
    sd2: float | None = None


class BinaryData(BaseModel):
    """Event counts and group totals for two arms."""

    model_config = ConfigDict(frozen=True)

    mode: Literal["binary"] = "binary"
    events1: int | None = None
    total1: int | None = None
    events2: int | None = None
    total2: int | None = None


class PrecalculatedData(BaseModel):
    """An effect estimate reported directly by the study.

    ``se`` is the standard error on the pooling scale (log scale for ratio
    measures). With ``natural_scale`` set, ``effect`` and the CI bounds of a
    ratio measure are given untransformed (e.g. OR = 2.1) and are logged
    during normalization.
    """

    model_config = ConfigDict(frozen=True)

    mode: Literal["precalculated"] = "precalculated"
    effect: float | None = None
    se: float | None = None
    ci_lower: float | None = None
    ci_upper: float | None = None
    natural_scale: bool = False


StudyData = Annotated[ContinuousData | BinaryData | PrecalculatedData, Field(discriminator="mode")]


def new_study_id() -> str:
    """Generate a stable identifier for a new study."""
    return f"study_{uuid.uuid4().hex[:8]}"


class StudyRecord(BaseModel):
    """One study's contribution to a meta-analysis."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_study_id)
    name: str
    year: int | None = None
    subgroup: str | None = None
    data: StudyData | None = None
    excluded: bool = False  # Manually excluded from pooling, still listed

    @property
    def display_name(self) -> str:
        """Name with the year appended, as shown in plots."""
        return f"{self.name} ({self.year})" if self.year else self.name

    @property
    def mode(self) -> str | None:
        """Input mode of the raw data, if any."""
        return self.data.mode if self.data is not None else None


class SessionFile(BaseModel):
    """Serializable snapshot of an analysis session."""

    name: str
    measure: EffectMeasure = EffectMeasure.SMD
    method: PoolingMethod = PoolingMethod.RANDOM
    studies: list[StudyRecord] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def from_yaml(cls, path: Path) -> "SessionFile":
        """Load a session from a YAML file."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Studies without an explicit mode get it inferred from their fields
        for study in data.get("studies") or []:
            raw = study.get("data")
            if isinstance(raw, dict) and "mode" not in raw:
                mode = infer_mode(raw)
                if mode is None:
                    study["data"] = None
                else:
                    raw["mode"] = mode

        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save the session to a YAML file."""
        import yaml

        data = self.model_dump(mode="json")
        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


CONTINUOUS_FIELDS = ("n1", "mean1", "sd1", "n2", "mean2", "sd2")
BINARY_FIELDS = ("events1", "total1", "events2", "total2")
PRECALCULATED_FIELDS = ("effect", "se", "ci_lower", "ci_upper")


def infer_mode(fields: dict) -> str | None:
    """Guess the input mode from which fields carry values."""

    def present(names: tuple[str, ...]) -> int:
        return sum(1 for name in names if fields.get(name) not in (None, ""))

    counts = {
        "continuous": present(CONTINUOUS_FIELDS),
        "binary": present(BINARY_FIELDS),
        "precalculated": present(PRECALCULATED_FIELDS),
    }
    mode, count = max(counts.items(), key=lambda item: item[1])
    return mode if count > 0 else None
