"""Normalization of raw study data into canonical (effect, variance) pairs."""

import logging
import math
from dataclasses import dataclass

from pydantic import BaseModel, Field

from metacalc.analysis import effect_sizes
from metacalc.analysis.effect_sizes import EffectEstimate, LinearEffect, LogScaleEffect
from metacalc.analysis.errors import ExclusionReason, InsufficientDataError
from metacalc.models import (
    BINARY_FIELDS,
    CONTINUOUS_FIELDS,
    BinaryData,
    ContinuousData,
    EffectMeasure,
    PrecalculatedData,
    StudyRecord,
)

logger = logging.getLogger(__name__)

CONTINUOUS_MEASURES = (EffectMeasure.SMD, EffectMeasure.MD)
BINARY_MEASURES = (EffectMeasure.OR, EffectMeasure.RR, EffectMeasure.RD)


@dataclass(frozen=True)
class StudyEffect:
    """A study's effect on the canonical pooling scale."""

    study_id: str
    name: str
    estimate: EffectEstimate
    subgroup: str | None = None

    @property
    def effect(self) -> float:
        return self.estimate.value

    @property
    def se(self) -> float:
        return self.estimate.se

    @property
    def variance(self) -> float:
        return self.estimate.variance

    @property
    def log_scale(self) -> bool:
        return self.estimate.log_scale


class StudyExclusion(BaseModel):
    """A study left out of pooling and why."""

    study_id: str
    name: str
    reason: ExclusionReason
    detail: str
    fields: list[str] = Field(default_factory=list)

    @classmethod
    def from_error(cls, study: StudyRecord, error: InsufficientDataError) -> "StudyExclusion":
        return cls(
            study_id=study.id,
            name=study.display_name,
            reason=error.reason,
            detail=error.detail,
            fields=error.fields,
        )


def _missing(data: BaseModel, names: tuple[str, ...]) -> list[str]:
    return [name for name in names if getattr(data, name) is None]


def _check_finite(study_id: str, data: BaseModel, names: tuple[str, ...]) -> None:
    bad = [name for name in names if getattr(data, name) is not None and not math.isfinite(getattr(data, name))]
    if bad:
        raise InsufficientDataError(study_id, ExclusionReason.INVALID_VALUE, "non-finite value", bad)


def _check_measure(study: StudyRecord, measure: EffectMeasure, allowed: tuple[EffectMeasure, ...]) -> None:
    if measure not in allowed:
        raise InsufficientDataError(
            study.id,
            ExclusionReason.MEASURE_MISMATCH,
            f"{study.mode} data cannot produce {measure.value}",
        )


def _normalize_continuous(study: StudyRecord, data: ContinuousData, measure: EffectMeasure) -> EffectEstimate:
    _check_measure(study, measure, CONTINUOUS_MEASURES)

    missing = _missing(data, CONTINUOUS_FIELDS)
    if missing:
        raise InsufficientDataError(study.id, ExclusionReason.MISSING_DATA, "missing continuous fields", missing)
    _check_finite(study.id, data, CONTINUOUS_FIELDS)

    n1, n2 = data.n1, data.n2
    sd1, sd2 = data.sd1, data.sd2

    bad_n = [name for name, n in (("n1", n1), ("n2", n2)) if n <= 0]
    if bad_n:
        raise InsufficientDataError(study.id, ExclusionReason.INVALID_VALUE, "sample sizes must be positive", bad_n)
    bad_sd = [name for name, sd in (("sd1", sd1), ("sd2", sd2)) if sd <= 0]
    if bad_sd:
        raise InsufficientDataError(
            study.id, ExclusionReason.INVALID_VALUE, "standard deviations must be positive", bad_sd
        )

    if measure == EffectMeasure.MD:
        return effect_sizes.mean_difference(data.mean1, sd1, n1, data.mean2, sd2, n2)

    if n1 + n2 <= 2:
        raise InsufficientDataError(
            study.id, ExclusionReason.INVALID_VALUE, "SMD needs more than 2 participants in total", ["n1", "n2"]
        )
    return effect_sizes.standardized_mean_difference(data.mean1, sd1, n1, data.mean2, sd2, n2)


def _normalize_binary(study: StudyRecord, data: BinaryData, measure: EffectMeasure) -> EffectEstimate:
    _check_measure(study, measure, BINARY_MEASURES)

    missing = _missing(data, BINARY_FIELDS)
    if missing:
        raise InsufficientDataError(study.id, ExclusionReason.MISSING_DATA, "missing binary fields", missing)

    events1, total1, events2, total2 = data.events1, data.total1, data.events2, data.total2

    bad_totals = [name for name, total in (("total1", total1), ("total2", total2)) if total <= 0]
    if bad_totals:
        raise InsufficientDataError(
            study.id, ExclusionReason.INVALID_VALUE, "group totals must be positive", bad_totals
        )
    bad_events = [
        name
        for name, events, total in (("events1", events1, total1), ("events2", events2, total2))
        if events < 0 or events > total
    ]
    if bad_events:
        raise InsufficientDataError(
            study.id, ExclusionReason.INVALID_VALUE, "events must lie between 0 and the group total", bad_events
        )

    if measure == EffectMeasure.OR:
        return effect_sizes.odds_ratio(events1, total1, events2, total2, study_id=study.id)
    if measure == EffectMeasure.RR:
        return effect_sizes.risk_ratio(events1, total1, events2, total2, study_id=study.id)
    return effect_sizes.risk_difference(events1, total1, events2, total2, study_id=study.id)


def _normalize_precalculated(
    study: StudyRecord, data: PrecalculatedData, measure: EffectMeasure, z: float
) -> EffectEstimate:
    if data.effect is None:
        raise InsufficientDataError(study.id, ExclusionReason.MISSING_DATA, "missing effect estimate", ["effect"])
    has_ci = data.ci_lower is not None and data.ci_upper is not None
    if data.se is None and not has_ci:
        raise InsufficientDataError(
            study.id, ExclusionReason.MISSING_DATA, "missing standard error or confidence interval", ["se"]
        )
    _check_finite(study.id, data, ("effect", "se", "ci_lower", "ci_upper"))

    effect = data.effect
    ci_lower, ci_upper = data.ci_lower, data.ci_upper

    if data.natural_scale and measure.is_ratio:
        ratio_values = [("effect", effect), ("ci_lower", ci_lower), ("ci_upper", ci_upper)]
        non_positive = [name for name, value in ratio_values if value is not None and value <= 0]
        if non_positive:
            raise InsufficientDataError(
                study.id, ExclusionReason.INVALID_VALUE, "ratio values must be positive", non_positive
            )
        effect = math.log(effect)
        ci_lower = math.log(ci_lower) if ci_lower is not None else None
        ci_upper = math.log(ci_upper) if ci_upper is not None else None

    se = data.se
    if se is None:
        se = (ci_upper - ci_lower) / (2 * z)
    if se <= 0:
        raise InsufficientDataError(
            study.id, ExclusionReason.INVALID_VALUE, "standard error must be positive", ["se", "ci_lower", "ci_upper"]
        )

    if measure.is_ratio:
        return LogScaleEffect(value=effect, se=se)
    return LinearEffect(value=effect, se=se)


def normalize_study(study: StudyRecord, measure: EffectMeasure, z: float = 1.96) -> StudyEffect:
    """
    Convert one study's raw data into its canonical effect for a measure.

    Args:
        study: The study to normalize
        measure: Effect measure chosen for the analysis
        z: Critical value used when a standard error is derived from CI bounds

    Returns:
        StudyEffect on the pooling scale (log scale for OR, RR, HR)

    Raises:
        InsufficientDataError: If the study cannot produce the measure
    """
    data = study.data
    if data is None:
        raise InsufficientDataError(study.id, ExclusionReason.NO_DATA, "no effect data entered")

    if isinstance(data, ContinuousData):
        estimate = _normalize_continuous(study, data, measure)
    elif isinstance(data, BinaryData):
        estimate = _normalize_binary(study, data, measure)
    else:
        estimate = _normalize_precalculated(study, data, measure, z)

    return StudyEffect(study_id=study.id, name=study.display_name, estimate=estimate, subgroup=study.subgroup)


def normalize_studies(
    studies: list[StudyRecord],
    measure: EffectMeasure,
    z: float = 1.96,
) -> tuple[list[StudyEffect], list[StudyExclusion]]:
    """
    Normalize every study, collecting failures instead of raising.

    Returns:
        Computable effects in input order, and one exclusion per study left out
    """
    effects: list[StudyEffect] = []
    exclusions: list[StudyExclusion] = []

    for study in studies:
        if study.excluded:
            exclusions.append(
                StudyExclusion(
                    study_id=study.id,
                    name=study.display_name,
                    reason=ExclusionReason.USER_EXCLUDED,
                    detail="excluded by reviewer",
                )
            )
            continue
        try:
            effects.append(normalize_study(study, measure, z))
        except InsufficientDataError as e:
            logger.info("Excluding %s from %s pooling: %s", study.id, measure.value, e.detail)
            exclusions.append(StudyExclusion.from_error(study, e))

    return effects, exclusions
