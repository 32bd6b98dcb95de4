"""Pooling of study effects for meta-analysis.

Pooling methods:
- Fixed effect (inverse-variance weighted)
- Random effects (DerSimonian-Laird)

All arithmetic happens on the canonical scale (natural log for OR, RR and
HR). Results keep that scale; ``PooledResult.display_effect`` and
``display_ci`` back-transform for presentation.
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

import numpy as np
from scipy import stats

from metacalc.analysis.errors import InsufficientStudiesError, NumericGuardError
from metacalc.analysis.heterogeneity import Heterogeneity, analyze_heterogeneity
from metacalc.analysis.normalizer import StudyEffect, StudyExclusion, normalize_studies
from metacalc.models import EffectMeasure, PoolingMethod, StudyRecord

logger = logging.getLogger(__name__)

MIN_STUDIES = 2


@dataclass(frozen=True)
class PooledResult:
    """Result of one pooling run. Never mutated; the next run supersedes it."""

    pooled_effect: float  # Canonical scale
    pooled_se: float
    ci_lower: float
    ci_upper: float
    z_statistic: float
    p_value: float  # Two-tailed
    q: float  # Cochran's Q (fixed-effect weights)
    df: int
    q_p_value: float
    i_squared: float  # 0-100%
    tau_squared: float  # DerSimonian-Laird, >= 0
    weights: Mapping[str, float]  # Study id -> percentage weight
    raw_weights: Mapping[str, float]  # Study id -> weight used in pooling
    method: PoolingMethod
    measure: EffectMeasure
    n_studies: int

    @property
    def log_scale(self) -> bool:
        return self.measure.is_ratio

    @property
    def pooled_variance(self) -> float:
        return self.pooled_se**2

    def display_effect(self) -> float:
        """Pooled effect on the natural scale."""
        return math.exp(self.pooled_effect) if self.log_scale else self.pooled_effect

    def display_ci(self) -> tuple[float, float]:
        """Confidence interval on the natural scale."""
        if self.log_scale:
            return math.exp(self.ci_lower), math.exp(self.ci_upper)
        return self.ci_lower, self.ci_upper

    def to_dict(self) -> dict[str, Any]:
        """Plain-data representation for export and storage."""
        display_lower, display_upper = self.display_ci()
        return {
            "effect_measure": self.measure.value,
            "pooling_method": self.method.value,
            "n_studies": self.n_studies,
            "pooled_effect": self.pooled_effect,
            "pooled_se": self.pooled_se,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "display_effect": self.display_effect(),
            "display_ci_lower": display_lower,
            "display_ci_upper": display_upper,
            "z_statistic": self.z_statistic,
            "p_value": self.p_value,
            "q": self.q,
            "df": self.df,
            "q_p_value": self.q_p_value,
            "i_squared": self.i_squared,
            "tau_squared": self.tau_squared,
            "weights": dict(self.weights),
        }


class AnalysisStatus(str, Enum):
    """Outcome of an analysis run."""

    OK = "ok"
    INSUFFICIENT_STUDIES = "insufficient_studies"


@dataclass(frozen=True)
class AnalysisReport:
    """Everything one pipeline run produced for an analysis key."""

    key: str
    measure: EffectMeasure
    method: PoolingMethod
    status: AnalysisStatus
    pooled: PooledResult | None
    effects: tuple[StudyEffect, ...] = ()
    exclusions: tuple[StudyExclusion, ...] = ()
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status == AnalysisStatus.OK and self.pooled is not None

    @property
    def included_ids(self) -> list[str]:
        return [effect.study_id for effect in self.effects]


class MetaAnalysis:
    """Performs statistical meta-analysis calculations."""

    @staticmethod
    def _combine(
        effects: list[StudyEffect],
        weights: np.ndarray,
        heterogeneity: Heterogeneity,
        method: PoolingMethod,
        measure: EffectMeasure,
        z_crit: float,
    ) -> PooledResult:
        """Weighted average of effects and its inference."""
        values = np.array([e.effect for e in effects], dtype=float)
        total_weight = float(np.sum(weights))

        pooled = float(np.sum(weights * values) / total_weight)
        variance = 1.0 / total_weight
        if not (math.isfinite(pooled) and math.isfinite(variance)) or variance <= 0:
            raise NumericGuardError(f"Pooling produced invalid estimate {pooled} with variance {variance}")
        se = math.sqrt(variance)

        # Significance test
        z = pooled / se
        p_value = 2 * (1 - stats.norm.cdf(abs(z)))

        ids = [e.study_id for e in effects]
        raw = {study_id: float(w) for study_id, w in zip(ids, weights, strict=True)}
        percent = {study_id: float(w / total_weight * 100) for study_id, w in zip(ids, weights, strict=True)}

        return PooledResult(
            pooled_effect=pooled,
            pooled_se=se,
            ci_lower=pooled - z_crit * se,
            ci_upper=pooled + z_crit * se,
            z_statistic=float(z),
            p_value=float(p_value),
            q=heterogeneity.q,
            df=heterogeneity.df,
            q_p_value=heterogeneity.q_p_value,
            i_squared=heterogeneity.i_squared,
            tau_squared=heterogeneity.tau_squared,
            weights=MappingProxyType(percent),
            raw_weights=MappingProxyType(raw),
            method=method,
            measure=measure,
            n_studies=len(effects),
        )

    @staticmethod
    def _check_effects(effects: list[StudyEffect]) -> np.ndarray:
        if len(effects) < MIN_STUDIES:
            raise InsufficientStudiesError(len(effects))
        variances = np.array([e.variance for e in effects], dtype=float)
        if not np.all(np.isfinite(variances)) or np.any(variances <= 0):
            raise NumericGuardError("Study variances must be positive and finite")
        return variances

    @staticmethod
    def fixed_effects(
        effects: list[StudyEffect],
        measure: EffectMeasure = EffectMeasure.MD,
        z_crit: float = 1.96,
    ) -> PooledResult:
        """
        Inverse-variance weighted fixed effect meta-analysis.

        Args:
            effects: Canonical study effects
            measure: Effect measure the effects were computed for
            z_crit: Critical value for the confidence interval

        Returns:
            PooledResult with pooled estimate and heterogeneity statistics

        Raises:
            InsufficientStudiesError: If fewer than 2 effects are given
        """
        variances = MetaAnalysis._check_effects(effects)
        heterogeneity = analyze_heterogeneity([e.effect for e in effects], variances)
        weights = 1.0 / variances
        return MetaAnalysis._combine(effects, weights, heterogeneity, PoolingMethod.FIXED, measure, z_crit)

    @staticmethod
    def random_effects(
        effects: list[StudyEffect],
        measure: EffectMeasure = EffectMeasure.MD,
        z_crit: float = 1.96,
    ) -> PooledResult:
        """
        DerSimonian-Laird random effects meta-analysis.

        tau² comes from the heterogeneity analysis and is added to every
        study variance before weighting.

        Raises:
            InsufficientStudiesError: If fewer than 2 effects are given
        """
        variances = MetaAnalysis._check_effects(effects)
        heterogeneity = analyze_heterogeneity([e.effect for e in effects], variances)
        weights = 1.0 / (variances + heterogeneity.tau_squared)
        return MetaAnalysis._combine(effects, weights, heterogeneity, PoolingMethod.RANDOM, measure, z_crit)

    @staticmethod
    def pool(
        effects: list[StudyEffect],
        method: PoolingMethod = PoolingMethod.RANDOM,
        measure: EffectMeasure = EffectMeasure.MD,
        z_crit: float = 1.96,
    ) -> PooledResult:
        """
        Pool effect sizes using the specified method.

        Args:
            effects: Canonical study effects
            method: Pooling method (fixed or random effects)
            measure: Effect measure the effects were computed for
            z_crit: Critical value for the confidence interval

        Returns:
            PooledResult with pooled estimate
        """
        if method == PoolingMethod.FIXED:
            return MetaAnalysis.fixed_effects(effects, measure, z_crit)
        return MetaAnalysis.random_effects(effects, measure, z_crit)


def run_analysis(
    studies: list[StudyRecord],
    measure: EffectMeasure,
    method: PoolingMethod,
    key: str = "main",
    z_crit: float = 1.96,
) -> AnalysisReport:
    """
    Normalize, analyze and pool a set of studies.

    Per-study failures are reported as exclusions. Fewer than 2 computable
    studies yields an ``insufficient_studies`` report without a pooled result.

    Raises:
        NumericGuardError: If pooling produces non-finite values
    """
    effects, exclusions = normalize_studies(studies, measure, z_crit)

    try:
        pooled = MetaAnalysis.pool(effects, method, measure, z_crit)
    except InsufficientStudiesError:
        error = InsufficientStudiesError(len(effects), [x.study_id for x in exclusions])
        logger.info("Analysis %s not pooled: %s", key, error)
        return AnalysisReport(
            key=key,
            measure=measure,
            method=method,
            status=AnalysisStatus.INSUFFICIENT_STUDIES,
            pooled=None,
            effects=tuple(effects),
            exclusions=tuple(exclusions),
            message=str(error),
        )

    logger.info(
        "Analysis %s pooled %d studies (%s, %s), %d excluded",
        key,
        pooled.n_studies,
        measure.value,
        method.value,
        len(exclusions),
    )
    return AnalysisReport(
        key=key,
        measure=measure,
        method=method,
        status=AnalysisStatus.OK,
        pooled=pooled,
        effects=tuple(effects),
        exclusions=tuple(exclusions),
    )
