"""Effect size calculations for individual studies.

Each calculator returns an estimate on the scale it is pooled on:

- Mean Difference (MD), Standardized Mean Difference (SMD / Hedges' g) and
  Risk Difference (RD) as :class:`LinearEffect`
- Odds Ratio (OR) and Risk Ratio (RR) as :class:`LogScaleEffect`, holding the
  natural log of the ratio and the standard error of that log

Hazard ratios are never derived here; they only enter as pre-calculated
``(lnHR, SE)`` pairs.

No continuity correction is applied. Cell counts that would put a zero in a
denominator or a logarithm raise :class:`UndefinedMeasureError` instead.
"""

import math
from dataclasses import dataclass
from typing import ClassVar

from metacalc.analysis.errors import UndefinedMeasureError


@dataclass(frozen=True)
class EffectEstimate:
    """A point estimate with its standard error on the pooling scale."""

    value: float
    se: float

    log_scale: ClassVar[bool] = False

    @property
    def variance(self) -> float:
        return self.se**2

    def ci(self, z: float = 1.96) -> tuple[float, float]:
        """Confidence interval on the pooling scale."""
        return self.value - z * self.se, self.value + z * self.se

    def natural(self) -> float:
        """Point estimate on the display scale."""
        return self.value

    def natural_ci(self, z: float = 1.96) -> tuple[float, float]:
        """Confidence interval on the display scale."""
        return self.ci(z)


@dataclass(frozen=True)
class LinearEffect(EffectEstimate):
    """Difference measure; pooling and display scales coincide."""


@dataclass(frozen=True)
class LogScaleEffect(EffectEstimate):
    """Ratio measure held as its natural logarithm."""

    log_scale: ClassVar[bool] = True

    def natural(self) -> float:
        return math.exp(self.value)

    def natural_ci(self, z: float = 1.96) -> tuple[float, float]:
        lower, upper = self.ci(z)
        return math.exp(lower), math.exp(upper)


def hedges_correction(n1: int, n2: int) -> float:
    """Small-sample correction factor J for Cohen's d."""
    return 1 - 3 / (4 * (n1 + n2 - 2) - 1)


def mean_difference(mean1: float, sd1: float, n1: int, mean2: float, sd2: float, n2: int) -> LinearEffect:
    """
    Calculate the raw mean difference between two groups.

    Args:
        mean1: Mean of treatment/intervention group
        sd1: Standard deviation of treatment group
        n1: Sample size of treatment group
        mean2: Mean of control/comparison group
        sd2: Standard deviation of control group
        n2: Sample size of control group

    Returns:
        LinearEffect with the mean difference and its standard error
    """
    md = mean1 - mean2
    se = math.sqrt(sd1**2 / n1 + sd2**2 / n2)
    return LinearEffect(value=md, se=se)


def standardized_mean_difference(
    mean1: float, sd1: float, n1: int, mean2: float, sd2: float, n2: int
) -> LinearEffect:
    """
    Calculate the standardized mean difference (Hedges' g).

    Uses the pooled standard deviation and Hedges' small-sample correction.
    The variance of g is the usual large-sample formula scaled by J².

    Returns:
        LinearEffect with Hedges' g and its standard error
    """
    # Pooled standard deviation
    pooled_sd = math.sqrt(((n1 - 1) * sd1**2 + (n2 - 1) * sd2**2) / (n1 + n2 - 2))

    # Cohen's d
    d = (mean1 - mean2) / pooled_sd

    j = hedges_correction(n1, n2)
    g = d * j

    variance = j**2 * ((n1 + n2) / (n1 * n2) + g**2 / (2 * (n1 + n2)))
    return LinearEffect(value=g, se=math.sqrt(variance))


def two_by_two(events1: int, total1: int, events2: int, total2: int) -> tuple[int, int, int, int]:
    """Cells (a, b, c, d) of the 2x2 table from events and totals."""
    return events1, total1 - events1, events2, total2 - events2


def odds_ratio(events1: int, total1: int, events2: int, total2: int, study_id: str = "") -> LogScaleEffect:
    """
    Calculate the log odds ratio between two groups.

    Raises:
        UndefinedMeasureError: If any cell of the 2x2 table is zero
    """
    a, b, c, d = two_by_two(events1, total1, events2, total2)
    zero_cells = [name for name, count in zip("abcd", (a, b, c, d), strict=True) if count == 0]
    if zero_cells:
        raise UndefinedMeasureError(
            study_id,
            f"odds ratio undefined with zero cell(s) {', '.join(zero_cells)}",
            fields=["events1", "total1", "events2", "total2"],
        )

    log_or = math.log((a * d) / (b * c))
    se = math.sqrt(1 / a + 1 / b + 1 / c + 1 / d)
    return LogScaleEffect(value=log_or, se=se)


def risk_ratio(events1: int, total1: int, events2: int, total2: int, study_id: str = "") -> LogScaleEffect:
    """
    Calculate the log risk ratio between two groups.

    Raises:
        UndefinedMeasureError: If either arm has zero events or a zero total, or every
            participant has the event
    """
    a, b, c, d = two_by_two(events1, total1, events2, total2)
    if a == 0 or c == 0:
        raise UndefinedMeasureError(
            study_id,
            "risk ratio undefined with zero events in an arm",
            fields=["events1", "events2"],
        )
    if a + b == 0 or c + d == 0:
        raise UndefinedMeasureError(study_id, "risk ratio undefined with an empty arm", fields=["total1", "total2"])

    p1 = a / (a + b)
    p2 = c / (c + d)
    log_rr = math.log(p1 / p2)
    variance = 1 / a - 1 / (a + b) + 1 / c - 1 / (c + d)
    if variance <= 0:
        # Every participant has the event in both arms
        raise UndefinedMeasureError(
            study_id,
            "risk ratio has zero variance (all participants have events in both arms)",
            fields=["events1", "events2"],
        )
    return LogScaleEffect(value=log_rr, se=math.sqrt(variance))


def risk_difference(events1: int, total1: int, events2: int, total2: int, study_id: str = "") -> LinearEffect:
    """
    Calculate the risk difference between two groups.

    Raises:
        UndefinedMeasureError: If an arm is empty or both binomial variances are zero
    """
    if total1 == 0 or total2 == 0:
        raise UndefinedMeasureError(
            study_id, "risk difference undefined with an empty arm", fields=["total1", "total2"]
        )

    p1 = events1 / total1
    p2 = events2 / total2
    variance = p1 * (1 - p1) / total1 + p2 * (1 - p2) / total2
    if variance <= 0:
        # All-or-none outcomes in both arms give a weight of 1/0
        raise UndefinedMeasureError(
            study_id,
            "risk difference has zero variance (all-or-none events in both arms)",
            fields=["events1", "events2"],
        )
    return LinearEffect(value=p1 - p2, se=math.sqrt(variance))
