"""Between-study heterogeneity statistics.

Cochran's Q is always computed with fixed-effect (inverse-variance) weights,
whichever model is pooled afterwards. tau² is the DerSimonian-Laird
moment estimator that the random-effects model adds to each study variance.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from scipy import stats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Heterogeneity:
    """Heterogeneity statistics for one set of studies."""

    q: float  # Cochran's Q
    df: int  # k - 1
    q_p_value: float  # P(chi2_df >= Q)
    i_squared: float  # Percentage, 0-100
    tau_squared: float  # Between-study variance, >= 0

    @property
    def interpretation(self) -> str:
        return interpret_i_squared(self.i_squared)


@dataclass(frozen=True)
class SubgroupTest:
    """Test for differences between subgroup pooled estimates."""

    q_between: float
    df: int
    p_value: float
    n_subgroups: int


def interpret_i_squared(i_squared: float) -> str:
    """Describe I² using the Cochrane handbook bands."""
    if i_squared < 25:
        return "low"
    if i_squared < 50:
        return "moderate"
    if i_squared < 75:
        return "substantial"
    return "considerable"


def cochran_q(effects: np.ndarray, weights: np.ndarray) -> float:
    """Weighted sum of squared deviations from the weighted mean."""
    pooled = np.sum(weights * effects) / np.sum(weights)
    return float(np.sum(weights * (effects - pooled) ** 2))


def analyze_heterogeneity(effects: Sequence[float], variances: Sequence[float]) -> Heterogeneity:
    """
    Compute Q, its p-value, I² and the DerSimonian-Laird tau².

    Args:
        effects: Per-study effects on the pooling scale
        variances: Per-study variances, all positive

    Returns:
        Heterogeneity with I² clamped to [0, 100] and tau² clamped at 0
    """
    y = np.asarray(effects, dtype=float)
    v = np.asarray(variances, dtype=float)
    if len(y) == 0:
        raise ValueError("No effects to analyze")

    weights = 1.0 / v
    k = len(y)
    df = k - 1

    q = cochran_q(y, weights)
    q_p_value = float(stats.chi2.sf(q, df)) if df > 0 else 1.0

    # Q below its expectation means no excess variation
    i_squared = max(0.0, (q - df) / q * 100) if q > 0 else 0.0
    i_squared = min(i_squared, 100.0)

    sum_w = np.sum(weights)
    c = float(sum_w - np.sum(weights**2) / sum_w)
    tau_squared = max(0.0, (q - df) / c) if c > 0 else 0.0

    logger.debug("Heterogeneity over %d studies: Q=%.4f, I2=%.2f, tau2=%.5f", k, q, i_squared, tau_squared)

    return Heterogeneity(
        q=q,
        df=df,
        q_p_value=q_p_value,
        i_squared=float(i_squared),
        tau_squared=float(tau_squared),
    )


def subgroup_difference(estimates: Sequence[float], standard_errors: Sequence[float]) -> SubgroupTest:
    """
    Test whether subgroup pooled estimates differ more than chance allows.

    Treats each subgroup's pooled estimate as a single study and computes
    Cochran's Q across them with fixed-effect weights.

    Args:
        estimates: Pooled effect of each subgroup
        standard_errors: Standard error of each subgroup's pooled effect

    Returns:
        SubgroupTest with Q-between, df = subgroups - 1 and chi-square p-value
    """
    y = np.asarray(estimates, dtype=float)
    se = np.asarray(standard_errors, dtype=float)
    if len(y) < 2:
        raise ValueError("Need at least 2 subgroups to test for differences")

    q_between = cochran_q(y, 1.0 / se**2)
    df = len(y) - 1
    return SubgroupTest(
        q_between=q_between,
        df=df,
        p_value=float(stats.chi2.sf(q_between, df)),
        n_subgroups=len(y),
    )
