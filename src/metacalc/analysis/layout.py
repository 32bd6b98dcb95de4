"""Plot geometry for forest and funnel plots.

The generators here only lay values out; they never change scale. Callers
pass display-scale values (exponentiated for ratio measures). The
``*_from_report`` helpers do that conversion for an :class:`AnalysisReport`.
"""

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace

import numpy as np

from metacalc.analysis.statistics import AnalysisReport
from metacalc.models import PoolingMethod


@dataclass(frozen=True)
class StudyInterval:
    """A study's estimate and interval as it should be drawn."""

    label: str
    effect: float
    ci_lower: float
    ci_upper: float
    weight: float  # Percentage


@dataclass(frozen=True)
class ForestRow:
    label: str
    effect: float
    ci_lower: float
    ci_upper: float
    weight: float
    marker_size: float  # Proportional to weight
    y: float


@dataclass(frozen=True)
class Diamond:
    """Pooled-estimate diamond; horizontal extent is the pooled CI."""

    center: float
    left: float
    right: float
    y: float
    half_height: float

    def vertices(self) -> list[tuple[float, float]]:
        """Closed outline: left, top, right, bottom, back to left."""
        return [
            (self.left, self.y),
            (self.center, self.y + self.half_height),
            (self.right, self.y),
            (self.center, self.y - self.half_height),
            (self.left, self.y),
        ]


@dataclass(frozen=True)
class AxisScale:
    minimum: float
    maximum: float
    log: bool = False


@dataclass(frozen=True)
class ForestLayout:
    rows: tuple[ForestRow, ...]
    diamond: Diamond
    null_value: float  # x of the vertical reference line
    axis: AxisScale
    summary_label: str = "Overall"
    axis_label: str = ""


@dataclass(frozen=True)
class FunnelPoint:
    label: str
    effect: float
    se: float


@dataclass(frozen=True)
class FunnelLayout:
    points: tuple[FunnelPoint, ...]
    pooled_effect: float  # x of the vertical line
    lower_boundary: tuple[tuple[float, float], ...]  # (effect, se) pairs from se=0 to max
    upper_boundary: tuple[tuple[float, float], ...]
    max_se: float
    log_axis: bool = False
    axis_label: str = ""

    def map_effects(self, fn: Callable[[float], float], log_axis: bool | None = None) -> "FunnelLayout":
        """Apply ``fn`` to every x coordinate, keeping SEs unchanged."""
        return replace(
            self,
            points=tuple(replace(p, effect=fn(p.effect)) for p in self.points),
            pooled_effect=fn(self.pooled_effect),
            lower_boundary=tuple((fn(x), se) for x, se in self.lower_boundary),
            upper_boundary=tuple((fn(x), se) for x, se in self.upper_boundary),
            log_axis=self.log_axis if log_axis is None else log_axis,
        )


def _axis_scale(values: Sequence[float], log: bool, padding: float) -> AxisScale:
    finite = [v for v in values if math.isfinite(v) and (v > 0 or not log)]
    if not finite:
        kind = "positive finite" if log else "finite"
        raise ValueError(f"Cannot scale a {'log' if log else 'linear'} axis: no {kind} values")
    if log:
        logs = [math.log(v) for v in finite]
        low, high = min(logs), max(logs)
        pad = (high - low) * padding or padding
        return AxisScale(minimum=math.exp(low - pad), maximum=math.exp(high + pad), log=True)

    low, high = min(finite), max(finite)
    pad = (high - low) * padding or padding
    return AxisScale(minimum=low - pad, maximum=high + pad, log=False)


def forest_layout(
    studies: Sequence[StudyInterval],
    pooled_effect: float,
    pooled_ci: tuple[float, float],
    null_value: float,
    log_axis: bool = False,
    summary_label: str = "Overall",
    axis_label: str = "",
    max_marker_size: float = 12.0,
    diamond_height: float = 0.4,
    padding: float = 0.1,
) -> ForestLayout:
    """
    Lay out a forest plot.

    Studies occupy rows from the top (y = n) down to y = 1 in input order;
    the pooled diamond sits at y = 0.

    Args:
        studies: Display-scale estimates, intervals and percentage weights
        pooled_effect: Display-scale pooled estimate
        pooled_ci: Display-scale pooled confidence interval
        null_value: Value of no effect (0 for differences, 1 for ratios)
        log_axis: Whether the x axis should be drawn on a log scale
        summary_label: Label of the pooled row
        axis_label: Label of the x axis
        max_marker_size: Marker size given to the heaviest study
        diamond_height: Full height of the pooled diamond
        padding: Fraction of the data range added to each side of the axis

    Returns:
        ForestLayout ready for a renderer
    """
    n = len(studies)
    max_weight = max((s.weight for s in studies), default=0.0)

    rows = tuple(
        ForestRow(
            label=s.label,
            effect=s.effect,
            ci_lower=s.ci_lower,
            ci_upper=s.ci_upper,
            weight=s.weight,
            marker_size=max_marker_size * s.weight / max_weight if max_weight > 0 else 0.0,
            y=float(n - i),
        )
        for i, s in enumerate(studies)
    )

    lower, upper = pooled_ci
    diamond = Diamond(center=pooled_effect, left=lower, right=upper, y=0.0, half_height=diamond_height / 2)

    values = [v for s in studies for v in (s.ci_lower, s.ci_upper)] + [lower, upper, null_value]
    axis = _axis_scale(values, log_axis, padding)

    return ForestLayout(
        rows=rows,
        diamond=diamond,
        null_value=null_value,
        axis=axis,
        summary_label=summary_label,
        axis_label=axis_label,
    )


def funnel_layout(
    points: Sequence[FunnelPoint],
    pooled_effect: float,
    z: float = 1.96,
    steps: int = 50,
    axis_label: str = "",
) -> FunnelLayout:
    """
    Lay out a funnel plot with its pseudo 95% confidence region.

    Each boundary is ``pooled_effect -/+ z * SE`` for SE running from 0 to
    the largest observed SE.
    """
    if not points:
        raise ValueError("No points to lay out")

    max_se = max(p.se for p in points)
    se_range = np.linspace(0.0, max_se, max(steps, 2))

    lower = tuple((float(pooled_effect - z * se), float(se)) for se in se_range)
    upper = tuple((float(pooled_effect + z * se), float(se)) for se in se_range)

    return FunnelLayout(
        points=tuple(points),
        pooled_effect=pooled_effect,
        lower_boundary=lower,
        upper_boundary=upper,
        max_se=float(max_se),
        axis_label=axis_label,
    )


def _summary_label(report: AnalysisReport) -> str:
    return "RE Model" if report.method == PoolingMethod.RANDOM else "FE Model"


def forest_layout_from_report(report: AnalysisReport, z: float = 1.96) -> ForestLayout:
    """Back-transform a report's canonical values and lay out its forest plot."""
    pooled = report.pooled
    if pooled is None:
        raise ValueError(f"Analysis {report.key} has no pooled result: {report.message}")

    studies = []
    for effect in report.effects:
        lower, upper = effect.estimate.natural_ci(z)
        studies.append(
            StudyInterval(
                label=effect.name,
                effect=effect.estimate.natural(),
                ci_lower=lower,
                ci_upper=upper,
                weight=pooled.weights[effect.study_id],
            )
        )

    axis_label = report.measure.value + (" (log scale)" if report.measure.is_ratio else "")
    return forest_layout(
        studies,
        pooled_effect=pooled.display_effect(),
        pooled_ci=pooled.display_ci(),
        null_value=report.measure.null_value,
        log_axis=report.measure.is_ratio,
        summary_label=_summary_label(report),
        axis_label=axis_label,
    )


def funnel_layout_from_report(report: AnalysisReport, z: float = 1.96, steps: int = 50) -> FunnelLayout:
    """
    Lay out a report's funnel plot.

    The funnel is built where SEs live (the log scale for ratio measures)
    and its x coordinates are exponentiated afterwards, so ratio funnels are
    straight on a log axis.
    """
    pooled = report.pooled
    if pooled is None:
        raise ValueError(f"Analysis {report.key} has no pooled result: {report.message}")

    points = [FunnelPoint(label=e.name, effect=e.effect, se=e.se) for e in report.effects]
    layout = funnel_layout(points, pooled.pooled_effect, z=z, steps=steps, axis_label=report.measure.value)
    if report.measure.is_ratio:
        return layout.map_effects(math.exp, log_axis=True)
    return layout
