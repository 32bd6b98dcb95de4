"""Meta-analysis engine: effect sizes, pooling, heterogeneity and plot layout."""

from metacalc.analysis.effect_sizes import EffectEstimate, LinearEffect, LogScaleEffect
from metacalc.analysis.errors import (
    ExclusionReason,
    InsufficientDataError,
    InsufficientStudiesError,
    MetaAnalysisError,
    NumericGuardError,
    UndefinedMeasureError,
)
from metacalc.analysis.heterogeneity import Heterogeneity, SubgroupTest, analyze_heterogeneity, interpret_i_squared
from metacalc.analysis.layout import (
    ForestLayout,
    FunnelLayout,
    forest_layout,
    forest_layout_from_report,
    funnel_layout,
    funnel_layout_from_report,
)
from metacalc.analysis.normalizer import StudyEffect, StudyExclusion, normalize_studies, normalize_study
from metacalc.analysis.plots import ForestPlot, FunnelPlot
from metacalc.analysis.session import AnalysisSession, SubgroupAnalysis
from metacalc.analysis.statistics import AnalysisReport, AnalysisStatus, MetaAnalysis, PooledResult, run_analysis

__all__ = [
    # Effect sizes
    "EffectEstimate",
    "LinearEffect",
    "LogScaleEffect",
    # Errors
    "ExclusionReason",
    "InsufficientDataError",
    "InsufficientStudiesError",
    "MetaAnalysisError",
    "NumericGuardError",
    "UndefinedMeasureError",
    # Normalization
    "StudyEffect",
    "StudyExclusion",
    "normalize_studies",
    "normalize_study",
    # Heterogeneity
    "Heterogeneity",
    "SubgroupTest",
    "analyze_heterogeneity",
    "interpret_i_squared",
    # Pooling
    "AnalysisReport",
    "AnalysisStatus",
    "MetaAnalysis",
    "PooledResult",
    "run_analysis",
    # Session
    "AnalysisSession",
    "SubgroupAnalysis",
    # Plots
    "ForestLayout",
    "FunnelLayout",
    "forest_layout",
    "forest_layout_from_report",
    "funnel_layout",
    "funnel_layout_from_report",
    "ForestPlot",
    "FunnelPlot",
]
