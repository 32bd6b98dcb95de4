"""Export functionality for meta-analysis results."""

import csv
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from metacalc.analysis.heterogeneity import interpret_i_squared
from metacalc.analysis.statistics import AnalysisReport, PooledResult

logger = logging.getLogger(__name__)


def _format_p(p_value: float) -> str:
    return "<0.001" if p_value < 0.001 else f"{p_value:.3f}"


def format_summary(report: AnalysisReport, total_studies: int | None = None) -> str:
    """
    Format a plain-text summary of an analysis.

    Args:
        report: Analysis to summarize
        total_studies: Number of studies in the session; defaults to included plus excluded

    Returns:
        Summary text, one statistic per line
    """
    if total_studies is None:
        total_studies = len(report.effects) + len(report.exclusions)

    lines = [
        "Meta-Analysis Results",
        "",
        f"Effect Measure: {report.measure.value}",
        f"Method: {report.method.label}",
        "",
    ]

    pooled = report.pooled
    if pooled is None:
        lines.append(f"Not pooled: {report.message}")
    else:
        lower, upper = pooled.display_ci()
        lines.extend(
            [
                f"Pooled Effect: {pooled.display_effect():.3f}",
                f"95% CI: [{lower:.3f}, {upper:.3f}]",
                f"Z: {pooled.z_statistic:.3f}",
                f"P-value: {_format_p(pooled.p_value)}",
                "",
                "Heterogeneity:",
                f"Q: {pooled.q:.2f} (df={pooled.df}, p={_format_p(pooled.q_p_value)})",
                f"I²: {pooled.i_squared:.1f}% ({interpret_i_squared(pooled.i_squared)})",
                f"τ²: {pooled.tau_squared:.4f}",
            ]
        )

    lines.extend(["", f"Studies: {len(report.effects)} included of {total_studies}"])

    if report.exclusions:
        lines.append("")
        lines.append("Excluded:")
        for exclusion in report.exclusions:
            lines.append(f"- {exclusion.name}: {exclusion.detail}")

    return "\n".join(lines)


def export_summary(report: AnalysisReport, output_path: Path) -> None:
    """Write the text summary of an analysis."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(format_summary(report) + "\n", encoding="utf-8")
    logger.info("Exported summary to %s", output_path)


def report_to_dict(report: AnalysisReport, z_crit: float = 1.96) -> dict[str, Any]:
    """Plain-data form of a report, with per-study values on both scales."""
    pooled = report.pooled
    weights = pooled.weights if pooled is not None else {}

    studies = []
    for effect in report.effects:
        lower, upper = effect.estimate.natural_ci(z_crit)
        studies.append(
            {
                "id": effect.study_id,
                "name": effect.name,
                "subgroup": effect.subgroup,
                "effect": effect.effect,
                "se": effect.se,
                "display_effect": effect.estimate.natural(),
                "display_ci_lower": lower,
                "display_ci_upper": upper,
                "weight": weights.get(effect.study_id),
            }
        )

    return {
        "analysis": report.key,
        "status": report.status.value,
        "effect_measure": report.measure.value,
        "pooling_method": report.method.value,
        "message": report.message,
        "pooled": pooled.to_dict() if pooled is not None else None,
        "studies": studies,
        "excluded": [exclusion.model_dump(mode="json") for exclusion in report.exclusions],
    }


def export_json(report: AnalysisReport, output_path: Path, z_crit: float = 1.96) -> None:
    """
    Export an analysis to JSON.

    Args:
        report: Analysis to export
        output_path: Path to write the JSON file
        z_crit: Critical value for the per-study confidence intervals
    """
    data = report_to_dict(report, z_crit)
    data["generated_at"] = datetime.now().isoformat()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump(data, f, indent=2, default=str)

    logger.info("Exported analysis to JSON: %s", output_path)


def export_studies_csv(report: AnalysisReport, output_path: Path, z_crit: float = 1.96) -> None:
    """Export per-study effects and weights to CSV, one row per included study."""
    fieldnames = [
        "id",
        "name",
        "subgroup",
        "effect",
        "se",
        "display_effect",
        "display_ci_lower",
        "display_ci_upper",
        "weight",
    ]

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in report_to_dict(report, z_crit)["studies"]:
            writer.writerow(row)

    logger.info("Exported %d study effects to CSV: %s", len(report.effects), output_path)


def _sensitivity_row(name: str, pooled: PooledResult | None, message: str) -> dict[str, Any]:
    if pooled is None:
        return {"omitted": name, "note": message}
    lower, upper = pooled.display_ci()
    return {
        "omitted": name,
        "pooled_effect": pooled.display_effect(),
        "ci_lower": lower,
        "ci_upper": upper,
        "p_value": pooled.p_value,
        "i_squared": pooled.i_squared,
        "tau_squared": pooled.tau_squared,
        "note": "",
    }


def export_sensitivity_csv(reports: dict[str, AnalysisReport], names: dict[str, str], output_path: Path) -> None:
    """
    Export a leave-one-out analysis to CSV.

    Args:
        reports: Study id -> report of the analysis without that study
        names: Study id -> display name
        output_path: Path to write the CSV file
    """
    fieldnames = ["omitted", "pooled_effect", "ci_lower", "ci_upper", "p_value", "i_squared", "tau_squared", "note"]

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for study_id, report in reports.items():
            writer.writerow(_sensitivity_row(names.get(study_id, study_id), report.pooled, report.message))

    logger.info("Exported leave-one-out analysis to CSV: %s", output_path)
