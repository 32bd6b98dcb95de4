"""Forest and funnel plot rendering for meta-analysis results."""

import logging
from pathlib import Path

import matplotlib.pyplot as plt
from matplotlib.figure import Figure

from metacalc.analysis.layout import ForestLayout, FunnelLayout
from metacalc.analysis.statistics import PooledResult

logger = logging.getLogger(__name__)


def _format_effect(value: float) -> str:
    return f"{value:.2f}"


def _format_p(p_value: float) -> str:
    return "p < 0.001" if p_value < 0.001 else f"p = {p_value:.3f}"


def save_figure(fig: Figure, path: Path, dpi: int = 300) -> None:
    """
    Save a figure to a file and close it.

    Args:
        fig: Matplotlib Figure to save
        path: Output file path (supports .svg, .png, .pdf)
        dpi: Resolution for raster formats
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    logger.info("Saved plot to %s", path)
    plt.close(fig)


class ForestPlot:
    """Draws a forest plot from a precomputed :class:`ForestLayout`.

    Studies are drawn as squares sized by weight with confidence interval
    lines, the pooled effect as a diamond at the bottom, and the line of no
    effect as a dashed vertical line.
    """

    def __init__(
        self,
        show_weights: bool = True,
        show_heterogeneity: bool = True,
        figsize: tuple[float, float] | None = None,
    ) -> None:
        """
        Initialize the forest plot renderer.

        Args:
            show_weights: Whether to show study weights
            show_heterogeneity: Whether to show heterogeneity statistics
            figsize: Figure size (width, height) in inches. If None, auto-calculated.
        """
        self.show_weights = show_weights
        self.show_heterogeneity = show_heterogeneity
        self.figsize = figsize

    def create(self, layout: ForestLayout, pooled: PooledResult | None = None, title: str = "Forest Plot") -> Figure:
        """
        Create a forest plot figure.

        Args:
            layout: Forest plot geometry on the display scale
            pooled: Pooled result, used for the heterogeneity footer
            title: Plot title

        Returns:
            Matplotlib Figure object
        """
        n_studies = len(layout.rows)

        if self.figsize:
            fig_width, fig_height = self.figsize
        else:
            fig_height = max(6, n_studies * 0.4 + 3)
            fig_width = 12

        fig, ax = plt.subplots(figsize=(fig_width, fig_height))

        if layout.axis.log:
            ax.set_xscale("log")
        x_min, x_max = layout.axis.minimum, layout.axis.maximum

        for row in layout.rows:
            if row.marker_size > 0:
                ax.plot(row.effect, row.y, "ks", markersize=max(2.0, row.marker_size))
            ax.hlines(row.y, row.ci_lower, row.ci_upper, colors="black", linewidth=1.5)

        diamond_x, diamond_y = zip(*layout.diamond.vertices(), strict=True)
        ax.fill(diamond_x, diamond_y, color="steelblue", edgecolor="black", linewidth=1)

        # Line of no effect
        ax.axvline(x=layout.null_value, color="gray", linestyle="--", linewidth=1, alpha=0.7)

        ax.set_xlim(x_min, x_max)
        ax.set_ylim(-1, n_studies + 1)
        ax.set_xlabel(layout.axis_label)

        ax.set_yticks([])
        ax.spines["left"].set_visible(False)

        # Study labels on the left, estimates on the right
        for row in layout.rows:
            name = row.label[:30] + "..." if len(row.label) > 30 else row.label
            ax.text(-0.02, row.y, name, ha="right", va="center", transform=ax.get_yaxis_transform(), fontsize=9)

            effect_text = (
                f"{_format_effect(row.effect)} [{_format_effect(row.ci_lower)}, {_format_effect(row.ci_upper)}]"
            )
            if self.show_weights:
                effect_text += f" ({row.weight:.1f}%)"
            ax.text(1.02, row.y, effect_text, ha="left", va="center", transform=ax.get_yaxis_transform(), fontsize=8)

        diamond = layout.diamond
        ax.text(
            -0.02,
            diamond.y,
            layout.summary_label,
            ha="right",
            va="center",
            transform=ax.get_yaxis_transform(),
            fontsize=9,
            fontweight="bold",
        )
        pooled_text = (
            f"{_format_effect(diamond.center)} [{_format_effect(diamond.left)}, {_format_effect(diamond.right)}]"
        )
        ax.text(
            1.02,
            diamond.y,
            pooled_text,
            ha="left",
            va="center",
            transform=ax.get_yaxis_transform(),
            fontsize=8,
            fontweight="bold",
        )

        ax.set_title(title, fontsize=12, fontweight="bold", pad=20)

        if self.show_heterogeneity and pooled is not None:
            het_text = (
                f"Heterogeneity: I² = {pooled.i_squared:.1f}%, Q = {pooled.q:.2f} "
                f"(df = {pooled.df}, {_format_p(pooled.q_p_value)}), τ² = {pooled.tau_squared:.3f}"
            )
            het_text += f"\nTest for overall effect: Z = {pooled.z_statistic:.2f}, {_format_p(pooled.p_value)}"
            ax.text(
                0.5,
                -0.08,
                het_text,
                ha="center",
                va="top",
                transform=ax.transAxes,
                fontsize=8,
                style="italic",
            )

        plt.tight_layout()
        return fig


class FunnelPlot:
    """Draws a funnel plot from a precomputed :class:`FunnelLayout`.

    Standard error runs down the y axis (0 at the top) so precise studies sit
    at the apex of the pseudo-confidence funnel.
    """

    def __init__(self, figsize: tuple[float, float] = (6.0, 5.0)) -> None:
        self.figsize = figsize

    def create(self, layout: FunnelLayout, title: str = "Funnel Plot") -> Figure:
        fig, ax = plt.subplots(figsize=self.figsize)

        if layout.log_axis:
            ax.set_xscale("log")

        lower_x = [x for x, _ in layout.lower_boundary]
        upper_x = [x for x, _ in layout.upper_boundary]
        se_values = [se for _, se in layout.lower_boundary]

        ax.fill_betweenx(se_values, lower_x, upper_x, color="#f1f5f9", edgecolor="#cbd5e1")
        ax.plot(lower_x, se_values, color="gray", linestyle=":", linewidth=0.8)
        ax.plot(upper_x, se_values, color="gray", linestyle=":", linewidth=0.8)
        ax.axvline(layout.pooled_effect, color="firebrick", linestyle="--", linewidth=1)

        ax.scatter(
            [p.effect for p in layout.points],
            [p.se for p in layout.points],
            s=30,
            color="#0f766e",
            edgecolor="white",
            linewidth=0.5,
            zorder=3,
        )

        ax.set_ylim(layout.max_se * 1.05 if layout.max_se > 0 else 1.0, 0)
        ax.set_xlabel(f"Effect size ({layout.axis_label})" if layout.axis_label else "Effect size")
        ax.set_ylabel("Standard error")
        ax.set_title(title, fontsize=11, fontweight="bold")
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)

        fig.tight_layout()
        return fig
