"""CLI interface for the meta-analysis calculator."""

import logging
from pathlib import Path
from typing import Annotated

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from metacalc.analysis import (
    AnalysisReport,
    AnalysisSession,
    ForestPlot,
    FunnelPlot,
    NumericGuardError,
    forest_layout_from_report,
    funnel_layout_from_report,
)
from metacalc.analysis.plots import save_figure
from metacalc.config import get_config
from metacalc.database import Database
from metacalc.models import EffectMeasure, PoolingMethod
from metacalc.output.exporter import (
    export_json,
    export_sensitivity_csv,
    export_studies_csv,
    export_summary,
    format_summary,
)
from metacalc.studies.csv_parser import StudyImportError, parse_csv_file

app = typer.Typer(
    name="metacalc",
    help="Meta-analysis calculator: pooled effects, heterogeneity, forest and funnel plots",
    no_args_is_help=True,
)
console = Console()

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)


def get_db() -> Database:
    """Get the database instance."""
    config = get_config()
    config.ensure_data_dir()
    return Database(config.database_path)  # type: ignore[arg-type]


def _parse_measure(value: str | None) -> EffectMeasure | None:
    if value is None:
        return None
    try:
        return EffectMeasure(value.upper())
    except ValueError:
        choices = ", ".join(m.value for m in EffectMeasure)
        console.print(f"[red]Error:[/red] Invalid effect measure: {value}. Use one of {choices}.")
        raise typer.Exit(1) from None


def _parse_method(value: str | None) -> PoolingMethod | None:
    if value is None:
        return None
    try:
        return PoolingMethod(value.lower())
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid pooling method: {value}. Use 'fixed' or 'random'.")
        raise typer.Exit(1) from None


def load_session(
    path: Path,
    measure: str | None = None,
    method: str | None = None,
    name: str | None = None,
    natural_scale: bool = False,
) -> AnalysisSession:
    """
    Build a session from a CSV of studies or a YAML session file.

    Measure and method given on the command line override those of a YAML
    session; otherwise the configured defaults apply.
    """
    config = get_config()
    effect_measure = _parse_measure(measure)
    pooling_method = _parse_method(method)

    try:
        if path.suffix.lower() in (".yaml", ".yml"):
            session = AnalysisSession.load_yaml(path, z_crit=config.confidence_z)
            if name:
                session.name = name
        else:
            studies = parse_csv_file(path, natural_scale=natural_scale)
            session = AnalysisSession(
                name=name or path.stem,
                measure=config.default_measure,
                method=config.default_method,
                studies=studies,
                z_crit=config.confidence_z,
            )
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1) from None
    except StudyImportError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    except (ValidationError, yaml.YAMLError, ValueError) as e:
        console.print(f"[red]Error:[/red] Could not read {path}: {e}")
        raise typer.Exit(1) from None

    if effect_measure is not None:
        session.set_measure(effect_measure)
    if pooling_method is not None:
        session.set_method(pooling_method)
    return session


def _run(session: AnalysisSession, key: str = "main") -> AnalysisReport:
    try:
        return session.analyze(key)
    except NumericGuardError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


def _print_report(report: AnalysisReport, z_crit: float) -> None:
    """Print a per-study table followed by the pooled result."""
    pooled = report.pooled
    weights = pooled.weights if pooled is not None else {}

    table = Table(title=f"Studies ({report.measure.value})")
    table.add_column("Study", style="cyan")
    table.add_column("Effect", justify="right")
    table.add_column("95% CI", justify="right")
    table.add_column("Weight", justify="right")

    for effect in report.effects:
        lower, upper = effect.estimate.natural_ci(z_crit)
        weight = weights.get(effect.study_id)
        table.add_row(
            effect.name,
            f"{effect.estimate.natural():.3f}",
            f"[{lower:.3f}, {upper:.3f}]",
            f"{weight:.1f}%" if weight is not None else "-",
        )
    for exclusion in report.exclusions:
        table.add_row(f"[dim]{exclusion.name}[/dim]", "-", "-", f"[yellow]{exclusion.reason.value}[/yellow]")

    console.print(table)
    console.print(format_summary(report))


@app.command()
def analyze(
    input_path: Annotated[Path, typer.Argument(help="Study CSV or session YAML file")],
    measure: Annotated[
        str | None, typer.Option("--measure", "-e", help="Effect measure: SMD, MD, OR, RR, RD or HR")
    ] = None,
    method: Annotated[str | None, typer.Option("--method", "-m", help="Pooling method: fixed or random")] = None,
    output: Annotated[Path, typer.Option("--output", "-o", help="Output directory")] = Path("./analysis"),
    name: Annotated[str | None, typer.Option("--name", "-n", help="Session name")] = None,
    natural_scale: Annotated[
        bool, typer.Option("--natural-scale", help="Pre-calculated ratio effects are not log-transformed")
    ] = False,
    plots: Annotated[bool, typer.Option("--plots/--no-plots", help="Write forest and funnel plots")] = True,
    save: Annotated[bool, typer.Option("--save", help="Store the session and result in the database")] = False,
) -> None:
    """Run a meta-analysis and write its summary, JSON results and plots."""
    config = get_config()
    session = load_session(input_path, measure, method, name, natural_scale)

    console.print(
        f"[blue]Running {session.method.label} meta-analysis of {len(session.studies)} studies "
        f"({session.measure.value})...[/blue]"
    )
    report = _run(session)
    _print_report(report, config.confidence_z)

    output.mkdir(parents=True, exist_ok=True)
    stem = session.name.replace(" ", "_")

    summary_path = output / f"{stem}_summary.txt"
    export_summary(report, summary_path)
    json_path = output / f"{stem}_meta_analysis.json"
    export_json(report, json_path, config.confidence_z)
    export_studies_csv(report, output / f"{stem}_studies.csv", config.confidence_z)
    console.print(f"\n[green]Results saved:[/green] {summary_path}, {json_path}")

    if report.ok and plots:
        fmt = config.plots.format
        forest = ForestPlot().create(
            forest_layout_from_report(report, config.confidence_z),
            pooled=report.pooled,
            title=f"Forest Plot - {session.name}",
        )
        forest_path = output / f"{stem}_forest_plot.{fmt}"
        save_figure(forest, forest_path, dpi=config.plots.dpi)

        funnel = FunnelPlot().create(
            funnel_layout_from_report(report, config.confidence_z, config.plots.funnel_steps),
            title=f"Funnel Plot - {session.name}",
        )
        funnel_path = output / f"{stem}_funnel_plot.{fmt}"
        save_figure(funnel, funnel_path, dpi=config.plots.dpi)
        console.print(f"[green]Plots saved:[/green] {forest_path}, {funnel_path}")

    if save:
        db = get_db()
        session_id = db.save_session(session)
        db.save_result(session_id, report)
        db.close()
        console.print(f"[green]Session stored:[/green] {session.name} (ID: {session_id})")

    if not report.ok:
        raise typer.Exit(1)


@app.command()
def sensitivity(
    input_path: Annotated[Path, typer.Argument(help="Study CSV or session YAML file")],
    measure: Annotated[str | None, typer.Option("--measure", "-e", help="Effect measure")] = None,
    method: Annotated[str | None, typer.Option("--method", "-m", help="Pooling method: fixed or random")] = None,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="CSV file for the results")] = None,
    natural_scale: Annotated[
        bool, typer.Option("--natural-scale", help="Pre-calculated ratio effects are not log-transformed")
    ] = False,
) -> None:
    """Leave-one-out sensitivity analysis."""
    session = load_session(input_path, measure, method, natural_scale=natural_scale)

    try:
        reports = session.leave_one_out()
    except NumericGuardError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    if not reports:
        console.print("[yellow]No studies to leave out.[/yellow]")
        return

    names = {s.id: s.display_name for s in session.studies}

    table = Table(title=f"Leave-one-out ({session.measure.value}, {session.method.value})")
    table.add_column("Omitted", style="cyan")
    table.add_column("Pooled", justify="right")
    table.add_column("95% CI", justify="right")
    table.add_column("I²", justify="right")

    for study_id, report in reports.items():
        if report.pooled is None:
            table.add_row(names[study_id], "-", "-", f"[yellow]{report.status.value}[/yellow]")
            continue
        lower, upper = report.pooled.display_ci()
        table.add_row(
            names[study_id],
            f"{report.pooled.display_effect():.3f}",
            f"[{lower:.3f}, {upper:.3f}]",
            f"{report.pooled.i_squared:.1f}%",
        )

    console.print(table)

    if output:
        export_sensitivity_csv(reports, names, output)
        console.print(f"[green]Results saved:[/green] {output}")


@app.command()
def subgroups(
    input_path: Annotated[Path, typer.Argument(help="Study CSV or session YAML file")],
    measure: Annotated[str | None, typer.Option("--measure", "-e", help="Effect measure")] = None,
    method: Annotated[str | None, typer.Option("--method", "-m", help="Pooling method: fixed or random")] = None,
    natural_scale: Annotated[
        bool, typer.Option("--natural-scale", help="Pre-calculated ratio effects are not log-transformed")
    ] = False,
) -> None:
    """Pool each subgroup separately and test for subgroup differences."""
    session = load_session(input_path, measure, method, natural_scale=natural_scale)

    if not session.subgroup_names():
        console.print("[yellow]No subgroups defined. Add a 'subgroup' column to the studies.[/yellow]")
        return

    try:
        result = session.subgroup_analysis()
    except NumericGuardError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None

    table = Table(title=f"Subgroups ({session.measure.value}, {session.method.value})")
    table.add_column("Subgroup", style="cyan")
    table.add_column("Studies", justify="right")
    table.add_column("Pooled", justify="right")
    table.add_column("95% CI", justify="right")
    table.add_column("I²", justify="right")

    for subgroup, report in result.reports.items():
        if report.pooled is None:
            table.add_row(subgroup, str(len(report.effects)), "-", "-", f"[yellow]{report.status.value}[/yellow]")
            continue
        lower, upper = report.pooled.display_ci()
        table.add_row(
            subgroup,
            str(report.pooled.n_studies),
            f"{report.pooled.display_effect():.3f}",
            f"[{lower:.3f}, {upper:.3f}]",
            f"{report.pooled.i_squared:.1f}%",
        )

    console.print(table)

    if result.test is not None:
        test = result.test
        p_text = "<0.001" if test.p_value < 0.001 else f"{test.p_value:.3f}"
        console.print(f"Test for subgroup differences: Q = {test.q_between:.2f} (df={test.df}, p={p_text})")
    else:
        console.print("[yellow]Fewer than 2 subgroups could be pooled; no difference test.[/yellow]")


@app.command("import")
def import_studies(
    input_path: Annotated[Path, typer.Argument(help="Study CSV file")],
    output: Annotated[Path, typer.Option("--output", "-o", help="Session YAML file to write")],
    measure: Annotated[str | None, typer.Option("--measure", "-e", help="Effect measure")] = None,
    method: Annotated[str | None, typer.Option("--method", "-m", help="Pooling method: fixed or random")] = None,
    name: Annotated[str | None, typer.Option("--name", "-n", help="Session name")] = None,
    natural_scale: Annotated[
        bool, typer.Option("--natural-scale", help="Pre-calculated ratio effects are not log-transformed")
    ] = False,
) -> None:
    """Convert a study CSV into a session YAML file."""
    session = load_session(input_path, measure, method, name, natural_scale)
    output.parent.mkdir(parents=True, exist_ok=True)
    session.save_yaml(output)
    console.print(f"[green]Imported {len(session.studies)} studies into[/green] {output}")


@app.command("list")
def list_sessions() -> None:
    """List stored sessions."""
    db = get_db()
    sessions = db.list_sessions()

    if not sessions:
        console.print("[yellow]No sessions found. Run 'metacalc analyze <file> --save' to store one.[/yellow]")
        db.close()
        return

    table = Table(title="Meta-Analysis Sessions")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Measure")
    table.add_column("Method")
    table.add_column("Studies", justify="right")
    table.add_column("Updated")

    for s in sessions:
        updated = s["updated_at"][:10] if s["updated_at"] else "Unknown"
        table.add_row(
            str(s["id"]), s["name"], s["effect_measure"], s["pooling_method"], str(s["n_studies"]), updated
        )

    console.print(table)
    db.close()


@app.command()
def show(
    name: Annotated[str, typer.Argument(help="Session name")],
) -> None:
    """Re-run a stored session and show its results."""
    db = get_db()

    row = db.get_session_by_name(name)
    if not row:
        console.print(f"[red]Error:[/red] Session '{name}' not found")
        db.close()
        raise typer.Exit(1)

    session = db.load_session(row["id"], z_crit=get_config().confidence_z)
    db.close()

    report = _run(session)
    _print_report(report, session.z_crit)
