# ABOUTME: Provides the Typer CLI for recommending, training, and inspecting the engine offline.
# ABOUTME: Reads events and catalogs from parquet/CSV and prints Rich tables.

import json
from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from src.common.config import EngineConfig, load_config
from src.scoring.models import PredictionTarget

from .engine import ChallengeRecommender
from .sources import InMemoryCatalog, load_catalog, load_history

console = Console()
app = typer.Typer(help="Recommend challenges and train preference models from an interaction log.")


def _build_engine(
    events_path: Path,
    catalog_path: Optional[Path],
    config_path: Optional[Path],
    artifact_dir: Optional[Path],
) -> ChallengeRecommender:
    if not events_path.exists():
        console.print(f"[red]Missing events file at {events_path}[/red]")
        raise typer.Exit(code=1)
    config = load_config(config_path) if config_path is not None else EngineConfig()
    if artifact_dir is not None:
        config = replace(config, training=replace(config.training, artifact_dir=str(artifact_dir)))
    catalog = load_catalog(catalog_path) if catalog_path is not None else InMemoryCatalog()
    return ChallengeRecommender(load_history(events_path), catalog, config=config)


@app.command()
def recommend(
    events_path: Path = typer.Option(..., "--events-path", help="Interaction events parquet or CSV."),
    catalog_path: Path = typer.Option(..., "--catalog-path", help="Candidate catalog parquet or CSV."),
    config: Optional[Path] = typer.Option(None, "--config", help="Engine config YAML."),
    artifact_dir: Optional[Path] = typer.Option(None, "--artifact-dir", help="Directory holding model checkpoints."),
    count: int = typer.Option(3, "--count", help="Number of challenges to shortlist."),
) -> None:
    """Show the next challenge(s) with their score breakdown."""
    engine = _build_engine(events_path, catalog_path, config, artifact_dir)
    chosen = engine.shortlist(k=count)
    if not chosen:
        console.print("[yellow]No eligible candidate in the catalog.[/yellow]")
        raise typer.Exit(code=1)

    profile = engine.profile_builder.profile
    console.rule("[bold blue]Challenge Recommendation[/bold blue]")
    console.print(f"[bold]Comfort zone:[/] {profile.comfort_zone:.0f}")
    console.print(f"[bold]Completed:[/] {profile.total_completed}")
    table = Table(show_header=True, header_style="bold magenta")
    for column in ("Candidate", "Category", "Difficulty", "Completion", "Enjoyment", "Growth", "Score", "Source"):
        table.add_column(column)
    for c in chosen:
        table.add_row(
            c.candidate_id,
            c.category,
            str(c.difficulty),
            f"{c.completion_probability:.2f}",
            f"{c.enjoyment:.2f}",
            f"{c.growth_potential:.2f}",
            f"{c.score:.3f}",
            c.source,
        )
    console.print(table)
    hours = engine.recommend_hours()
    if hours:
        console.print(f"[bold]Best hours:[/] {', '.join(f'{h:02d}:00' for h in hours)}")


@app.command()
def train(
    events_path: Path = typer.Option(..., "--events-path", help="Interaction events parquet or CSV."),
    artifact_dir: Path = typer.Option(Path("models"), "--artifact-dir", help="Directory for model checkpoints."),
    config: Optional[Path] = typer.Option(None, "--config", help="Engine config YAML."),
    target: Optional[PredictionTarget] = typer.Option(None, "--target", help="Train a single target."),
    metrics_dir: Path = typer.Option(Path("reports/metrics"), "--metrics-dir", help="Where to write training metrics."),
) -> None:
    """Train, validate, and promote models regardless of the retrain trigger."""
    engine = _build_engine(events_path, None, config, artifact_dir)
    reports = engine.force_retrain(target)

    table = Table(show_header=True, header_style="bold magenta")
    for column in ("Target", "Outcome", "Version", "Candidate", "Deployed", "Train", "Val"):
        table.add_column(column)
    for report in reports:
        table.add_row(
            report.target.value,
            report.outcome,
            str(report.deployed_version) if report.deployed_version is not None else "-",
            f"{report.candidate_metric:.4f}" if report.candidate_metric is not None else "-",
            f"{report.deployed_metric:.4f}" if report.deployed_metric is not None else "-",
            str(report.n_train),
            str(report.n_val),
        )
    console.print(table)

    metrics = {
        report.target.value: {
            "outcome": report.outcome,
            "deployed_version": report.deployed_version,
            "candidate_metric": report.candidate_metric,
            "deployed_metric": report.deployed_metric,
            "n_train": report.n_train,
            "n_val": report.n_val,
            **report.extra_metrics,
        }
        for report in reports
    }
    metrics_dir.mkdir(parents=True, exist_ok=True)
    metrics_path = metrics_dir / "training_metrics.json"
    with open(metrics_path, "w") as f:
        json.dump(metrics, f, indent=2)
    console.print(f"[bold]Metrics saved to {metrics_path}[/bold]")


@app.command()
def diagnostics(
    events_path: Path = typer.Option(..., "--events-path", help="Interaction events parquet or CSV."),
    artifact_dir: Optional[Path] = typer.Option(None, "--artifact-dir", help="Directory holding model checkpoints."),
    config: Optional[Path] = typer.Option(None, "--config", help="Engine config YAML."),
    output: Optional[Path] = typer.Option(None, "--output", help="Optional JSON export path."),
) -> None:
    """Print model states and profile health."""
    engine = _build_engine(events_path, None, config, artifact_dir)
    engine.current_profile()
    report = engine.get_diagnostics()

    console.print(f"[bold]Profile version:[/] {report.profile_version}")
    console.print(f"[bold]Interactions:[/] {report.history_length}")
    console.print(f"[bold]Insufficient data:[/] {report.insufficient_data}")
    table = Table(show_header=True, header_style="bold magenta")
    for column in ("Target", "State", "Version", "Trained", "Metric", "Last decision"):
        table.add_column(column)
    for name, target in report.targets.items():
        table.add_row(
            name,
            target.state,
            str(target.version) if target.version is not None else "-",
            target.trained_at or "-",
            f"{target.metric_name}={target.validation_metric:.4f}" if target.validation_metric is not None else "-",
            target.last_decision or "-",
        )
    console.print(table)
    if output is not None:
        engine.export_diagnostics(output)


if __name__ == "__main__":
    app()
