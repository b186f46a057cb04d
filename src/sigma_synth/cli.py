"""
Sigma Synth CLI.

Command-line interface for generating Sigma rules and building the
external rule index.

Usage:
    sigma-synth generate --logsources logsources.json --output-dir sigma-rules
    sigma-synth fetch-corpus --output external-rules-index.json
    sigma-synth index-sigma ./sigma/rules --output sigma-index.json
    sigma-synth logsources --logsources logsources.json
"""

import asyncio
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from sigma_synth import __version__
from sigma_synth.config import Settings, settings
from sigma_synth.exceptions import CatalogueError
from sigma_synth.logging_config import LogConfig, configure_logging
from sigma_synth.models.report import GenerationReport
from sigma_synth.models.rules import RuleSource
from sigma_synth.services.corpus import CorpusBuilder, index_local_sigma, save_index_document
from sigma_synth.services.generator import RuleGenerator
from sigma_synth.sources.logsources import load_catalogue

app = typer.Typer(
    name="sigma-synth",
    help="Generate Sigma detection rules from ATT&CK, a log-source catalogue and public rule corpora.",
    no_args_is_help=True,
)
console = Console()


class MatcherChoice(str, Enum):
    CATEGORY = "category"
    CURATED = "curated"
    ALL = "all"


class ExtractorChoice(str, Enum):
    REGEX = "regex"
    YAML = "yaml"


class LogFormat(str, Enum):
    HUMAN = "human"
    JSON = "json"


def version_callback(value: bool):
    if value:
        console.print(f"Sigma Synth v{__version__}")
        raise typer.Exit()


def _settings_with(**overrides: Any) -> Settings:
    """Settings from the environment with CLI overrides applied."""
    try:
        return Settings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(2)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
    log_format: Annotated[
        LogFormat,
        typer.Option("--log-format", help="Log output format"),
    ] = LogFormat.HUMAN,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    ] = "WARNING",
):
    """Sigma Synth - Sigma rules synthesized from ATT&CK and public detections."""
    configure_logging(LogConfig(level=log_level, format=log_format.value))


# =============================================================================
# Rule Generation
# =============================================================================


@app.command()
def generate(
    logsources: Annotated[
        Optional[Path],
        typer.Option("--logsources", "-l", help="Log-source catalogue (JSON or YAML)"),
    ] = None,
    output_dir: Annotated[
        Optional[Path],
        typer.Option("--output-dir", "-o", help="Root directory for generated rules"),
    ] = None,
    rules_index: Annotated[
        Optional[str],
        typer.Option("--rules-index", "-r", help="External rule index (path or URL)"),
    ] = None,
    attack_bundle: Annotated[
        Optional[str],
        typer.Option("--attack-bundle", help="ATT&CK STIX bundle (path or URL)"),
    ] = None,
    actor_index: Annotated[
        Optional[str],
        typer.Option("--actor-index", help="Threat-actor TTP index (path or URL)"),
    ] = None,
    matcher: Annotated[
        Optional[MatcherChoice],
        typer.Option("--matcher", "-m", help="Relevance strategy"),
    ] = None,
    extractor: Annotated[
        Optional[ExtractorChoice],
        typer.Option("--extractor", "-e", help="Detection block parser"),
    ] = None,
    deterministic: Annotated[
        bool,
        typer.Option("--deterministic", help="Derive rule IDs from their inputs"),
    ] = False,
    technique: Annotated[
        Optional[list[str]],
        typer.Option("--technique", "-t", help="Only generate these technique IDs"),
    ] = None,
    no_actors: Annotated[
        bool,
        typer.Option("--no-actors", help="Do not write per-actor rules"),
    ] = False,
    retries: Annotated[
        Optional[int],
        typer.Option("--retries", help="Retries for transient fetch failures"),
    ] = None,
):
    """Generate Sigma rules for every relevant technique and log source."""
    config = _settings_with(
        logsources_path=logsources,
        output_dir=output_dir,
        rules_index=rules_index,
        attack_bundle=attack_bundle,
        actor_index=actor_index,
        matcher=matcher.value if matcher else None,
        extractor=extractor.value if extractor else None,
        identifier_mode="deterministic" if deterministic else None,
        technique_filter=technique or None,
        actor_scoped=False if no_actors else None,
        fetch_retries=retries,
    )

    async def _generate() -> GenerationReport:
        generator = RuleGenerator(config)
        with console.status("Generating Sigma rules..."):
            return await generator.run()

    try:
        report = asyncio.run(_generate())
    except CatalogueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    _print_report(report, config.output_dir)


def _print_report(report: GenerationReport, output_dir: Path) -> None:
    console.print(f"[green]✓[/green] Generated [bold]{report.generated}[/bold] rules in {output_dir}")

    table = Table(title="Detection origin")
    table.add_column("Origin", style="cyan")
    table.add_column("Rules", justify="right")
    for origin, count in report.origins.items():
        table.add_row(origin, str(count))
    console.print(table)

    if report.skipped_invalid:
        console.print(
            f"[yellow]Skipped {len(report.skipped_invalid)} invalid technique IDs:[/yellow] "
            f"{', '.join(report.skipped_invalid)}"
        )
    if report.degraded_sources:
        console.print(f"[yellow]Degraded inputs:[/yellow] {', '.join(report.degraded_sources)}")
    if report.write_failures:
        console.print(f"[red]{report.write_failures} rules could not be written[/red]")


# =============================================================================
# Rule Corpus
# =============================================================================


@app.command("fetch-corpus")
def fetch_corpus(
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Index document to write"),
    ] = Path("external-rules-index.json"),
    source: Annotated[
        Optional[list[RuleSource]],
        typer.Option("--source", "-s", help="Repositories to walk (default: all)"),
    ] = None,
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", "-c", help="Concurrent downloads"),
    ] = None,
):
    """Build the external rule index from the public GitHub repositories."""
    config = _settings_with(corpus_concurrency=concurrency)
    if not config.github_token:
        console.print("[yellow]SIGMA_SYNTH_GITHUB_TOKEN not set; using unauthenticated GitHub API[/yellow]")

    async def _build() -> dict[str, Any]:
        builder = CorpusBuilder(config)
        with console.status("Fetching rule repositories..."):
            return await builder.build(sources=source)

    document = asyncio.run(_build())
    path = save_index_document(document, output)
    _print_index_summary(document, path)


@app.command("index-sigma")
def index_sigma(
    rules_dir: Annotated[Path, typer.Argument(help="SigmaHQ rules directory")],
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Index document to write"),
    ] = Path("sigma-index.json"),
):
    """Index a local SigmaHQ checkout into a rule index document."""
    try:
        document = index_local_sigma(rules_dir)
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    path = save_index_document(document, output)
    _print_index_summary(document, path)


def _print_index_summary(document: dict[str, Any], path: Path) -> None:
    meta = document["_meta"]
    console.print(
        f"[green]✓[/green] Saved {meta['totalRules']} rules for "
        f"{meta['techniques']} techniques to [bold]{path}[/bold]"
    )
    for name, count in meta["sources"].items():
        console.print(f"  {name}: {count} techniques")


# =============================================================================
# Catalogue
# =============================================================================


@app.command()
def logsources(
    path: Annotated[
        Optional[Path],
        typer.Option("--logsources", "-l", help="Log-source catalogue (JSON or YAML)"),
    ] = None,
):
    """Show the log-source catalogue."""
    try:
        catalogue = load_catalogue(path or settings.logsources_path)
    except CatalogueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Log Sources")
    table.add_column("Product", style="cyan")
    table.add_column("Service", style="green")
    table.add_column("Category")
    table.add_column("Name")
    table.add_column("Mapped fields", justify="right")

    for source in catalogue.logsources:
        table.add_row(
            source.product,
            source.service,
            source.category,
            source.name or "-",
            str(len(source.mapped_fields())),
        )

    console.print(table)


if __name__ == "__main__":
    app()
