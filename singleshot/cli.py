"""Command-line interface for SingleShot.

Analyze photos and video clips with Gemini and get a title, keywords, a
dense visual description and technical estimates for each one.

Built with Click for commands and Rich for terminal output.

Usage:
    singleshot analyze IMG_0412.CR2
    singleshot analyze --batch shoot/*.NEF -o ./metadata -f summary
    singleshot inspect clip.mkv still.heic
    singleshot config set-key
"""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.prompt import Confirm, Prompt
from rich.table import Table
from rich.text import Text

from singleshot import __version__
from singleshot.ai.client import AIClient, get_client
from singleshot.config import (
    AppConfig,
    ConfigError,
    ConfigFileError,
    KeyStorageBackend,
    configure_api_key,
    get_config,
    get_key_manager,
    load_file_config,
)
from singleshot.ingest import (
    classify_kind,
    guess_reported_mime_type,
    ingest_batch,
    is_accepted,
    read_media_file,
    resolve_mime_type,
    screen_batch,
)
from singleshot.models import (
    AnalysisItem,
    AnalysisStatus,
    MediaFile,
    MediaPayload,
    is_previewable_mime,
)
from singleshot.report import ReportFormat, render_result, write_reports
from singleshot.store import ItemStore, StoreEvent
from singleshot.utils.logging import LogContext, setup_logging

logger = logging.getLogger(__name__)

# Rich console for output
console = Console()


# =============================================================================
# Helper Functions
# =============================================================================


def print_header(text: str) -> None:
    console.print()
    console.print(Panel(text, style="bold blue", expand=False))
    console.print()


def print_success(text: str) -> None:
    console.print(f"[green]✓[/green] {text}")


def print_warning(text: str) -> None:
    console.print(f"[yellow]⚠[/yellow] {text}")


def print_error(text: str) -> None:
    console.print(f"[red]✗[/red] {text}")


def print_info(text: str) -> None:
    console.print(f"[blue]ℹ[/blue] {text}")


def confirm_action(prompt: str, default: bool = False) -> bool:
    """Ask for Y/N confirmation."""
    return Confirm.ask(prompt, default=default, console=console)


def load_config(ctx: click.Context, allow_missing: bool = False) -> AppConfig:
    """Load the config selected on the command line, exiting on failure.

    With ``allow_missing``, an explicit config file that does not exist yet
    yields defaults so config commands can create it.
    """
    config_path = ctx.obj.get("config_path") if ctx.obj else None
    if allow_missing and config_path is not None and not config_path.exists():
        return AppConfig()
    try:
        return get_config(config_path)
    except ConfigFileError as e:
        print_error(escape(str(e)))
        ctx.exit(1)


def config_file_path(ctx: click.Context) -> Path:
    """Config file that config subcommands read and write."""
    config_path = ctx.obj.get("config_path") if ctx.obj else None
    return config_path or AppConfig.get_default_config_path()


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="SingleShot")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Path to config file",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """SingleShot - Cinematographic metadata for photos and video clips.

    Quick start:
        singleshot config set-key      # Set up your Gemini API key
        singleshot analyze photo.jpg

    For more information on a command:
        singleshot COMMAND --help
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path

    setup_logging(level="DEBUG" if verbose else "WARNING")


# =============================================================================
# Analyze Command
# =============================================================================


@cli.command()
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--batch/--single",
    "batch",
    default=None,
    help="Analyze every accepted file, or only the first (default from config)",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([fmt.value for fmt in ReportFormat]),
    default=ReportFormat.TEXT.value,
    help="Report format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory to write one report per analyzed file",
)
@click.pass_context
def analyze(
    ctx: click.Context,
    paths: tuple[Path, ...],
    batch: bool | None,
    output_format: str,
    output: Path | None,
) -> None:
    """Analyze photos and video clips with Gemini.

    Each accepted file is analyzed concurrently and independently; a failed
    file does not affect the others.

    Example:
        singleshot analyze --batch shoot/*.CR2 -o ./metadata
    """
    app_config = load_config(ctx)
    multiple = app_config.ingest.batch_mode if batch is None else batch
    fmt = ReportFormat(output_format)

    print_header("🎬 SingleShot")

    files = _read_files(paths)
    accepted, rejected = screen_batch(files)
    for file in rejected:
        print_warning(f"Skipping unsupported file: {escape(file.filename)}")

    payloads = ingest_batch(accepted, multiple=multiple)
    if not payloads:
        print_error("No supported photo or video files to analyze.")
        ctx.exit(1)

    if not multiple and len(accepted) > 1:
        print_info(
            f"Single mode: analyzing {escape(payloads[0].filename)} only "
            "(use --batch to analyze all files)"
        )

    client = get_client(app_config)
    if not client.is_configured():
        print_error("No Gemini API key configured.")
        console.print("  Run: [bold]singleshot config set-key[/bold] or set GEMINI_API_KEY")
        ctx.exit(1)

    items = _run_analysis(client, payloads, app_config.ai.max_concurrent_requests)

    console.print()
    for item in items:
        _show_item(item, fmt)

    _show_summary(items)

    if output is not None:
        try:
            written = write_reports(items, output, fmt)
        except OSError as e:
            print_error(f"Failed to write reports: {escape(str(e))}")
            ctx.exit(1)

        console.print()
        if written:
            print_success(f"Wrote {len(written)} report(s) to {escape(str(output))}")
            for path in written:
                console.print(f"  📄 {escape(str(path))}")
        else:
            print_warning("No successful analyses to write.")


def _read_files(paths: tuple[Path, ...]) -> list[MediaFile]:
    files: list[MediaFile] = []
    for path in paths:
        try:
            files.append(read_media_file(path))
        except OSError as e:
            print_error(f"Cannot read {escape(str(path))}: {escape(str(e))}")
    return files


async def analyze_payloads(
    client: AIClient,
    payloads: list[MediaPayload],
    max_concurrency: int | None = None,
    on_complete: Callable[[AnalysisItem], None] | None = None,
) -> list[AnalysisItem]:
    """Run a batch through a fresh store and wait for every result.

    Args:
        client: Analysis client.
        payloads: Ingested payloads.
        max_concurrency: Optional cap on simultaneous calls.
        on_complete: Optional callback invoked with each finished item.

    Returns:
        The items in submission order, all terminal.
    """
    store = ItemStore(client, max_concurrency=max_concurrency)

    if on_complete is not None:

        def listener(event: StoreEvent, item: AnalysisItem) -> None:
            if event == StoreEvent.UPDATED and item.is_terminal:
                on_complete(item)

        store.subscribe(listener)

    try:
        store.add_batch(payloads)
        await store.join()
    finally:
        await store.aclose()

    return store.items


def _run_analysis(
    client: AIClient, payloads: list[MediaPayload], max_concurrency: int
) -> list[AnalysisItem]:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Analyzing...", total=len(payloads))

        def on_complete(item: AnalysisItem) -> None:
            progress.update(task, description=f"Analyzed {escape(item.filename)}")
            progress.advance(task)

        with LogContext(f"Analyzing {len(payloads)} file(s)", logger=logger):
            return asyncio.run(analyze_payloads(client, payloads, max_concurrency, on_complete))


def _show_item(item: AnalysisItem, fmt: ReportFormat) -> None:
    subtitle = item.mime_type if item.is_previewable else f"{item.format_label} (no preview)"

    if item.status == AnalysisStatus.SUCCESS and item.result is not None:
        console.print(
            Panel(
                Text(render_result(item.result, fmt)),
                title=Text(item.filename, style="bold"),
                subtitle=subtitle,
                border_style="green",
            )
        )
    else:
        console.print(
            Panel(
                Text(item.error_message or "Analysis failed", style="red"),
                title=Text(item.filename, style="bold"),
                subtitle=subtitle,
                border_style="red",
            )
        )


def _show_summary(items: list[AnalysisItem]) -> None:
    succeeded = sum(1 for item in items if item.status == AnalysisStatus.SUCCESS)
    failed = len(items) - succeeded

    console.print()
    if failed:
        print_warning(f"{succeeded} of {len(items)} file(s) analyzed, {failed} failed")
    else:
        print_success(f"{succeeded} file(s) analyzed")


# =============================================================================
# Inspect Command
# =============================================================================


@cli.command()
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
)
def inspect(paths: tuple[Path, ...]) -> None:
    """Show how files would be ingested, without calling the API.

    Example:
        singleshot inspect IMG_0412.CR2 clip.mkv notes.txt
    """
    table = Table(title="Ingestion Preview", show_header=True)
    table.add_column("File", style="cyan")
    table.add_column("Reported")
    table.add_column("Resolved MIME")
    table.add_column("Kind")
    table.add_column("Accepted")
    table.add_column("Preview")

    for path in paths:
        reported = guess_reported_mime_type(path.name)
        resolved = resolve_mime_type(path.name, reported)
        accepted = is_accepted(MediaFile(data=b"", mime_type=reported, filename=path.name))

        table.add_row(
            escape(path.name),
            reported or "[dim]-[/dim]",
            resolved,
            classify_kind(resolved).value,
            "[green]yes[/green]" if accepted else "[red]no[/red]",
            "native" if is_previewable_mime(resolved) else "label only",
        )

    console.print(table)


# =============================================================================
# Config Commands
# =============================================================================


@cli.group()
def config() -> None:
    """Manage configuration and API keys."""
    pass


@config.command("set-key")
@click.option("--key", "api_key", default=None, help="API key (prompted if omitted)")
@click.option(
    "--backend",
    type=click.Choice([backend.value for backend in KeyStorageBackend]),
    default=None,
    help="Storage backend (defaults to the configured one)",
)
@click.pass_context
def config_set_key(ctx: click.Context, api_key: str | None, backend: str | None) -> None:
    """Store your Gemini API key.

    The key is stored according to the storage backend:
    - Environment variable (default, current process only)
    - System keyring (recommended)
    - Encrypted file

    Get your API key at: https://aistudio.google.com/app/apikey
    """
    print_header("🔑 Configure Gemini API Key")

    if not api_key:
        api_key = Prompt.ask("Enter your Gemini API key", password=True, console=console)

    if not api_key:
        print_error("No API key provided.")
        ctx.exit(1)

    app_config = load_config(ctx, allow_missing=True)
    storage = KeyStorageBackend(backend) if backend else app_config.key_storage_backend

    if storage == KeyStorageBackend.ENV:
        print_warning("The env backend only lasts for this process.")
        console.print("  Export GEMINI_API_KEY in your shell, or use --backend keyring")

    try:
        configure_api_key(api_key, storage, config_file_path(ctx))
    except ConfigError as e:
        print_error(f"Failed to store API key: {escape(str(e))}")
        ctx.exit(1)

    print_success("API key stored successfully!")
    console.print(f"  Storage: {storage.value}")


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration (the API key is never shown)."""
    app_config = load_config(ctx, allow_missing=True)

    table = Table(title="Current Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("ai.model_name", app_config.ai.model_name)
    table.add_row("ai.temperature", str(app_config.ai.temperature))
    table.add_row("ai.timeout_seconds", str(app_config.ai.timeout_seconds))
    table.add_row("ai.max_concurrent_requests", str(app_config.ai.max_concurrent_requests))
    table.add_row("ingest.batch_mode", str(app_config.ingest.batch_mode))
    table.add_row("key_storage_backend", app_config.key_storage_backend.value)
    table.add_row("Config file", escape(str(config_file_path(ctx))))

    console.print(table)
    console.print()

    if get_key_manager(app_config).is_key_configured():
        print_success("API key is configured")
    else:
        print_warning("API key not configured")
        console.print("  Run: [bold]singleshot config set-key[/bold]")


@config.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set a configuration value.

    Example:
        singleshot config set ai.model_name gemini-2.5-flash
        singleshot config set ingest.batch_mode true
        singleshot config set key_storage_backend keyring
    """
    config_path = config_file_path(ctx)
    try:
        data = load_file_config(config_path).model_dump(mode="json")
    except ConfigFileError as e:
        print_error(escape(str(e)))
        ctx.exit(1)

    parts = key.split(".")
    if len(parts) > 2:
        print_error(f"Invalid key format: {escape(key)}")
        ctx.exit(1)

    target = data
    if len(parts) == 2:
        section = parts[0]
        if not isinstance(data.get(section), dict):
            print_error(f"Unknown section: {escape(section)}")
            ctx.exit(1)
        target = data[section]

    setting = parts[-1]
    if setting not in target or isinstance(target[setting], dict):
        print_error(f"Unknown setting: {escape(key)}")
        ctx.exit(1)

    target[setting] = value

    try:
        updated = AppConfig.from_file_data(data)
    except ValidationError as e:
        print_error(f"Invalid value for {escape(key)}: {e.errors()[0]['msg']}")
        ctx.exit(1)

    try:
        updated.save_to_yaml(config_path)
    except ConfigFileError as e:
        print_error(escape(str(e)))
        ctx.exit(1)

    print_success(f"Set {escape(key)} = {escape(value)}")


@config.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def config_reset(ctx: click.Context, yes: bool) -> None:
    """Reset configuration to defaults."""
    if not yes and not confirm_action("Reset all configuration to defaults?"):
        print_info("Cancelled.")
        return

    config_path = config_file_path(ctx)
    if not config_path.exists():
        print_info("No custom configuration found.")
        return

    try:
        config_path.unlink()
    except OSError as e:
        print_error(f"Failed to reset config: {escape(str(e))}")
        ctx.exit(1)

    print_success("Configuration reset to defaults.")


def main() -> None:
    """Main entry point for the CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        console.print()
        print_info("Interrupted.")
        sys.exit(130)
    except Exception as e:
        print_error(f"Unexpected error: {escape(str(e))}")
        logger.debug("Unexpected error", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
