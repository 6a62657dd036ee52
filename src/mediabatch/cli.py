"""Command-line interface for mediabatch."""

import asyncio
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from .batch.orchestrator import BatchProgress, BatchResult, BatchState
from .config import MediaBatchConfig, create_sample_config, load_config
from .error_handling import (
    ConfigurationError,
    ExternalToolError,
    UserInputError,
    check_dependencies,
    graceful_exit,
    handle_error,
)
from .formats import ConvertFormat, DownloadFormat, ProResProfile, RescaleOption
from .process.runner import run_process
from .services.convert import ConvertService, auto_select_formats, webify_formats
from .services.download import DownloadService
from .tools.resolver import ExecutableResolver, resolver_from_config

console = Console()

EXIT_CODES = {
    BatchState.COMPLETED: 0,
    BatchState.PARTIALLY_FAILED: 1,
    BatchState.CANCELLED: 130,
}


def setup_logging(
    *,
    verbose: bool = False,
    config: MediaBatchConfig | None = None,
) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO

    # Clean up existing handlers first to prevent resource leaks
    cleanup_logging()

    show_path = level == logging.DEBUG
    handlers: list[logging.Handler] = [
        RichHandler(console=console, rich_tracebacks=True, show_path=show_path),
    ]

    if config and config.log_dir:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = config.log_dir / "mediabatch.log"
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            ),
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=handlers,
        force=True,
    )


def cleanup_logging() -> None:
    """Clean up logging handlers to prevent ResourceWarnings."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler):
            handler.close()
            root_logger.removeHandler(handler)


def shorten_label(label: str, max_length: int) -> str:
    """Trim long titles for the one-line progress display."""
    if len(label) <= max_length:
        return label
    return label[: max(max_length - 3, 1)] + "..."


def describe_progress(progress: BatchProgress, max_length: int) -> str:
    """One-line status text for a progress record."""
    if progress.state is BatchState.CANCELLED:
        return "Cancelled"
    if progress.state is BatchState.PARTIALLY_FAILED:
        return "Some failed"
    if progress.state is BatchState.COMPLETED:
        return "Complete!"
    if progress.label:
        return shorten_label(progress.label, max_length)
    if progress.percent > 0:
        return f"Downloading... {int(progress.percent)}%"
    return "Connecting..."


class ProgressDisplay:
    """Render the BatchProgress stream as a rich progress bar."""

    def __init__(self, label_max_length: int = 30):
        self.label_max_length = label_max_length
        self.progress = Progress(
            TextColumn("[bold blue]{task.fields[position]}"),
            TextColumn("{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
        )
        self.task_id = self.progress.add_task("Starting...", total=1.0, position="")

    def __enter__(self) -> "ProgressDisplay":
        self.progress.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.progress.stop()

    def update(self, update: BatchProgress) -> None:
        position = f"{update.item_index}/{update.item_count}"
        if update.total_items > 1:
            position += f" ({update.current_item}/{update.total_items})"
        self.progress.update(
            self.task_id,
            completed=update.fraction,
            description=escape(describe_progress(update, self.label_max_length)),
            position=position,
        )


def run_batch(
    batch: Callable[[Callable[[BatchProgress], None]], Awaitable[BatchResult | None]],
    cancel: Callable[[], None],
    config: MediaBatchConfig,
) -> BatchResult | None:
    """Run a batch coroutine with a progress display and Ctrl-C cancellation."""

    async def main() -> BatchResult | None:
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handlers
            pass
        try:
            with ProgressDisplay(config.label_max_length) as display:
                return await batch(display.update)
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass

    return asyncio.run(main())


def report_result(result: BatchResult | None) -> int:
    """Print a batch summary and return the process exit code."""
    if result is None:
        console.print("[yellow]Nothing to do[/yellow]")
        return 1

    succeeded = len(result.succeeded)
    if result.state is BatchState.COMPLETED:
        console.print(f"[green]Complete: {succeeded} item(s) succeeded[/green]")
    elif result.state is BatchState.CANCELLED:
        console.print(f"[yellow]Cancelled after {succeeded} item(s)[/yellow]")
    else:
        console.print(
            f"[red]Some failed: {result.failed_count} of {len(result.results)} item(s)[/red]",
        )

    if result.failed:
        table = Table()
        table.add_column("#", justify="right")
        table.add_column("Source")
        table.add_column("Target")
        table.add_column("Reason")
        for failure in result.failed:
            table.add_row(
                str(failure.index),
                escape(failure.item.source),
                failure.item.target,
                escape(failure.message or failure.failure.value),
            )
        console.print(table)

    return EXIT_CODES[result.state]


# ffmpeg predates GNU-style long options
VERSION_FLAGS = {"ffmpeg": "-version"}


def tool_version(name: str, path: str) -> str:
    """First line of the tool's version output."""
    flag = VERSION_FLAGS.get(Path(name).name, "--version")
    result = asyncio.run(run_process([path, flag]))
    if not result.success:
        raise ExternalToolError(
            name,
            exit_code=result.exit_code,
            output=result.output.strip() or None,
        )
    lines = result.output.strip().splitlines()
    return lines[0] if lines else ""


def require_tools(resolver: ExecutableResolver, *names: str) -> None:
    """Exit early when a required tool cannot be located."""
    missing = check_dependencies(resolver, names)
    if missing:
        for error in missing:
            error.display_to_user()
        sys.exit(1)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx: click.Context, config: Path | None, verbose: bool) -> None:
    """mediabatch - batch downloads with yt-dlp and conversions with ffmpeg."""
    try:
        ctx.ensure_object(dict)
        loaded_config = load_config(config)
        ctx.obj["config"] = loaded_config
        ctx.obj["verbose"] = verbose
        ctx.obj["resolver"] = resolver_from_config(loaded_config)

        setup_logging(verbose=verbose, config=loaded_config)
    except (OSError, ValueError, RuntimeError) as e:
        config_error = ConfigurationError(
            f"Failed to load configuration: {e}",
            config_path=config,
            solution="Run 'mediabatch config validate' to check your configuration file",
        )
        console.print(f"[red]Configuration Error:[/red] {escape(str(config_error))}")
        sys.exit(1)


@cli.command()
@click.argument("links", nargs=-1)
@click.option(
    "--format",
    "-f",
    "format_name",
    type=click.Choice([f.value for f in DownloadFormat]),
    help="Output format (defaults to the configured format)",
)
@click.option(
    "--dest",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    help="Destination directory",
)
@click.option(
    "--playlist/--no-playlist",
    default=None,
    help="Download the whole playlist a link belongs to",
)
@click.pass_context
def download(
    ctx: click.Context,
    links: tuple[str, ...],
    format_name: str | None,
    dest: Path | None,
    playlist: bool | None,
) -> None:
    """Download LINKS (or links pasted on stdin with '-')."""
    config: MediaBatchConfig = ctx.obj["config"]
    resolver: ExecutableResolver = ctx.obj["resolver"]

    entries = list(links)
    if not entries or entries == ["-"]:
        entries = [click.get_text_stream("stdin").read()]

    require_tools(resolver, config.downloader_binary)

    service = DownloadService(config, resolver)
    fmt = DownloadFormat(format_name) if format_name else None
    try:
        result = run_batch(
            lambda on_progress: service.download(
                entries,
                fmt,
                dest,
                full_playlist=playlist,
                progress_callback=on_progress,
            ),
            service.cancel,
            config,
        )
    except OSError as e:
        handle_error(e)
        sys.exit(1)
    if result is None:
        UserInputError(
            "No links to download",
            solution="Pass one or more links, or pipe text containing links with '-'",
        ).display_to_user()
        sys.exit(1)
    graceful_exit(report_result(result))


def _convert(
    ctx: click.Context,
    files: tuple[Path, ...],
    formats: list[ConvertFormat],
    prores: str | None,
    rescale: str | None,
    output_dir: Path | None,
) -> None:
    config: MediaBatchConfig = ctx.obj["config"]
    resolver: ExecutableResolver = ctx.obj["resolver"]

    if not files:
        UserInputError("No files given").display_to_user()
        sys.exit(1)
    if not formats:
        UserInputError(
            "No output format selected",
            solution="Pass --format, or use files mediabatch recognises as video, audio or image",
        ).display_to_user()
        sys.exit(1)

    require_tools(resolver, config.transcoder_binary)

    console.print(
        f"Converting {len(files)} file(s) to: {', '.join(f.label for f in formats)}",
    )
    service = ConvertService(config, resolver)
    try:
        result = run_batch(
            lambda on_progress: service.convert(
                list(files),
                formats,
                prores_profile=ProResProfile(prores) if prores else None,
                rescale=RescaleOption(rescale) if rescale else None,
                output_dir=output_dir,
                progress_callback=on_progress,
            ),
            service.cancel,
            config,
        )
    except OSError as e:
        handle_error(e)
        sys.exit(1)
    if result is not None:
        for path in service.output_files(result):
            console.print(f"[green]✓[/green] {escape(str(path))}")
    graceful_exit(report_result(result))


_prores_option = click.option(
    "--prores",
    type=click.Choice([p.value for p in ProResProfile]),
    help="ProRes profile (defaults to the configured profile)",
)
_rescale_option = click.option(
    "--rescale",
    type=click.Choice([r.value for r in RescaleOption]),
    help="Scale video and image output",
)
_output_dir_option = click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    help="Write outputs here instead of beside each source",
)


@cli.command()
@click.argument("files", nargs=-1, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "-f",
    "format_names",
    multiple=True,
    type=click.Choice([f.value for f in ConvertFormat]),
    help="Target format; repeat for several",
)
@_prores_option
@_rescale_option
@_output_dir_option
@click.pass_context
def convert(
    ctx: click.Context,
    files: tuple[Path, ...],
    format_names: tuple[str, ...],
    prores: str | None,
    rescale: str | None,
    output_dir: Path | None,
) -> None:
    """Convert FILES into every selected format."""
    formats = [ConvertFormat(name) for name in dict.fromkeys(format_names)]
    if not formats:
        config: MediaBatchConfig = ctx.obj["config"]
        formats = auto_select_formats(files) or [ConvertFormat(config.default_convert_format)]
    _convert(ctx, files, formats, prores, rescale, output_dir)


@cli.command()
@click.argument("files", nargs=-1, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@_rescale_option
@_output_dir_option
@click.pass_context
def webify(
    ctx: click.Context,
    files: tuple[Path, ...],
    rescale: str | None,
    output_dir: Path | None,
) -> None:
    """Convert FILES to web-friendly formats (WebM, WebP, MP3)."""
    _convert(ctx, files, webify_formats(files), None, rescale, output_dir)


@cli.command()
@click.pass_context
def deps(ctx: click.Context) -> None:
    """Show where the external tools were found."""
    config: MediaBatchConfig = ctx.obj["config"]
    resolver: ExecutableResolver = ctx.obj["resolver"]

    table = Table()
    table.add_column("Tool")
    table.add_column("Status")
    table.add_column("Path")
    table.add_column("Version")

    statuses = resolver.check_all(
        [config.downloader_binary, config.transcoder_binary, config.package_manager],
    )
    broken = []
    for status in statuses:
        if not status.installed:
            table.add_row(status.name, "[red]✗ missing[/red]", "-", "-")
            continue
        try:
            version = tool_version(status.name, status.path)
        except ExternalToolError as e:
            broken.append(e)
            table.add_row(status.name, "[yellow]⚠ not working[/yellow]", status.path, "-")
        else:
            table.add_row(status.name, "[green]✓ installed[/green]", status.path, escape(version))

    console.print(table)
    for error in broken:
        error.display_to_user()


@cli.group("config")
@click.pass_context
def config_cmd(ctx: click.Context) -> None:
    """Configuration management commands."""


@config_cmd.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config: MediaBatchConfig = ctx.obj["config"]

    table = Table()
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("Download Directory", str(config.download_dir))
    table.add_row("Log Directory", str(config.log_dir))
    table.add_row("Bundled Binaries", str(config.bundled_bin_dir or "Not configured"))
    table.add_row("Downloader", config.downloader_binary)
    table.add_row("Transcoder", config.transcoder_binary)
    table.add_row("Download Format", config.default_download_format)
    table.add_row("Full Playlists", "Yes" if config.download_full_playlist else "No")
    table.add_row("Convert Format", config.default_convert_format)
    table.add_row("ProRes Profile", config.prores_profile)
    table.add_row("Rescale", config.rescale)

    console.print(table)


@config_cmd.command("validate")
@click.pass_context
def config_validate(ctx: click.Context) -> None:
    """Validate current configuration."""
    config: MediaBatchConfig = ctx.obj["config"]
    resolver: ExecutableResolver = ctx.obj["resolver"]

    console.print("[bold]Configuration Validation[/bold]")

    errors = []

    for name, path in [
        ("Download", config.download_dir),
        ("Log", config.log_dir),
    ]:
        try:
            path.mkdir(parents=True, exist_ok=True)
            console.print(f"[green]✓[/green] {name} directory: {path}")
        except OSError as e:
            console.print(f"[red]✗[/red] {name} directory: {e}")
            errors.append(f"{name} directory: {e}")

    if config.bundled_bin_dir and not config.bundled_bin_dir.is_dir():
        console.print(
            f"[yellow]⚠[/yellow] Bundled binaries directory not found: {config.bundled_bin_dir}",
        )

    for status in resolver.check_all([config.downloader_binary, config.transcoder_binary]):
        if status.installed:
            console.print(f"[green]✓[/green] {status.name}: {status.path}")
        else:
            console.print(f"[red]✗[/red] {status.name} not found")
            errors.append(f"{status.name} not found")

    if errors:
        console.print(f"\n[red]Found {len(errors)} configuration errors[/red]")
        sys.exit(1)
    else:
        console.print("\n[green]Configuration is valid[/green]")


@config_cmd.command("init")
@click.option(
    "--path",
    "-p",
    type=click.Path(path_type=Path),
    default=Path.home() / ".config" / "mediabatch" / "config.toml",
    help="Path for the configuration file",
)
def config_init(path: Path) -> None:
    """Create a sample configuration file."""
    try:
        create_sample_config(path)
        console.print(f"[green]Created sample configuration at {path}[/green]")
        console.print("Please edit the configuration file with your settings.")
    except OSError as e:
        console.print(f"[red]Error creating configuration: {e}[/red]")
        sys.exit(1)


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
