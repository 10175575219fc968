import typer
from pathlib import Path
from typing import List, Optional
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from clipmerge.config.loader import load_config
from clipmerge.config.models import AppConfig
from clipmerge.domain.errors import MergeError
from clipmerge.domain.events import MergeProgressUpdated, MergeStageChanged
from clipmerge.infrastructure.logging import setup_logging
from clipmerge.pipeline.services import build_services

app = typer.Typer(help="clipmerge - merge uploaded video clips into one MP4")

DEFAULT_CONFIG = Path("conf/clipmerge.yaml")
DEFAULT_LOG_DIR = Path("logs")
CLI_SUBSCRIBER = "cli"


def _load(config_path: Optional[Path], videos_dir: Optional[Path] = None, debug: bool = False) -> AppConfig:
    try:
        config = load_config(config_path)
    except Exception as e:
        typer.secho(f"Error: invalid config {config_path}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if videos_dir is not None:
        config.storage.videos_dir = str(videos_dir)
    if debug:
        config.general.debug = True
    return config


def _log_path(config: AppConfig) -> Optional[Path]:
    return Path(config.general.log_path) if config.general.log_path else None


@app.command()
def serve(
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (overrides config)"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Listen port (overrides config and PORT)"),
    videos_dir: Optional[Path] = typer.Option(None, "--videos-dir", help="Storage directory (overrides config)"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Run the HTTP service (upload, merge, cleanup, progress websocket)."""
    import uvicorn
    from clipmerge.infrastructure.web_server import create_app

    config = _load(config_path, videos_dir, debug)
    if host:
        config.server.host = host
    if port:
        config.server.port = port

    setup_logging(DEFAULT_LOG_DIR, debug=config.general.debug, log_path=_log_path(config))
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level="debug" if config.general.debug else "info",
    )


@app.command()
def merge(
    videos_dir: Path = typer.Argument(..., help="Directory holding the session's clips"),
    session_id: str = typer.Argument(..., help="Session id (letters, digits, '-')"),
    clips: Optional[List[Path]] = typer.Option(None, "--clip", help="Add a clip to the session before merging (repeatable)"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Merge a session's clips locally, showing ffmpeg progress."""
    config = _load(config_path, videos_dir, debug)
    setup_logging(DEFAULT_LOG_DIR, debug=config.general.debug, log_path=_log_path(config), console=False)
    services = build_services(config)
    console = Console()

    for clip in clips or []:
        if not clip.is_file():
            typer.secho(f"Error: clip not found: {clip}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        try:
            with open(clip, "rb") as f:
                stored = services.registry.put_clip(session_id, f, clip.suffix)
        except ValueError as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        except MergeError as e:
            typer.secho(f"Error: {e.reason}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        console.print(f"[dim]Added {clip.name} as {stored.name}[/dim]")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>5.1f}%"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        task = progress.add_task("Starting merge...", total=100)

        def on_stage(event: MergeStageChanged):
            progress.update(task, description=event.message or event.state.value, completed=0)

        def on_progress(event: MergeProgressUpdated):
            progress.update(task, description=event.message, completed=event.snapshot.percent)

        services.event_bus.subscribe(MergeStageChanged, on_stage)
        services.event_bus.subscribe(MergeProgressUpdated, on_progress)
        try:
            result = services.orchestrator.merge(session_id, subscriber_id=CLI_SUBSCRIBER)
        except ValueError as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        except MergeError as e:
            progress.stop()
            typer.secho(f"Merge failed: {e.reason}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        progress.update(task, description="Merge complete", completed=100)

    console.print(
        f"[bold green]Merged[/bold green] {result.output_path} "
        f"({result.duration_seconds:.2f}s, {result.size_bytes} bytes)"
    )
    if result.duration_mismatch:
        typer.secho(
            f"Warning: expected {result.expected_duration_seconds:.2f}s, got {result.duration_seconds:.2f}s",
            fg=typer.colors.YELLOW,
        )


@app.command()
def cleanup(
    videos_dir: Optional[Path] = typer.Argument(None, help="Storage directory (overrides config)"),
    config_path: Optional[Path] = typer.Option(DEFAULT_CONFIG, "--config", "-c", help="Path to YAML config"),
):
    """Remove expired uploads and intermediates once (outputs are kept)."""
    config = _load(config_path, videos_dir)
    setup_logging(DEFAULT_LOG_DIR, debug=config.general.debug, log_path=_log_path(config), console=False)
    services = build_services(config)
    removed = services.housekeeper.cleanup_expired()
    typer.echo(f"Removed {len(removed)} expired file(s) from {services.registry.videos_dir}")


if __name__ == "__main__":
    app()
