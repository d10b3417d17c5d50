import os
import shutil
import signal
import traceback
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError

from bpff.config.loader import ensure_config, load_config
from bpff.config.models import MAX_CONCURRENCY
from bpff.config.workspace import resolve_workspace, validate_roots
from bpff.domain.events import InterruptRequested
from bpff.infrastructure.event_bus import EventBus
from bpff.infrastructure.ffmpeg import FFmpegEncoder
from bpff.infrastructure.ffprobe import FFprobeAdapter
from bpff.infrastructure.logging import setup_logging
from bpff.pipeline.orchestrator import Orchestrator
from bpff.ui.dashboard import Dashboard
from bpff.ui.keyboard import KeyboardListener
from bpff.ui.manager import UIManager

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_USAGE = 2
EXIT_NO_FILES = 3
EXIT_INTERRUPTED = 130

app = typer.Typer(help="bpff - batch re-encode media files in place, keeping only smaller results")


def _fail(message: str, code: int):
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


@app.command()
def run(
    dirs: Optional[List[str]] = typer.Argument(None, help="Source directories (default: current directory)"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to YAML settings (default: workspace settings.yaml)"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", "-j", help="Override number of parallel encodes (1-8)"),
    overwrite: Optional[bool] = typer.Option(None, "--overwrite/--keep-source", help="Replace sources with smaller results, or keep results in the workspace"),
    no_watch: bool = typer.Option(False, "--no-watch", help="Do not watch source directories for changes"),
    rescan: bool = typer.Option(False, "--rescan", help="Ignore the checkpoint's file list and rediscover"),
    reevaluate: bool = typer.Option(False, "--reevaluate", help="Retry files whose earlier output was not smaller"),
    retry_failed: bool = typer.Option(False, "--retry-failed", help="Reset failed-attempt counters"),
    plain: bool = typer.Option(False, "--plain", help="Log to the terminal instead of showing the live dashboard"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides settings)"),
):
    """Re-encode every media file under DIRS, largest first, resuming where the last run stopped."""
    try:
        roots = validate_roots(dirs or [os.getcwd()])
    except ValueError as exc:
        _fail(str(exc), EXIT_USAGE)
    if not roots:
        _fail("No source directories given.", EXIT_USAGE)

    try:
        workspace = resolve_workspace(roots)
    except OSError as exc:
        _fail(f"Cannot create workspace: {exc}", EXIT_FATAL)

    try:
        config = load_config(config_path) if config_path else ensure_config(workspace.settings_file)
    except (OSError, ValueError, ValidationError) as exc:
        _fail(f"Invalid settings: {exc}", EXIT_FATAL)

    # Apply CLI overrides
    if concurrency is not None:
        if not 1 <= concurrency <= MAX_CONCURRENCY:
            _fail(f"--concurrency must be between 1 and {MAX_CONCURRENCY}.", EXIT_USAGE)
        config.general.concurrency = concurrency
    if overwrite is not None: config.general.overwrite = overwrite
    if no_watch: config.watch.enabled = False
    if debug: config.general.debug = True
    if log_path is not None: config.general.log_path = str(log_path)

    log_path_value = Path(config.general.log_path) if config.general.log_path else None
    logger = setup_logging(workspace.root, debug=config.general.debug, log_path=log_path_value, console=plain)
    logger.info(f"bpff started: roots={[str(r) for r in roots]}, workspace={workspace.root}")
    logger.info(
        f"Config: concurrency={config.general.concurrency}, overwrite={config.general.overwrite}, "
        f"watch={config.watch.enabled}, codec={config.encoder.video_codec}, debug={config.general.debug}"
    )

    ffmpeg_binary = config.encoder.binary or shutil.which("ffmpeg")
    if not ffmpeg_binary:
        _fail("ffmpeg not found on PATH (set encoder.binary in settings).", EXIT_FATAL)
    ffprobe_binary = shutil.which("ffprobe")
    if not ffprobe_binary:
        logger.warning("ffprobe not found on PATH, progress percentages will be read from ffmpeg output only")
    probe = FFprobeAdapter(binary=ffprobe_binary) if ffprobe_binary else None
    encoder = FFmpegEncoder(binary=ffmpeg_binary, probe=probe)

    bus = EventBus()
    orchestrator = Orchestrator(
        config=config,
        event_bus=bus,
        workspace=workspace,
        encoder=encoder,
        force_rescan=rescan,
        reevaluate=reevaluate,
        retry_failed=retry_failed,
    )
    UIManager(
        bus,
        orchestrator,
        ui_config=config.ui,
        workspace_dir=workspace.root,
        settings_file=config_path or workspace.settings_file,
    )
    keyboard = KeyboardListener(bus)

    def on_sigterm(signum, frame):
        logger.info("SIGTERM received")
        bus.publish(InterruptRequested())

    previous_sigterm = signal.signal(signal.SIGTERM, on_sigterm)
    start_time = datetime.now()
    try:
        keyboard.start()
        try:
            if plain:
                summary = orchestrator.run(roots)
            else:
                with Dashboard(orchestrator.snapshot, refresh_per_second=config.ui.refresh_per_second):
                    summary = orchestrator.run(roots)
        finally:
            keyboard.stop()
            signal.signal(signal.SIGTERM, previous_sigterm)

    except KeyboardInterrupt:
        orchestrator.teardown()
        typer.secho("\nStopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=EXIT_INTERRUPTED)

    except Exception as e:
        logger.error(f"Fatal error: {e}\n{traceback.format_exc()}")
        orchestrator.teardown()
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_FATAL)

    elapsed = (datetime.now() - start_time).total_seconds()
    logger.info(
        f"bpff finished: found={summary.files_found}, completed={summary.completed}, "
        f"interrupted={summary.interrupted}, elapsed={elapsed:.1f}s"
    )
    if summary.files_found == 0:
        typer.secho("No files found.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=EXIT_NO_FILES)
    if summary.interrupted:
        typer.secho("Interrupted, progress saved.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=EXIT_INTERRUPTED)
    typer.secho(f"Done: {summary.completed} file(s) processed.", fg=typer.colors.GREEN)
    raise typer.Exit(code=EXIT_OK)


if __name__ == "__main__":
    app()
