import logging
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

def setup_logging(log_dir: Path, debug: bool = False, log_path: Optional[Path] = None, console: bool = False) -> logging.Logger:
    """
    Setup logging configuration for bpff.

    Creates the workspace directory and the bpff.log file.
    Returns configured logger instance.

    Args:
        log_dir: Workspace directory where the log file is written
        debug: If True, enable DEBUG level logging
        log_path: Optional path to log file (overrides log_dir)
        console: If True, also log to the terminal (used when the live dashboard is off)
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (log_dir / "bpff.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    handlers = [logging.FileHandler(log_file)]
    if console:
        handlers.append(RichHandler(show_path=False, markup=False))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )
    if console:
        # RichHandler renders its own timestamp and level
        handlers[1].setFormatter(logging.Formatter('%(message)s'))

    # watchdog is chatty at DEBUG
    logging.getLogger("watchdog").setLevel(logging.INFO)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
