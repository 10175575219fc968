import logging
import sys
from pathlib import Path
from typing import Optional

def setup_logging(log_dir: Path, debug: bool = False, log_path: Optional[Path] = None, console: bool = True) -> logging.Logger:
    """
    Setup logging configuration for clipmerge.

    Creates the log directory and clipmerge.log file.
    Returns configured logger instance.

    Args:
        log_dir: Directory where the log file is written (kept apart from the videos dir)
        debug: If True, enable DEBUG level logging including ffmpeg command lines
        log_path: Optional path to log file (overrides log_dir)
        console: Also log to stderr (service mode); the CLI merge turns it off
            so the progress bar stays readable
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (log_dir / "clipmerge.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    handlers = [logging.FileHandler(log_file)]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
