import logging
from pathlib import Path
from typing import Optional
from rich.logging import RichHandler

def setup_logging(output_dir: Path, debug: bool = False, log_path: Optional[Path] = None, console: bool = True) -> logging.Logger:
    """
    Setup logging configuration for convwatch.

    Creates output directory and convwatch.log file, and mirrors records to the
    terminal through rich unless ``console`` is False.
    Returns configured logger instance.

    Args:
        output_dir: Directory where converted files are written
        debug: If True, enable DEBUG level logging (ffmpeg commands, scans)
        log_path: Optional path to log file (overrides output_dir)
        console: If True, also log to the terminal
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (output_dir / "convwatch.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    handlers = [logging.FileHandler(log_file)]
    handlers[0].setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(message)s'))
    if console:
        handlers.append(RichHandler(show_path=False, rich_tracebacks=True))

    logging.basicConfig(
        level=level,
        format='%(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
