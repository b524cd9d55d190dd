from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    verbose: bool = False,
    logger_name: Optional[str] = None,
) -> logging.Logger:
    """
    Configure process-wide logging and return a scoped logger.

    Console output goes through Rich; when *log_dir* is given every record is
    also appended to ``combined.log`` and errors to ``error.log``.
    """
    resolved_level = logging.DEBUG if verbose else logging.getLevelName(level.upper())
    if not isinstance(resolved_level, int):
        resolved_level = logging.INFO

    handlers: list[logging.Handler] = [
        RichHandler(console=Console(stderr=True), show_time=True, show_path=False),
    ]
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

        combined = logging.FileHandler(log_dir / "combined.log", encoding="utf-8")
        combined.setFormatter(file_formatter)
        errors = logging.FileHandler(log_dir / "error.log", encoding="utf-8")
        errors.setLevel(logging.ERROR)
        errors.setFormatter(file_formatter)
        handlers.extend([combined, errors])

    logging.basicConfig(
        level=resolved_level,
        format="%(message)s",
        datefmt=DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
    logger = logging.getLogger(logger_name or "checkin_agent")
    logger.debug("Logging configured with level %s", logging.getLevelName(resolved_level))
    return logger
