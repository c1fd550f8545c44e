"""
Logging setup for the SDRR tools.

Library modules only ever call ``logging.getLogger(__name__)``; handlers
are installed here, by the CLI or by an application embedding the
package. Console output goes through rich, file output (if asked for)
captures everything at DEBUG.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

__all__ = ['setup_logging', 'level_for', 'FILE_FORMAT']

FILE_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def level_for(verbose: int = 0, quiet: bool = False) -> int:
    """Console level for -v/-q style flags."""
    if quiet:
        return logging.ERROR
    if verbose == 0:
        return logging.WARNING
    if verbose == 1:
        return logging.INFO
    return logging.DEBUG


def setup_logging(
    name: str = "sdrr_fw",
    console_level: int = logging.WARNING,
    log_file: Optional[Union[str, Path]] = None,
    rich_console: bool = True,
) -> logging.Logger:
    """
    Configure and return the package logger.

    Calling again replaces the handlers previously installed here, so the
    CLI can be run repeatedly in one process (tests do).
    """
    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        if getattr(handler, "_sdrr_fw", False):
            logger.removeHandler(handler)
            handler.close()

    level = console_level
    if rich_console:
        ch = RichHandler(
            level=console_level,
            console=Console(stderr=True),
            show_time=True,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    else:
        ch = logging.StreamHandler()
        ch.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    ch.setLevel(console_level)
    ch._sdrr_fw = True
    logger.addHandler(ch)

    # ── File handler: captures everything (DEBUG+) ──
    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_path, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATEFMT))
        fh._sdrr_fw = True
        logger.addHandler(fh)
        level = logging.DEBUG

    logger.setLevel(level)
    logger.debug("Logger initialized: %s (console %s, file %s)", name,
                 logging.getLevelName(console_level), log_file)
    return logger
