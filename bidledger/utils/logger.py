"""
Logging for the bid ledger.

Everything logs under the ``bidledger`` namespace:

- ``bidledger.auction``: auction creation, accepted bids, deadline resets,
  the end of the auction, refund sweeps and owner payouts
- ``bidledger.accounts``: minting and transfers, including refused ones
- ``bidledger.events``: every emitted event (debug) and failing subscribers
- ``bidledger.storage.*``: database location and each save/load

Console output is colored with colorlog and goes to stderr so CLI output on
stdout stays clean. ``BIDLEDGER_LOG_TO_FILE`` adds a plain-text copy in
``<log_dir>/bidledger.log``.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import colorlog

ROOT_LOGGER = "bidledger"
LOG_FILE = "bidledger.log"

_LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def _console_handler(level: int) -> logging.Handler:
    handler = colorlog.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(asctime)s [%(name)s] %(levelname)-8s%(reset)s %(message)s",
        datefmt="%H:%M:%S",
        log_colors=_LEVEL_COLORS,
    ))
    return handler


def _file_handler(log_dir: Path, level: int) -> logging.Handler:
    log_dir.mkdir(exist_ok=True, parents=True)
    handler = logging.FileHandler(log_dir / LOG_FILE)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)-8s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    return handler


class LedgerLogger:
    """Owns the handlers of the ``bidledger`` logger tree."""

    _initialized = False
    _log_file: Optional[Path] = None

    @classmethod
    def setup(
        cls,
        level: int = logging.INFO,
        log_dir: Optional[Union[str, Path]] = None,
        log_to_file: bool = False,
        force: bool = False,
    ):
        """
        Install console (and optionally file) handlers.

        Library use gets console output at INFO on first ``get_logger``;
        the CLI calls ``setup_logging`` to apply ``--debug`` and settings.

        Args:
            level: Threshold for both handlers
            log_dir: Directory for ``bidledger.log`` (default ./logs)
            log_to_file: Also write to the log file
            force: Replace handlers installed by an earlier call
        """
        if cls._initialized and not force:
            return

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(level)
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()

        root.addHandler(_console_handler(level))
        cls._log_file = None
        if log_to_file:
            directory = Path(log_dir) if log_dir else Path("logs")
            root.addHandler(_file_handler(directory, level))
            cls._log_file = directory / LOG_FILE

        cls._initialized = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        """Child logger ``bidledger.<name>`` (e.g. 'auction', 'storage.sqlite')."""
        if not cls._initialized:
            cls.setup()
        return logging.getLogger(f"{ROOT_LOGGER}.{name}")

    @classmethod
    def log_file(cls) -> Optional[Path]:
        """Path of the active log file, if file logging is on."""
        return cls._log_file


def get_logger(name: str) -> logging.Logger:
    return LedgerLogger.get_logger(name)


def setup_logging(
    level: int = logging.INFO,
    log_dir: Optional[Union[str, Path]] = None,
    log_to_file: bool = False,
):
    """(Re)configure logging from CLI options and settings."""
    LedgerLogger.setup(level=level, log_dir=log_dir, log_to_file=log_to_file, force=True)
