"""Logging configuration for hosts embedding the tool loop.

Library modules only ever call ``logging.getLogger(__name__)``; this module is
the single place that attaches handlers. Hosts describe what they want with a
:class:`LogConfig` (usually via :meth:`LogConfig.for_debug` from the
``debug_logging`` setting) and call :func:`setup_logging`.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path

__all__ = ["LogConfig", "setup_logging", "get_log_path", "active_config", "LOG_FILE_NAME"]

LOG_FILE_NAME = "switchboard.log"
_DEFAULT_LOG_DIR = Path.home() / ".switchboard" / "logs"
_LOG_DIR_ENV = "SWITCHBOARD_LOG_DIR"
_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Client libraries that log every request at DEBUG.
_CHATTY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_active: LogConfig | None = None
_log_path: Path | None = None


@dataclass(slots=True, frozen=True)
class LogConfig:
    """Where and how verbosely the host logs.

    Attributes:
        level: Root level applied to every handler.
        log_dir: Directory for the rotating log file. Falls back to
            ``SWITCHBOARD_LOG_DIR`` and then ``~/.switchboard/logs``.
        console: Whether to mirror records to stderr.
        max_bytes: Size at which the log file rotates.
        backup_count: Rotated files kept on disk.
    """

    level: int = logging.INFO
    log_dir: Path | None = None
    console: bool = True
    max_bytes: int = 1_000_000
    backup_count: int = 3

    @classmethod
    def for_debug(cls, enabled: bool, **kwargs) -> LogConfig:
        """Config at DEBUG when ``enabled`` else INFO."""
        return cls(level=logging.DEBUG if enabled else logging.INFO, **kwargs)

    def resolve_dir(self) -> Path:
        return Path(self.log_dir or os.environ.get(_LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()


def setup_logging(config: LogConfig | None = None, *, force: bool = False) -> Path:
    """Attach file (and optionally console) handlers to the root logger.

    Calling again with an equal config is a no-op unless ``force`` is set, so
    hosts can re-apply settings freely. A different config (for example after
    ``debug_logging`` was toggled) replaces the previous handlers.

    Returns:
        Path of the active log file.
    """
    global _active, _log_path
    config = config or LogConfig()
    if not force and _log_path is not None and config == _active:
        return _log_path

    target_dir = config.resolve_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / LOG_FILE_NAME

    logging.basicConfig(level=config.level, handlers=_build_handlers(config, log_path), force=True)
    logging.captureWarnings(True)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(config.level, logging.WARNING))

    _active = config
    _log_path = log_path
    logging.getLogger(__name__).debug(
        "Logging configured: level=%s file=%s", logging.getLevelName(config.level), log_path
    )
    return log_path


def get_log_path() -> Path | None:
    """Return the currently configured log file if available."""
    return _log_path


def active_config() -> LogConfig | None:
    return _active


def _build_handlers(config: LogConfig, log_path: Path) -> list[logging.Handler]:
    formatter = logging.Formatter(fmt=_LOG_FORMAT, datefmt=_DATE_FORMAT)
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    ]
    if config.console:
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(config.level)
        handler.setFormatter(formatter)
    return handlers
