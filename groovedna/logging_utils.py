"""Package logging wired from EngineSettings.

`debug` picks the console verbosity and `log_dir` the rotating log file.
Calling `configure_logging` again with different settings swaps only the
handlers installed here, so host applications keep their own.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from .settings import EngineSettings, debug_from_env

_LOGGER = logging.getLogger("groovedna.logging")
_PACKAGE_LOGGER = "groovedna"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_MAX_LOG_BYTES = 1_000_000
_LOG_BACKUPS = 3


@dataclass
class _LoggingState:
    handlers: list[logging.Handler] = field(default_factory=list)
    log_path: Path | None = None
    debug: bool = False
    configured: bool = False


_STATE = _LoggingState()


def _console_handler(debug: bool) -> logging.Handler:
    handler = RichHandler(
        console=Console(stderr=True),
        show_time=False,
        show_path=debug,
        markup=False,
        rich_tracebacks=debug,
    )
    handler.setLevel(logging.DEBUG if debug else logging.INFO)
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=_MAX_LOG_BYTES,
        backupCount=_LOG_BACKUPS,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATE_FORMAT))
    return handler


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in _STATE.handlers:
        logger.removeHandler(handler)
        handler.close()
    _STATE.handlers.clear()


def configure_logging(settings: EngineSettings | None = None, *, force: bool = False) -> Path:
    """Install console and file handlers on the `groovedna` logger; return the log path.

    A repeat call with the same log path and debug flag is a no-op unless `force`.
    """
    resolved = settings or EngineSettings.from_env()
    log_path = resolved.log_path
    if (
        _STATE.configured
        and not force
        and _STATE.log_path == log_path
        and _STATE.debug == resolved.debug
    ):
        return log_path

    logger = logging.getLogger(_PACKAGE_LOGGER)
    _drop_handlers(logger)
    logger.setLevel(logging.DEBUG)
    # Host applications and test harnesses still see records.
    logger.propagate = True

    handlers = [_console_handler(resolved.debug)]
    try:
        handlers.append(_file_handler(log_path))
    except OSError as exc:
        _LOGGER.warning("File logging disabled (%s): %s", log_path, exc)
    for handler in handlers:
        logger.addHandler(handler)

    _STATE.handlers.extend(handlers)
    _STATE.log_path = log_path
    _STATE.debug = resolved.debug
    _STATE.configured = True
    return log_path


def debug_enabled() -> bool:
    return _STATE.debug or debug_from_env()


def get_log_path(settings: EngineSettings | None = None) -> Path:
    if settings is not None:
        return settings.log_path
    if _STATE.log_path is not None:
        return _STATE.log_path
    return EngineSettings.from_env().log_path


def log_exception(
    context: str,
    exc: BaseException,
    *,
    settings: EngineSettings | None = None,
) -> Path | None:
    """Append a timestamped traceback to the log file; None if it cannot be written."""
    path = get_log_path(settings)
    lines = [f"[{datetime.now().isoformat(timespec='seconds')}] {context} failed: {type(exc).__name__}: {exc}\n"]
    lines.extend(traceback.format_exception(type(exc), exc, exc.__traceback__))
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as handle:
            handle.writelines(lines)
            handle.write("\n")
    except OSError as log_exc:
        _LOGGER.warning("Failed to write log file %s: %s", path, log_exc)
        return None
    return path
