# logging_utils.py
import logging
import sys
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_FILENAME = "micap-client.log"
DEFAULT_ROTATION = "10 MB"
DEFAULT_RETENTION = 20  # newest rotated files kept
DEFAULT_FILE_LEVEL = "DEBUG"

# Serial lines and tracker churn are noisy; the module column tells them apart
CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | {message}"
)

RotationRule = str | int | float | timedelta | Callable[[Any, Any], bool]
RetentionRule = str | int | float | timedelta | Callable[[list[Any]], Any]


class InterceptHandler(logging.Handler):
    """Redirect stdlib logging to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except (ValueError, TypeError):
            level = record.levelno

        # Report the original call site rather than the logging module
        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _console_sink_options(level: str, as_json: bool) -> dict[str, Any]:
    options: dict[str, Any] = {
        "level": level.upper(),
        "serialize": as_json,
        "enqueue": True,
        "backtrace": False,
        "diagnose": False,
    }
    if not as_json:
        options["format"] = CONSOLE_FORMAT
    return options


def _add_file_sink(
    log_dir: Path,
    level: str,
    rotation: RotationRule | None,
    retention: RetentionRule | None,
) -> Path | None:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error(f"Cannot create log directory {log_dir}: {exc}")
        return None

    log_file = log_dir / DEFAULT_LOG_FILENAME
    logger.add(
        log_file,
        level=level.upper(),
        serialize=True,
        rotation=DEFAULT_ROTATION if rotation is None else rotation,
        retention=DEFAULT_RETENTION if retention is None else retention,
        enqueue=True,
        backtrace=False,
        diagnose=False,
    )
    logger.info(f"Writing JSON logs to {log_file}")
    return log_file


def configure_logging(
    log_dir: Path | None,
    console_level: str = "INFO",
    console_json: bool = False,
    rotation: RotationRule | None = None,
    retention: RetentionRule | None = None,
    file_level: str = DEFAULT_FILE_LEVEL,
) -> Path | None:
    """
    Route the client's logging into loguru sinks.

    Library modules only call ``logging.getLogger(__name__)``; nothing is
    emitted until an application (the CLI, or a host embedding the client)
    calls this once at startup.

    Args:
        log_dir: Directory for `micap-client.log`; no file sink when None.
        console_level: Console level string (e.g., INFO/DEBUG).
        console_json: Emit console as JSON when True; otherwise colored text.
        rotation: loguru rotation rule for the file sink (default: 10 MB).
        retention: loguru retention rule for the file sink (default: 20 files).
        file_level: Minimum level written to the file sink.

    Returns:
        Path of the log file, or None when file logging is disabled or the
        directory could not be created.
    """
    logger.remove()
    logger.add(sys.stderr, **_console_sink_options(console_level, console_json))

    log_file: Path | None = None
    if log_dir is not None:
        log_file = _add_file_sink(Path(log_dir), file_level, rotation, retention)

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.NOTSET, force=True)
    logging.captureWarnings(True)
    return log_file
