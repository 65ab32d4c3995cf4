"""
Loguru setup for the watcher.

Everything goes to stderr; a rotating file sink is added when ``logging.file``
is configured. Records from stdlib loggers (httpx, asyncio) are re-emitted
through Loguru so there is a single output format.
"""

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from loguru import logger

if TYPE_CHECKING:
    from types import FrameType

    from market_watcher.utils.config_loader import LoggingConfig

# Request lines from httpx contain the bot token in the URL path.
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str = logger.level(record.levelname).name
        except ValueError:
            level = str(record.levelno)

        # Walk out of the logging module so Loguru reports the real caller.
        frame: Optional["FrameType"] = logging.currentframe()
        depth = 0
        while frame is not None and frame.f_code.co_filename in (logging.__file__, __file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _add_console_sink(level: str, fmt: Optional[str]) -> None:
    options = {"level": level, "colorize": True, "enqueue": True, "catch": True, "backtrace": False, "diagnose": False}
    if fmt:
        options["format"] = fmt
    logger.add(sys.stderr, **options)


def _add_file_sink(logging_config: "LoggingConfig") -> bool:
    target = Path(logging_config.file)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(target),
            level=logging_config.level,
            format=logging_config.format,
            rotation=logging_config.rotation,
            retention=logging_config.retention,
            compression=logging_config.compression,
            enqueue=True,
            catch=True,
            backtrace=False,
            diagnose=False,
        )
    except (OSError, ValueError) as e:
        logger.error(f"File logging to {target} unavailable, continuing on stderr only: {e}")
        return False
    return True


class LoggerSetup:
    """One-shot logger configuration; later calls are ignored."""

    _initialized: bool = False

    @classmethod
    def setup_logger(cls, logging_config: Optional["LoggingConfig"]) -> None:
        if cls._initialized:
            return

        logger.remove()
        level = logging_config.level if logging_config else "INFO"
        _add_console_sink(level, logging_config.format if logging_config else None)

        file_sink = False
        if logging_config and logging_config.file:
            file_sink = _add_file_sink(logging_config)

        logging.basicConfig(handlers=[InterceptHandler()], level=logging.getLevelName(level), force=True)
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        cls._initialized = True
        logger.info(f"Logging at {level}" + (f", file sink {logging_config.file}" if file_sink else ", stderr only"))


LOGGER = logger
__all__ = ["logger", "LOGGER", "LoggerSetup", "InterceptHandler"]
