"""
Centralised logging configuration - powered by **loguru**.

Usage (any module)::

    from loguru import logger
    logger.info("Routing to {}", agent.name)

Usage (entry-points - scripts, CLI)::

    from infrastructure.log import setup_logging
    setup_logging()                      # level from config/param.yaml
    setup_logging("DEBUG")               # chunk-level detail
    setup_logging(log_file="router.log") # plus a rotating file sink

Library modules never configure sinks themselves; only entry points call
``setup_logging()``.
"""

from __future__ import annotations

import logging
import sys
from typing import Iterable, Optional

from loguru import logger


_FMT_CONSOLE = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

_FMT_FILE = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Chatty libraries whose INFO/DEBUG output drowns the routing narration
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "sqlalchemy.engine", "aiosqlite", "opentelemetry")


class _InterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records into loguru, preserving the caller."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _quiet(names: Iterable[str], level: int = logging.WARNING) -> None:
    for name in names:
        logging.getLogger(name).setLevel(level)


def setup_logging(
    level: Optional[str] = None,
    *,
    log_file: Optional[str] = None,
    intercept_stdlib: bool = True,
) -> None:
    """
    Configure loguru for the current process.

    Args:
        level: Minimum log level; defaults to ``LOG_LEVEL`` from config.
        log_file: Optional path to a rotating log file; defaults to
            ``logging.file`` from config.
        intercept_stdlib: Route stdlib ``logging`` (SQLAlchemy, httpx,
            openai) through loguru.
    """
    from infrastructure.config import LOG_FILE, LOG_LEVEL

    level = (level or LOG_LEVEL).upper()
    log_file = log_file or LOG_FILE

    logger.remove()
    logger.add(
        sys.stderr,
        format=_FMT_CONSOLE,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        logger.add(
            log_file,
            format=_FMT_FILE,
            level=level,
            rotation="10 MB",
            retention="7 days",
            compression="gz",
            enqueue=True,
        )

    if intercept_stdlib:
        logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
        _quiet(_NOISY_LOGGERS)

    logger.debug("Loguru configured - level={}, file={}", level, log_file or "-")
