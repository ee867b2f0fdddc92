"""
Logging setup: everything goes through loguru.

Standard library loggers (uvicorn, SQLAlchemy, httpx, openai) are routed into
loguru through an intercepting handler so the process has a single sink.
"""
import logging
import sys

from loguru import logger

NOISY_LOGGERS = ("openai", "httpcore", "httpx", "urllib3", "sqlalchemy.engine", "aiosqlite")


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO") -> None:
    # Intercept everything at the root logger
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logger.configure(handlers=[{"sink": sys.stdout, "serialize": False, "level": level.upper()}])
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
