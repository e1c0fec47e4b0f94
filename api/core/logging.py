"""
Logging configuration for the recommendation service.

Modules log through the standard library (logging.getLogger(__name__));
structlog owns the rendering, JSON in deployed environments and a coloured
console format locally. Call setup_logging() once per process: the Celery
worker does it on boot.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from core.config import settings

LOG_DIR = Path("logs")
FILE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Provider SDKs and the ORM log every request at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "google_genai", "sqlalchemy.engine", "celery")

_configured = False


def _renderer(json_output: bool):
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True, exception_formatter=structlog.dev.plain_traceback)


def _rotating_handler(filename: str, level: int) -> RotatingFileHandler:
    LOG_DIR.mkdir(exist_ok=True)
    handler = RotatingFileHandler(LOG_DIR / filename, maxBytes=10 * 1024 * 1024, backupCount=5)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(force: bool = False):
    """Configure structlog and the root logger from settings.

    Repeated calls are no-ops unless force is set.
    """
    global _configured
    if _configured and not force:
        return

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    json_output = settings.log_format == "json"

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(json_output),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(message)s" if json_output else CONSOLE_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [console]

    if settings.environment == "production":
        root.addHandler(_rotating_handler("recommendations.log", logging.DEBUG))
        root.addHandler(_rotating_handler("recommendations_errors.log", logging.ERROR))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
    logging.getLogger(__name__).info(
        f"Logging configured: level={settings.log_level}, format={settings.log_format}, env={settings.environment}"
    )
