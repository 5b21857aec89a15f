"""Logging setup shared by the CLI and the collector."""
import logging

from pythonjsonlogger.json import JsonFormatter

# Severity between INFO and WARNING used for "not supported" conditions.
NOTICE = 25
logging.addLevelName(NOTICE, "NOTICE")

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_formatter(log_format: str) -> logging.Formatter:
    """Formatter for the configured log format, ``json`` or ``text``."""
    if log_format == "json":
        return JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt=DATE_FORMAT,
            rename_fields={"asctime": "time", "levelname": "level", "name": "logger"}
        )
    return logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt=DATE_FORMAT
    )


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(build_formatter(log_format))
    logging.basicConfig(level=level, handlers=[handler])

    # Reduce noise from some libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
