import json
import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from settings_sync.config_schema import LoggingConfig

_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured debug output.

    Produces one JSON object per log record with fields: ts, level, logger, msg.
    Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging for a sync run.

    Logs always go to stderr so stdout stays free for reports; a log file
    can be added on top.

    Args:
        debug: If True, overrides the level to DEBUG.
        log_file: Optional log file path (appended to).
        debug_format: "text" (default) or "json" for structured output.
        level: Level name from the config file; LOG_LEVEL wins over it.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: INFO.
    """
    env_level = os.getenv("LOG_LEVEL", level or "INFO").upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    def _formatter(with_name: bool) -> logging.Formatter:
        if debug_format == "json":
            return JsonFormatter(datefmt=_DATEFMT)
        fmt = (
            "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
            if with_name
            else "[%(asctime)s] [%(levelname)s] %(message)s"
        )
        return logging.Formatter(fmt, datefmt=_DATEFMT)

    handlers: list[logging.Handler] = []
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_formatter(with_name=False))
    handlers.append(stderr_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(_formatter(with_name=True))
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
    )

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("charset_normalizer").setLevel(logging.WARNING)


def configure_logging(
    config: "LoggingConfig", debug: bool = False, debug_format: str = "text"
) -> None:
    """Apply the ``logging`` section of the unified config."""
    setup_logging(
        debug=debug,
        log_file=config.file,
        debug_format=debug_format,
        level=config.level,
    )
