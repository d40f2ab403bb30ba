import json
import logging
import os
import sys

from .git.remote import redact_credentials

_DATEFMT = "%Y-%m-%d %H:%M:%S"


class RedactingFilter(logging.Filter):
    """Mask ``user:token@`` credentials in URLs before a record is emitted."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_credentials(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

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


def _formatter(log_format: str, with_name: bool) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(datefmt=_DATEFMT)
    fmt = "[%(asctime)s] [%(levelname)s] "
    if with_name:
        fmt += "%(name)s "
    return logging.Formatter(fmt + "%(message)s", datefmt=_DATEFMT)


def resolve_level(debug: bool = False, level: str | None = None) -> int:
    """Effective log level.

    ``debug`` wins, then ``MDX_SYNC_LOG_LEVEL``, then ``LOG_LEVEL``, then
    *level* (typically from the config file), then INFO.
    """
    if debug:
        return logging.DEBUG
    name = (
        os.getenv("MDX_SYNC_LOG_LEVEL")
        or os.getenv("LOG_LEVEL")
        or level
        or "INFO"
    ).upper()
    return getattr(logging, name, logging.INFO)


def setup_logging(
    debug: bool = False,
    log_file: str | None = None,
    log_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure root logging for a sync process.

    Logs always go to stderr; when *log_file* is given they are also
    appended there (with logger names).  Credentials embedded in URLs are
    masked on every handler.

    Args:
        debug: Force DEBUG level.
        log_file: Optional additional log file.
        log_format: "text" (default) or "json" for one JSON object per line.
        level: Fallback level name when no env var sets one.

    Environment variables:
        MDX_SYNC_LOG_LEVEL / LOG_LEVEL: DEBUG, INFO, WARNING, ERROR.
    """
    log_level = resolve_level(debug, level)
    redactor = RedactingFilter()

    handlers: list[logging.Handler] = []
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_formatter(log_format, with_name=False))
    handlers.append(stderr_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(_formatter(log_format, with_name=True))
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(redactor)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)
        logging.getLogger("charset_normalizer").setLevel(logging.WARNING)
