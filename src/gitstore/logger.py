import json
import logging
import os
import sys


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per log record with fields: ts, level, logger,
    thread, msg.  Exception info is included as an "exc" field when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _formatter(fmt: str, with_name: bool) -> logging.Formatter:
    if fmt == "json":
        return JsonFormatter(datefmt="%Y-%m-%d %H:%M:%S")
    pattern = "[%(asctime)s] [%(levelname)s] [%(threadName)s] "
    if with_name:
        pattern += "%(name)s "
    return logging.Formatter(pattern + "%(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    debug: bool = False,
    log_file: str | None = None,
    fmt: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging for the store and its sync worker.

    Args:
        debug: If True, overrides the level to DEBUG.
        log_file: Optional log file path; records go to stderr and the file.
        fmt: "text" (default) or "json" for structured output.
        level: Level name from configuration; ``LOG_LEVEL`` takes
            precedence when set.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: *level*, else INFO.
    """
    env_level = os.getenv("LOG_LEVEL", level or "INFO").upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    # stderr only; stdout belongs to the embedding application
    handlers: list[logging.Handler] = []
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_formatter(fmt, with_name=False))
    handlers.append(stderr_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setFormatter(_formatter(fmt, with_name=True))
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )
