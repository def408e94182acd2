"""
Root-logger setup for the hashboost CLI.

``configure_logging(config, debug=...)`` is called once per CLI command, after
the config is loaded and before any data is read. Library modules only ever
do ``logger = logging.getLogger(__name__)``; encoder sizing, zero-filled
inference inputs and failed CV folds all surface through those loggers.

Output
------
Text (default)::

    2026-02-24T15:00:00Z [WARNING] hashboost.encoding.layout: Missing categorical feature ...

JSON lines (``json_format = true`` under ``[logging]``), with any ``extra=``
fields merged in at the top level::

    {"ts": "2026-02-24T15:00:00Z", "level": "WARNING", "logger": "hashboost.ml.model", "msg": "..."}

``AppConfig.debug`` (or ``HASHBOOST_DEBUG=1``) forces DEBUG regardless of
``[logging] level``.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hashboost.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Third-party loggers held at WARNING whatever the configured level.
QUIET_LOGGERS = ("lightgbm", "pyarrow")

_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class _JsonFormatter(logging.Formatter):
    """One JSON object per line: ``ts``, ``level``, ``logger``, ``msg`` (+ ``exc``)."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        payload.update(
            (key, val)
            for key, val in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        return json.dumps(payload, default=str)


def _formatter(config: "LoggingConfig") -> logging.Formatter:
    if config.json_format:
        return _JsonFormatter()
    return logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def _handlers(config: "LoggingConfig", level: int) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    formatter = _formatter(config)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def configure_logging(config: "LoggingConfig", debug: bool = False) -> int:
    """Replace the root logger's handlers according to ``config``.

    Args:
        config: ``[logging]`` section of ``AppConfig``.
        debug:  Force DEBUG level (``AppConfig.debug``).

    Returns:
        The effective root level.
    """
    level = logging.DEBUG if debug else getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=_handlers(config, level), force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return level
