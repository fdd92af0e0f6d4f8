# core/logger.py
"""Shared logger for the exui-e2e tooling.

Exposes:
  LOGGER    — standard Python logger, level from LOG_LEVEL (default INFO)
  LogStream — Register/Unregister extra streams per test

On CI (CI=true or CI=1) records are emitted as one JSON object per line so
the pipeline log parser can pick out the structured fields passed via
``extra``.
"""

import itertools
import logging
import os
import sys

from pythonjsonlogger import jsonlogger

_TEXT_FORMAT = "%(asctime)s %(name)s [%(process)d] %(levelname)-5s %(message)s"
_JSON_FORMAT = "%(asctime)s %(levelname)s %(message)s"


class JsonFormatter(jsonlogger.JsonFormatter):
    """One JSON object per record: timestamp, level, service, message and any extras."""

    def __init__(self, service: str) -> None:
        super().__init__(
            _JSON_FORMAT,
            datefmt="%Y-%m-%dT%H:%M:%S",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": service},
        )

    def add_fields(self, log_record, record, message_dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname.lower()


def _is_ci(env=None) -> bool:
    env = os.environ if env is None else env
    return env.get("CI", "").lower() in ("true", "1")


def resolve_level(value: str | None) -> int:
    """Map a LOG_LEVEL name to its number; unknown names fall back to INFO."""
    level = logging.getLevelName((value or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def make_formatter(service: str = "exui-e2e", env=None) -> logging.Formatter:
    if _is_ci(env):
        return JsonFormatter(service)
    return logging.Formatter(_TEXT_FORMAT)


LOGGER = logging.getLogger("exui_e2e")
LOGGER.setLevel(resolve_level(os.environ.get("LOG_LEVEL")))

_handler = logging.StreamHandler(sys.stderr)
_handler.setFormatter(make_formatter())
LOGGER.addHandler(_handler)


class LogStream:
    """Registers a stream so that it receives log messages.

    Used by UITestCase.setUp/tearDown to capture per-test log output.
    """

    __STREAMS: dict[int, logging.Handler] = {}
    __ID = itertools.count()

    @classmethod
    def Register(cls, stream) -> int:
        """Attach stream to LOGGER. Returns an ID for Unregister."""
        handler = logging.StreamHandler(stream)
        handler.setFormatter(_handler.formatter)
        LOGGER.addHandler(handler)
        _id = next(cls.__ID)
        cls.__STREAMS[_id] = handler
        return _id

    @classmethod
    def Unregister(cls, _id: int) -> None:
        """Detach the stream registered under _id."""
        handler = cls.__STREAMS.pop(_id, None)
        if handler:
            LOGGER.removeHandler(handler)
