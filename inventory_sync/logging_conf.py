"""Structured logging for sync runs.

structlog events are handed to stdlib logging as ``extra`` fields, and
python-json-logger writes each one as a JSON line. The application log goes
to ``logs/sync.log`` (errors also to ``logs/error.log``); each run gets its own
``logs/runs/<run_id>.log``. Console output goes to stderr so CLI tables stay clean.
"""

from __future__ import annotations

import logging
import logging.config
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from pythonjsonlogger.json import JsonFormatter

from .config.loader import home_directory

APP_LOGGER = "inventory_sync"
RUN_LOGGER_PREFIX = f"{APP_LOGGER}.run"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# keys stdlib refuses in ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_active: tuple[Path, bool] | None = None


@dataclass(frozen=True, slots=True)
class LogPaths:
    root: Path

    @classmethod
    def current(cls) -> "LogPaths":
        return cls(home_directory() / "logs")

    @property
    def sync_log(self) -> Path:
        return self.root / "sync.log"

    @property
    def error_log(self) -> Path:
        return self.root / "error.log"

    @property
    def runs_dir(self) -> Path:
        return self.root / "runs"

    def run_log(self, run_id: str) -> Path:
        return self.runs_dir / f"{run_id}.log"

    def ensure(self) -> None:
        self.runs_dir.mkdir(parents=True, exist_ok=True)
        self.sync_log.touch(exist_ok=True)
        self.error_log.touch(exist_ok=True)


def _protect_record_attrs(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in [key for key in event_dict if key in _RECORD_ATTRS and key != "exc_info"]:
        event_dict[f"{key}_"] = event_dict.pop(key)
    return event_dict


def _dict_config(paths: LogPaths, verbose: bool) -> dict[str, Any]:
    level = "DEBUG" if verbose else "INFO"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": JsonFormatter, "fmt": JSON_FORMAT}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "level": "DEBUG" if verbose else "WARNING",
                "formatter": "json",
            },
            "sync_file": {
                "class": "logging.FileHandler",
                "filename": str(paths.sync_log),
                "encoding": "utf-8",
                "level": "INFO",
                "formatter": "json",
            },
            "error_file": {
                "class": "logging.FileHandler",
                "filename": str(paths.error_log),
                "encoding": "utf-8",
                "level": "ERROR",
                "formatter": "json",
            },
        },
        "loggers": {
            APP_LOGGER: {
                "handlers": ["console", "sync_file", "error_file"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.stdlib.BoundLogger:
    """Route structlog events into JSON log files under the project home.

    Safe to call repeatedly; handlers are rebuilt only when the log root
    or the verbosity changes.
    """

    global _active
    paths = LogPaths.current()
    paths.ensure()
    if _active != (paths.root, verbose):
        logging.config.dictConfig(_dict_config(paths, verbose))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                _protect_record_attrs,
                structlog.stdlib.render_to_log_kwargs,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )
        _active = (paths.root, verbose)
    return structlog.get_logger(APP_LOGGER)


def run_logger(run_id: str, verbose: bool = False) -> structlog.stdlib.BoundLogger:
    """Logger bound to ``run_id`` whose events are also kept in the run's own file."""

    configure_logging(verbose)
    path = LogPaths.current().run_log(run_id)
    py_logger = logging.getLogger(f"{RUN_LOGGER_PREFIX}.{run_id}")
    if not any(getattr(handler, "baseFilename", None) == str(path) for handler in py_logger.handlers):
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(JsonFormatter(JSON_FORMAT))
        handler.setLevel(logging.DEBUG if verbose else logging.INFO)
        py_logger.addHandler(handler)
    return structlog.get_logger(py_logger.name).bind(run_id=run_id)


def close_run_logger(run_id: str) -> None:
    """Detach and close the run file handler; scheduled runs would otherwise leak one per run."""

    py_logger = logging.getLogger(f"{RUN_LOGGER_PREFIX}.{run_id}")
    for handler in list(py_logger.handlers):
        py_logger.removeHandler(handler)
        handler.close()


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="replace") as stream:
        return list(deque(stream, maxlen=line_count))


def available_run_logs() -> list[Path]:
    """Run logs oldest first (run ids are UTC timestamps)."""

    runs_dir = LogPaths.current().runs_dir
    if not runs_dir.exists():
        return []
    return sorted(runs_dir.glob("*.log"))


def log_dir() -> Path:
    return LogPaths.current().root


__all__ = [
    "LogPaths",
    "available_run_logs",
    "close_run_logger",
    "configure_logging",
    "log_dir",
    "run_logger",
    "tail_log",
]
