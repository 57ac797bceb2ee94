#!/usr/bin/env python3
"""
Run Context - logging and run metadata for the ETF replica.

Provides:
  - one-time logging setup for the ``replica`` logger tree
    (human-readable console + optional structured JSON file log)
  - run_id generation (UUID4) per backtest request
  - run metadata (timestamps, elapsed time, versions)

Usage:
    configure_logging("INFO", log_dir="runs")
    ctx = RunContext()
    ctx.log.info("Fetching prices", extra={"phase": "prices", "count": 40})
    meta = ctx.metadata()
"""

import json
import logging
import platform
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

LOGGER_NAME = "replica"

_EXTRA_KEYS = ("code", "api", "period", "batch", "count", "fetch_time_ms",
               "phase", "run_id")


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "func": record.funcName,
            "msg": record.getMessage(),
        }
        for key in _EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", log_dir: str | Path | None = None) -> logging.Logger:
    """Attach handlers to the ``replica`` logger. Safe to call repeatedly."""
    log = logging.getLogger(LOGGER_NAME)
    log.setLevel(logging.DEBUG)
    log.propagate = False

    # Remove existing handlers to avoid duplicates on re-init
    log.handlers.clear()

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))
    ch.setLevel(level)
    log.addHandler(ch)

    if log_dir:
        d = Path(log_dir)
        d.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(d / "replica.log"), encoding="utf-8")
        fh.setFormatter(_JSONFormatter())
        fh.setLevel(logging.DEBUG)
        log.addHandler(fh)
    return log


def get_logger(name: str) -> logging.Logger:
    """Module logger under the ``replica`` tree, e.g. ``replica.batching``."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class RunContext:
    """Identity and timing of a single backtest run."""

    def __init__(self, run_id: str | None = None, kind: str = "backtest"):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.kind = kind
        self.start_time = datetime.now()
        self.log = get_logger("run")
        self.log.info(f"Run started ({kind})",
                      extra={"run_id": self.run_id, "phase": "init"})

    def elapsed_seconds(self) -> float:
        return round((datetime.now() - self.start_time).total_seconds(), 1)

    def metadata(self, extra: dict | None = None) -> dict:
        """Run metadata for the CLI summary / Excel export."""
        meta = {
            "run_id": self.run_id,
            "kind": self.kind,
            "start_time": self.start_time.isoformat(timespec="seconds"),
            "end_time": datetime.now().isoformat(timespec="seconds"),
            "elapsed_seconds": self.elapsed_seconds(),
            "python_version": sys.version.split()[0],
            "platform": platform.platform(),
            "packages": _get_package_versions(),
        }
        if extra:
            meta.update(extra)
        return meta


def _get_package_versions() -> dict:
    """Get versions of key dependencies."""
    import importlib.metadata

    versions = {}
    for pkg in ["requests", "pandas", "numpy", "pydantic", "pyyaml",
                "openpyxl", "flask"]:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "unknown"
    return versions
