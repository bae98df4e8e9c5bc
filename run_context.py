#!/usr/bin/env python3
"""
Run Context — reproducibility infrastructure for the ranking screener.

Provides:
  - run_id generation (UUID4)
  - Config snapshot saving
  - Run metadata recording (timestamps, versions, parameters)
  - Ranked frame artifact saving
  - Structured JSON logging (module loggers included)

Usage:
    ctx = RunContext()                 # generates run_id, creates runs/{run_id}/
    ctx.save_config(cfg)               # snapshot config.yaml
    ctx.save_artifact("ranked", df)    # save the typed/rank frame
    ctx.log.info("message", extra={"ticker": "ITSA4"})
    ctx.save_metadata({...})           # save final run metadata
    ctx.close()
"""

import hashlib
import importlib.metadata
import json
import logging
import platform
import subprocess
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import pandas as pd
import yaml

ROOT = Path(__file__).resolve().parent
RUNS_DIR = ROOT / "runs"

# Loggers whose records also go to run.log
MODULE_LOGGERS = ("sheet_normalizer", "rank_engine", "portfolio_assistant",
                  "generate_dashboard")

TRACKED_PACKAGES = ["pandas", "numpy", "pydantic", "pyyaml", "pyarrow",
                    "openpyxl", "markdown", "google-generativeai"]


class _JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "module": record.module,
            "func": record.funcName,
            "msg": record.getMessage(),
        }
        # Merge any extra fields (ticker, mode, count, etc.)
        for key in ("ticker", "mode", "phase", "step", "count", "run_id"):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RunContext:
    """Manages a single run's metadata, artifacts, and logging."""

    def __init__(self, run_id: str | None = None, runs_dir: str | Path | None = None):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.start_time = datetime.now()
        self.run_dir = Path(runs_dir or RUNS_DIR) / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)

        self.log = logging.getLogger(f"ranker.{self.run_id}")
        self.log.setLevel(logging.DEBUG)
        self.log.propagate = False

        # Remove existing handlers to avoid duplicates on re-init
        self.log.handlers.clear()

        # JSON file handler
        self._file_handler = logging.FileHandler(str(self.run_dir / "run.log"),
                                                 encoding="utf-8")
        self._file_handler.setFormatter(_JSONFormatter())
        self.log.addHandler(self._file_handler)

        # Console handler (human-readable)
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))
        ch.setLevel(logging.INFO)
        self.log.addHandler(ch)

        for name in MODULE_LOGGERS:
            mod_log = logging.getLogger(name)
            mod_log.setLevel(logging.DEBUG)
            mod_log.addHandler(self._file_handler)

        self.log.info("Run started", extra={"run_id": self.run_id})

    def save_config(self, cfg: dict) -> Path:
        """Save a snapshot of the config used for this run."""
        path = self.run_dir / "config.yaml"
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(cfg, f, default_flow_style=False, sort_keys=False)
        self.log.info("Config snapshot saved", extra={"phase": "init"})
        return path

    def config_hash(self, cfg: dict) -> str:
        """Deterministic hash of the config sections that change outputs."""
        relevant = {
            "assistant": cfg.get("assistant", {}),
            "charts": cfg.get("charts", {}),
        }
        raw = json.dumps(relevant, sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()[:12]

    def save_artifact(self, name: str, df: pd.DataFrame) -> Path:
        """Save an intermediate DataFrame as Parquet."""
        path = self.run_dir / f"{name}.parquet"
        df.to_parquet(str(path), index=False)
        self.log.info(f"Artifact saved: {name} ({len(df)} rows)",
                      extra={"phase": "artifact", "step": name, "count": len(df)})
        return path

    def save_metadata(self, extra: dict | None = None) -> Path:
        """Save run metadata (call at end of run)."""
        end_time = datetime.now()
        meta = {
            "run_id": self.run_id,
            "start_time": self.start_time.isoformat(),
            "end_time": end_time.isoformat(),
            "elapsed_seconds": round((end_time - self.start_time).total_seconds(), 1),
            "git_sha": _get_git_sha(),
            "python_version": sys.version,
            "platform": platform.platform(),
            "packages": _get_package_versions(),
        }
        if extra:
            meta.update(extra)
        path = self.run_dir / "meta.json"
        with open(path, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2, default=str)
        self.log.info("Run metadata saved", extra={"run_id": self.run_id})
        return path

    def close(self):
        """Detach the run.log handler from every logger it was added to."""
        for name in MODULE_LOGGERS:
            logging.getLogger(name).removeHandler(self._file_handler)
        for handler in list(self.log.handlers):
            self.log.removeHandler(handler)
        self._file_handler.close()


def _get_git_sha() -> str:
    """Get the current git commit SHA, or 'unknown' if not in a git repo."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            capture_output=True, text=True, timeout=5,
            cwd=str(ROOT),
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass
    return "unknown"


def _get_package_versions() -> dict:
    """Get versions of key dependencies."""
    versions = {}
    for pkg in TRACKED_PACKAGES:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "unknown"
    return versions
