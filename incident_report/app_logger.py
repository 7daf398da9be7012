# incident_report/app_logger.py
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

from incident_report.config import _to_bool
from incident_report.error_handler import summarize_for_log


# Keep the JSON lines small, stable, and machine-friendly
def _json_dumps(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


class _JsonlFormatter(logging.Formatter):
    """
    JSONL formatter with UTC timestamps and a tiny set of stable top-level fields.
    """
    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        base = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%SZ"),
            "lvl": record.levelname,
            "event": getattr(record, "event", None),
            "cid": getattr(record, "correlation_id", None),  # turn id
            "session_id": getattr(record, "session_id", None),
            "msg": record.getMessage() or None,
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict) and payload:
            base["payload"] = payload
        for k in ("phase", "workflow"):
            v = getattr(record, k, None)
            if v is not None:
                base[k] = v
        return _json_dumps(base)


_configured = False
_logger: Optional[logging.Logger] = None


def configure(
    *,
    root_dir: str | Path = "logs",
    filename: str = "app.jsonl",
    level: str | int | None = None,
    to_stdout: Optional[bool] = None,
    force: bool = False,
) -> None:
    """
    Global, one-time logger configuration.
    - Writes newline-delimited JSON to logs/app.jsonl (by default).
    - Also mirrors to stdout (INFO+), unless disabled.

    Env overrides:
      LOG_DIR, LOG_FILE, LOG_LEVEL, LOG_STDOUT

    `force=True` drops existing handlers and reconfigures (tests use this to
    point the log into a temp dir).
    """
    global _configured, _logger
    if _configured and not force:
        return

    log_dir = Path(os.getenv("LOG_DIR", str(root_dir)))
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / os.getenv("LOG_FILE", filename)

    lvl = level or os.getenv("LOG_LEVEL", "INFO")
    if isinstance(lvl, str):
        lvl = getattr(logging, lvl.upper(), logging.INFO)

    if to_stdout is None:
        to_stdout = _to_bool(os.getenv("LOG_STDOUT"), default=True)

    logger = logging.getLogger("incident")
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(lvl)
    logger.propagate = False  # avoid duplicate lines if root logger is configured elsewhere

    fmt = _JsonlFormatter()

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(lvl)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    if to_stdout:
        sh = logging.StreamHandler()
        sh.setLevel(logging.INFO)
        sh.setFormatter(fmt)
        logger.addHandler(sh)

    _logger = logger
    _configured = True


def get() -> logging.Logger:
    """Return the singleton incident logger (auto-configure with defaults if needed)."""
    if not _configured:
        configure()
    return _logger  # type: ignore[return-value]


# ------------------------- Convenience entry points -------------------------

def log_event(
    event: str,
    payload: Dict[str, Any],
    *,
    correlation_id: Optional[str] = None,
    session_id: Optional[str] = None,
    level: int = logging.INFO,
    phase: Optional[str] = None,
    workflow: Optional[str] = None,
    message: Optional[str] = None,
) -> None:
    """
    Generic structured event logger.
    Writes one JSON line with minimal stable keys + your payload.
    `message` becomes the line's "msg" (defaults to the event name).
    """
    get().log(
        level,
        message or event,
        extra={
            "event": event,
            "payload": payload,
            "correlation_id": correlation_id,
            "session_id": session_id,
            "phase": phase,
            "workflow": workflow,
        },
    )


def log_turn_packet(packet: Dict[str, Any], *, session_id: Optional[str] = None) -> None:
    """
    Log a chat packet exactly once. Keeps the log schema consistent across the app.
    """
    log_event(
        "TURN",
        packet,
        correlation_id=packet.get("correlation_id"),
        session_id=session_id,
        level=logging.INFO,
        workflow=packet.get("workflow"),
    )


def log_error_event(
    event: str,
    error_obj: Dict[str, Any],
    *,
    correlation_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> None:
    """
    Error-line helper that mirrors the error_handler envelope.
    """
    log_event(
        event,
        error_obj,
        correlation_id=correlation_id or error_obj.get("correlation_id"),
        session_id=session_id,
        level=logging.ERROR,
        message=summarize_for_log(error_obj) or None,
    )
