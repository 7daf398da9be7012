# incident_report/error_handler.py
"""
Unified, actionable error envelope for the incident report chat.

Nothing in this package is fatal to a chat: generation, tool, reconciliation
and submission failures are all recovered locally. What does travel is this
"error object", attached to the chat packet at packet["error"] (or None) and
written to the JSONL log.

Error object contract (MUST NOT BREAK):
---------------------------------------
{
  "code": <ENUM>,              # stable, app-specific
  "origin": <str>,             # "generation" | "tool" | "reconciler" | "relay" | "session" | "unknown"
  "retryable": <bool>,         # can the user simply try again?
  "user_message": <str>,       # short, user-safe message (rendered verbatim)
  "next_actions": <list[str]>, # 1–3 verbs the UI maps to quick replies
  "dev_message": <str|None>,   # terse technical reason, safe to log
  "details": <dict>,           # diagnostics (exception type, model, tool name…)
  "context": <dict>,           # e.g., {"phase": "AWAITING_FOLLOWUP"}
  "timestamp": <iso-utc>,
  "correlation_id": <str>      # ties together log lines for one turn
}

Usage (turn executor):
----------------------
err = make_error(
    code=ErrorCode.GENERATION_TIMEOUT,
    origin=ErrorOrigin.GENERATION,
    retryable=True,
    dev_message=str(exc),
    details={"model": model_name},
    context={"phase": phase.value},
    correlation_id=turn_id,
)
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union


# ----------------------------- Enums & constants -----------------------------

class ErrorCode(str, Enum):
    GENERATION_FAILURE = "GENERATION_FAILURE"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    TOOL_EXECUTION_FAILURE = "TOOL_EXECUTION_FAILURE"
    TOOL_CHAIN_UNSUPPORTED = "TOOL_CHAIN_UNSUPPORTED"
    SCHEMA_RECONCILIATION_FAILURE = "SCHEMA_RECONCILIATION_FAILURE"
    SUBMISSION_FAILURE = "SUBMISSION_FAILURE"
    EMPTY_MESSAGE = "EMPTY_MESSAGE"
    CONFIRMATION_PENDING = "CONFIRMATION_PENDING"
    SESSION_CLOSED = "SESSION_CLOSED"
    TURN_IN_FLIGHT = "TURN_IN_FLIGHT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ErrorOrigin(str, Enum):
    GENERATION = "generation"
    TOOL = "tool"
    RECONCILER = "reconciler"
    RELAY = "relay"
    SESSION = "session"
    UNKNOWN = "unknown"


class NextAction(str, Enum):
    TRY_REPHRASE = "TRY_REPHRASE"
    PROVIDE_ZONE = "PROVIDE_ZONE"
    DESCRIBE_INCIDENT = "DESCRIBE_INCIDENT"
    CONFIRM_REPORT = "CONFIRM_REPORT"
    CORRECT_REPORT = "CORRECT_REPORT"
    RETRY_LATER = "RETRY_LATER"


_DEFAULT_USER_MESSAGES: Mapping[ErrorCode, str] = {
    ErrorCode.GENERATION_FAILURE: "Sorry, I encountered an issue. Could you please repeat that?",
    ErrorCode.GENERATION_TIMEOUT: "That took too long to answer. Could you please repeat that?",
    ErrorCode.TOOL_EXECUTION_FAILURE: "I couldn’t check that zone id just now. Could you send it again?",
    ErrorCode.TOOL_CHAIN_UNSUPPORTED: "Sorry, I encountered an issue. Could you please repeat that?",
    ErrorCode.SCHEMA_RECONCILIATION_FAILURE: "Sorry, I encountered an issue. Could you please repeat that?",
    ErrorCode.SUBMISSION_FAILURE: "Sorry, there was an error submitting your report. Please try again later.",
    ErrorCode.EMPTY_MESSAGE: "Please type a message first.",
    ErrorCode.CONFIRMATION_PENDING: "Please confirm or correct the report summary first.",
    ErrorCode.SESSION_CLOSED: "This report has already been submitted.",
    ErrorCode.TURN_IN_FLIGHT: "Still working on your last message. One moment please.",
    ErrorCode.UNKNOWN_ERROR: "Something went wrong. Please try again.",
}

_DEFAULT_ACTIONS: Mapping[ErrorCode, Tuple[NextAction, ...]] = {
    ErrorCode.GENERATION_FAILURE: (NextAction.TRY_REPHRASE,),
    ErrorCode.GENERATION_TIMEOUT: (NextAction.TRY_REPHRASE, NextAction.RETRY_LATER),
    ErrorCode.TOOL_EXECUTION_FAILURE: (NextAction.PROVIDE_ZONE, NextAction.TRY_REPHRASE),
    ErrorCode.TOOL_CHAIN_UNSUPPORTED: (NextAction.TRY_REPHRASE,),
    ErrorCode.SCHEMA_RECONCILIATION_FAILURE: (NextAction.TRY_REPHRASE,),
    ErrorCode.SUBMISSION_FAILURE: (NextAction.CONFIRM_REPORT, NextAction.RETRY_LATER),
    ErrorCode.EMPTY_MESSAGE: (NextAction.PROVIDE_ZONE, NextAction.DESCRIBE_INCIDENT),
    ErrorCode.CONFIRMATION_PENDING: (NextAction.CONFIRM_REPORT, NextAction.CORRECT_REPORT),
    ErrorCode.SESSION_CLOSED: (),
    ErrorCode.TURN_IN_FLIGHT: (NextAction.RETRY_LATER,),
    ErrorCode.UNKNOWN_ERROR: (NextAction.TRY_REPHRASE,),
}


# ----------------------------- Utility helpers ------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def new_correlation_id(prefix: str = "turn") -> str:
    """
    Build a correlation id that can be grepped across log lines of one turn/session.
    """
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _ensure_actions(values: Optional[Sequence[Union[str, NextAction]]]) -> List[str]:
    if not values:
        return []
    out: List[str] = []
    for v in values:
        s = v.value if isinstance(v, NextAction) else str(v)
        if s and s not in out:
            out.append(s)
    # keep at most 3 per the UI guidance
    return out[:3]


# ------------------------------- Main factory --------------------------------

def make_error(
    *,
    code: Union[ErrorCode, str],
    origin: Union[ErrorOrigin, str] = ErrorOrigin.UNKNOWN,
    retryable: bool,
    user_message: Optional[str] = None,
    next_actions: Optional[Sequence[Union[str, NextAction]]] = None,
    dev_message: Optional[str] = None,
    details: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
    correlation_id: Optional[str] = None,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Construct a fully-formed error object (dict) consistent with the contract above.

    - `user_message` and `next_actions` default from the `code`.
    - `details` and `context` are pass-through diagnostics; avoid putting report text here.
    - `correlation_id`: pass the per-turn id if you have it; else a new id is generated.
    """
    try:
        code_enum = ErrorCode(code)
    except ValueError:
        code_enum = ErrorCode.UNKNOWN_ERROR

    try:
        origin_enum = ErrorOrigin(origin)
    except ValueError:
        origin_enum = ErrorOrigin.UNKNOWN

    msg = (user_message or _DEFAULT_USER_MESSAGES.get(code_enum) or _DEFAULT_USER_MESSAGES[ErrorCode.UNKNOWN_ERROR]).strip()
    if next_actions is None:
        actions = list(a.value for a in _DEFAULT_ACTIONS.get(code_enum, (NextAction.TRY_REPHRASE,)))
    else:
        actions = _ensure_actions(next_actions)

    return {
        "code": code_enum.value,
        "origin": origin_enum.value,
        "retryable": bool(retryable),
        "user_message": msg,
        "next_actions": actions,
        "dev_message": (dev_message or None),
        "details": dict(details or {}),
        "context": dict(context or {}),
        "timestamp": (now or _now_iso()),
        "correlation_id": correlation_id or new_correlation_id(),
    }


def error_from_exception(
    exc: BaseException,
    *,
    code: Union[ErrorCode, str],
    origin: Union[ErrorOrigin, str],
    retryable: bool = True,
    details: Optional[Mapping[str, Any]] = None,
    context: Optional[Mapping[str, Any]] = None,
    correlation_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Shorthand for the common `except Exception as e:` branch."""
    det = {"exception": type(exc).__name__, **dict(details or {})}
    return make_error(
        code=code,
        origin=origin,
        retryable=retryable,
        dev_message=f"{type(exc).__name__}: {exc}",
        details=det,
        context=context,
        correlation_id=correlation_id,
    )


# ------------------------------- Introspection --------------------------------

def summarize_for_log(error_obj: Optional[Mapping[str, Any]]) -> str:
    """
    Produce a compact single-line summary of an error object.
    """
    if not error_obj:
        return ""
    code = error_obj.get("code", "UNKNOWN")
    origin = error_obj.get("origin", "unknown")
    retryable = error_obj.get("retryable", False)
    cid = error_obj.get("correlation_id", "")
    return f"{code} origin={origin} retryable={retryable} cid={cid}"
