"""
Project: Incident Report Chat
File: zone_verifier.py

The verifier tool the model may call mid-turn, plus its descriptor and a small
dispatcher for tool invocations.

verify_zone_identifier(identifier) -> ToolResult
  - valid H3 cell at REQUIRED_RESOLUTION -> is_valid=True,  resolution=2
  - valid H3 cell at another resolution  -> is_valid=False, resolution=<actual>
  - anything else                        -> is_valid=False, resolution=None
Pure and deterministic; never raises.

Dependencies
- External: h3 (v4 API)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

import h3

from incident_report import app_logger
from incident_report.config import REQUIRED_RESOLUTION
from incident_report.error_handler import ErrorCode, ErrorOrigin, error_from_exception
from incident_report.models import VERIFY_TOOL_NAME, ToolInvocation, ToolResult

TOOL_DESCRIPTOR: Dict[str, Any] = {
    "name": VERIFY_TOOL_NAME,
    "description": (
        "Verifies if a given string is a valid H3 cell index "
        f"(specifically resolution {REQUIRED_RESOLUTION})."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "identifier": {"type": "string", "description": "The H3 index string to verify."},
        },
        "required": ["identifier"],
        "additionalProperties": False,
    },
    "output_schema": {
        "type": "object",
        "properties": {
            "isValid": {"type": "boolean"},
            "resolution": {"type": "integer"},
        },
        "required": ["isValid"],
    },
}


# bare 15-digit hex only; h3 alone also accepts "0x", "+" and "_" forms
_CELL_TEXT_RE = re.compile(r"[0-9a-f]{15}")


def normalize_zone_identifier(identifier: Any) -> Optional[str]:
    """Lower-cased, stripped id when it has the shape of an H3 index, else None."""
    if not isinstance(identifier, str):
        return None
    candidate = identifier.strip().lower()
    return candidate if _CELL_TEXT_RE.fullmatch(candidate) else None


def _is_cell(identifier: str) -> bool:
    try:
        return bool(h3.is_valid_cell(identifier))
    except (TypeError, ValueError):
        return False


def verify_zone_identifier(identifier: Any) -> ToolResult:
    candidate = normalize_zone_identifier(identifier)
    if candidate is None or not _is_cell(candidate):
        return ToolResult(is_valid=False, resolution=None)

    try:
        resolution = int(h3.get_resolution(candidate))
    except Exception as e:  # h3 accepted the string but can't tell the level
        app_logger.log_event(
            "Verifier.RESOLUTION_UNKNOWN",
            {"identifier": candidate, "error": f"{type(e).__name__}: {e}"},
            level=logging.WARNING,
        )
        return ToolResult(is_valid=False, resolution=None)

    return ToolResult(is_valid=resolution == REQUIRED_RESOLUTION, resolution=resolution)


def run_tool(invocation: ToolInvocation) -> ToolResult:
    """
    Execute one model tool request. Unknown tools and tool exceptions degrade to
    an invalid result so the turn keeps going.
    """
    if invocation.name != VERIFY_TOOL_NAME:
        app_logger.log_event("Tool.NOT_REGISTERED", {"tool": invocation.name}, level=logging.WARNING)
        return ToolResult(is_valid=False, resolution=None)
    try:
        return verify_zone_identifier(invocation.identifier)
    except Exception as e:
        err = error_from_exception(
            e,
            code=ErrorCode.TOOL_EXECUTION_FAILURE,
            origin=ErrorOrigin.TOOL,
            details={"tool": invocation.name},
        )
        app_logger.log_error_event("Tool.EXECUTION_FAILED", err)
        return ToolResult(is_valid=False, resolution=None)


def run_tools(invocations: List[ToolInvocation]) -> List[ToolResult]:
    """Results line up index-for-index with the requests."""
    return [run_tool(inv) for inv in invocations]
