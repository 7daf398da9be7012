"""
Project: Incident Report Chat
File: response_reconciler.py

Normalize raw model output into an ExtractionResult, or report that it can't be.

reconcile(raw) -> ExtractionResult | ReconciliationFailure
  - raw may be a mapping, a JSON string, or a pydantic model; anything else
    (or a string that isn't a JSON object) is a ReconciliationFailure.
  - reply text from "responseText" / "response_text" / "response"; missing or
    blank -> UNCLEAR_RESPONSE.
  - zoneId / description pass through, stripped, when they are non-empty strings.
  - isComplete is the model's own claim, kept only when it is literally True,
    both fields are present and the zone id verifies. Never inferred.

reconcile_or_fallback(raw) -> ExtractionResult   # failure -> fallback_result()
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from incident_report.models import ExtractionResult
from incident_report.prompts import FALLBACK_RESPONSE, UNCLEAR_RESPONSE
from incident_report.zone_verifier import verify_zone_identifier

_TEXT_KEYS = ("responseText", "response_text", "response")
_ZONE_KEYS = ("zoneId", "zone_id")
_COMPLETE_KEYS = ("isComplete", "is_complete")


@dataclass(frozen=True)
class ReconciliationFailure:
    reason: str
    raw_type: str = "unknown"


ReconcileOutcome = Union[ExtractionResult, ReconciliationFailure]


def fallback_result() -> ExtractionResult:
    return ExtractionResult(response_text=FALLBACK_RESPONSE)


def _as_mapping(raw: Any) -> Optional[Dict[str, Any]]:
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump(by_alias=True, exclude_none=False)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        text = raw.strip()
        # tolerate ```json fences around the object
        if text.startswith("```"):
            text = text.strip("`")
            if text.lower().startswith("json"):
                text = text[4:]
        try:
            raw = json.loads(text)
        except json.JSONDecodeError:
            return None
    if isinstance(raw, Mapping):
        return dict(raw)
    return None


def _first(data: Dict[str, Any], keys) -> Any:
    for k in keys:
        if data.get(k) is not None:
            return data[k]
    return None


def _clean_str(v: Any) -> Optional[str]:
    if isinstance(v, str) and v.strip():
        return v.strip()
    return None


def reconcile(raw: Any) -> ReconcileOutcome:
    if raw is None:
        return ReconciliationFailure(reason="no output", raw_type="NoneType")
    data = _as_mapping(raw)
    if data is None:
        return ReconciliationFailure(reason="output is not a JSON object", raw_type=type(raw).__name__)

    text = _clean_str(_first(data, _TEXT_KEYS)) or UNCLEAR_RESPONSE
    zone_id = _clean_str(_first(data, _ZONE_KEYS))
    description = _clean_str(data.get("description"))

    claimed = _first(data, _COMPLETE_KEYS) is True
    is_complete = bool(
        claimed
        and zone_id
        and description
        and verify_zone_identifier(zone_id).is_valid
    )

    return ExtractionResult(
        response_text=text,
        zone_id=zone_id,
        description=description,
        is_complete=is_complete,
    )


def reconcile_or_fallback(raw: Any) -> ExtractionResult:
    outcome = reconcile(raw)
    if isinstance(outcome, ReconciliationFailure):
        return fallback_result()
    return outcome
