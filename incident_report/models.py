"""
Project: Incident Report Chat
File: models.py

Typed records that cross module boundaries: chat messages, the per-turn
extraction result, tool invocations/results, the collected report awaiting
confirmation, and the submission payload/answer.

Methods & Classes
- ChatMessage: one chat line (user/model/tool); frozen once created.
- ToolInvocation / ToolResult: a model tool call and the verifier's answer.
- ExtractionResult: reconciled output of one dialog turn.
- CollectedReport: zone id + description; only constructible when both are
  present and the zone id verifies at the required resolution.
- SubmissionResult: {"status": "success"|"error", "message": str}.
- IncidentReport: the payload a relay submits (zone id, message, timestamp...).
- extraction_output_schema() -> dict: JSON schema sent to the model.

Conventions
- snake_case field names; camelCase wire names (responseText, zoneId,
  isComplete, isValid) are accepted as aliases and used in model-facing JSON.

Dependencies
- External: pydantic
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Role = Literal["user", "model", "tool"]
ReporterType = Literal["citizen", "sensor", "verified_partner"]

VERIFY_TOOL_NAME = "verifyZoneIdentifier"


# ---- Tool call round trip ----------------------------------------------------

class ToolInvocation(BaseModel):
    name: str = Field(...)
    input: Dict[str, Any] = Field(default_factory=dict)
    call_id: Optional[str] = Field(default=None)
    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def identifier(self) -> str:
        value = self.input.get("identifier")
        return value if isinstance(value, str) else ""


class ToolResult(BaseModel):
    is_valid: bool = Field(..., alias="isValid")
    resolution: Optional[int] = Field(default=None)
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Camel-cased dict in the shape the model was told to expect."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---- Chat --------------------------------------------------------------------

class ChatMessage(BaseModel):
    role: Role = Field(...)
    content: str = Field(default="")
    # Only set inside a turn, on tool round-trip messages.
    tool_name: Optional[str] = Field(default=None)
    tool_call_id: Optional[str] = Field(default=None)
    tool_requests: Tuple[ToolInvocation, ...] = Field(default=())
    model_config = ConfigDict(extra="forbid", frozen=True)


class ExtractionResult(BaseModel):
    response_text: str = Field(..., alias="responseText", min_length=1)
    zone_id: Optional[str] = Field(default=None, alias="zoneId")
    description: Optional[str] = Field(default=None)
    is_complete: bool = Field(default=False, alias="isComplete")
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    @model_validator(mode="after")
    def _complete_needs_both_fields(self) -> "ExtractionResult":
        if self.is_complete and not (self.zone_id and self.description):
            raise ValueError("is_complete requires both zone_id and description")
        return self


def extraction_output_schema() -> Dict[str, Any]:
    return ExtractionResult.model_json_schema(by_alias=True)


# ---- Confirmation / submission ------------------------------------------------

class CollectedReport(BaseModel):
    zone_id: str = Field(..., alias="zoneId")
    description: str = Field(...)
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("description must not be blank")
        return v

    @field_validator("zone_id")
    @classmethod
    def _zone_verifies(cls, v: str) -> str:
        from incident_report.zone_verifier import normalize_zone_identifier, verify_zone_identifier

        check = verify_zone_identifier(v)
        if not check.is_valid:
            raise ValueError(f"zone id {v!r} failed verification (resolution={check.resolution})")
        # stored in the form the verifier accepted
        return normalize_zone_identifier(v)

    @classmethod
    def from_result(cls, result: ExtractionResult) -> "CollectedReport":
        return cls(zone_id=result.zone_id or "", description=result.description or "")


class SubmissionResult(BaseModel):
    status: Literal["success", "error"] = Field(...)
    message: str = Field(default="")
    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def ok(self) -> bool:
        return self.status == "success"


class IncidentReport(BaseModel):
    zone_id: str = Field(..., alias="zoneId")
    message: str = Field(...)
    timestamp: str = Field(...)  # ISO 8601
    media_url: Optional[str] = Field(default=None, alias="mediaUrl")
    reporter_type: Optional[ReporterType] = Field(default=None, alias="reporterType")
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    @field_validator("zone_id", "message")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("timestamp")
    @classmethod
    def _iso_timestamp(cls, v: str) -> str:
        # fromisoformat() before 3.11 does not take a trailing "Z"
        datetime.fromisoformat(v.replace("Z", "+00:00"))
        return v
