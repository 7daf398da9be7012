"""
tests/helpers.py — small builders shared by unit and integration tests.
"""

from typing import List, Optional, Tuple

from incident_report.generation_client import GenerationResponse
from incident_report.models import SubmissionResult, ToolInvocation

ZONE_RES2 = "82801ffffffffff"   # resolution 2
ZONE_RES0 = "8001fffffffffff"   # resolution 0
ZONE_RES5 = "85283473fffffff"   # resolution 5


def verify_request(identifier: str, call_id: Optional[str] = None) -> ToolInvocation:
    return ToolInvocation(name="verifyZoneIdentifier", input={"identifier": identifier}, call_id=call_id)


def tool_turn(*identifiers: str, content: str = "") -> GenerationResponse:
    """A first-call response that only asks for verifier calls."""
    return GenerationResponse(tool_requests=[verify_request(i) for i in identifiers], content=content)


def complete_output(zone_id: str = ZONE_RES2, description: str = "illegal logging", text: str = "Got it, reviewing...") -> dict:
    return {"responseText": text, "zoneId": zone_id, "description": description, "isComplete": True}


class RecordingRelay:
    """Relay double: records calls, answers from a queue (default success)."""

    def __init__(self, answers: Optional[List[object]] = None):
        self.calls: List[Tuple[str, str]] = []
        self._answers = list(answers or [])

    def submit(self, zone_id: str, description: str) -> SubmissionResult:
        self.calls.append((zone_id, description))
        answer = self._answers.pop(0) if self._answers else SubmissionResult(status="success", message="Stored.")
        if isinstance(answer, BaseException):
            raise answer
        return answer
