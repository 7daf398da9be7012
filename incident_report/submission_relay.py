"""
Project: Incident Report Chat
File: submission_relay.py

Boundary to whoever stores a confirmed report.

SubmissionRelay (protocol)
    submit(zone_id, description) -> SubmissionResult   # may raise

LoggingSubmissionRelay
    Builds an IncidentReport (UTC timestamp), writes it to the JSONL log as a
    Submission.RECEIVED event and answers success. Nothing is persisted here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Protocol

from pydantic import ValidationError

from incident_report import app_logger
from incident_report.models import IncidentReport, ReporterType, SubmissionResult
from incident_report.prompts import SUBMISSION_OK


class SubmissionRelay(Protocol):
    def submit(self, zone_id: str, description: str) -> SubmissionResult:
        ...


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


class LoggingSubmissionRelay:
    def __init__(self, *, reporter_type: Optional[ReporterType] = "citizen") -> None:
        self.reporter_type = reporter_type
        self.received: List[IncidentReport] = []

    def submit(self, zone_id: str, description: str) -> SubmissionResult:
        try:
            report = IncidentReport(
                zone_id=zone_id,
                message=description,
                timestamp=_now_iso(),
                reporter_type=self.reporter_type,
            )
        except ValidationError as e:
            app_logger.log_event("Submission.INVALID", {"errors": e.errors(include_input=False)})
            return SubmissionResult(status="error", message="Invalid report data.")

        self.received.append(report)
        app_logger.log_event("Submission.RECEIVED", report.model_dump(by_alias=True, exclude_none=True))
        return SubmissionResult(status="success", message=SUBMISSION_OK)
