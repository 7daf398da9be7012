"""
Project: Incident Report Chat
File: confirmation_flow.py

Completion gate + confirm/reject workflow, layered above the per-turn machine.

    COLLECTING ──observe(complete result)──▶ PENDING_CONFIRMATION
    PENDING_CONFIRMATION ──confirm() ok──▶ SUBMITTED            (terminal)
    PENDING_CONFIRMATION ──reject()────▶ COLLECTING            (+ corrective prompt)
    PENDING_CONFIRMATION ──confirm() failed──▶ PENDING_CONFIRMATION (report retained)
                                         or ─▶ COLLECTING (retain disabled)

At most one CollectedReport is pending. Completeness claims that arrive while a
report is pending (or after submission) are ignored and logged.

Public API
- confirm_and_submit(report, relay) -> SubmissionResult   # never raises
- class ConfirmationFlow(settings=None, session_id=None)
    observe(result) -> bool
    confirm(relay) -> SubmissionResult
    reject() -> ChatMessage
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import ValidationError

from incident_report import app_logger
from incident_report.config import ChatSettings
from incident_report.error_handler import ErrorCode, ErrorOrigin, error_from_exception, make_error
from incident_report.models import ChatMessage, CollectedReport, ExtractionResult, SubmissionResult
from incident_report.prompts import CORRECTION_PROMPT, SUBMISSION_FAILED
from incident_report.submission_relay import SubmissionRelay


class WorkflowState(str, Enum):
    COLLECTING = "COLLECTING"
    PENDING_CONFIRMATION = "PENDING_CONFIRMATION"
    SUBMITTED = "SUBMITTED"


class ConfirmationStateError(RuntimeError):
    """Raised on confirm()/reject() outside PENDING_CONFIRMATION."""


def confirm_and_submit(report: CollectedReport, relay: SubmissionRelay) -> SubmissionResult:
    """
    Hand a confirmed report to the relay exactly once.
    Relay exceptions and malformed answers become status="error".
    """
    try:
        answer = relay.submit(report.zone_id, report.description)
    except Exception as e:
        err = error_from_exception(e, code=ErrorCode.SUBMISSION_FAILURE, origin=ErrorOrigin.RELAY)
        app_logger.log_error_event("Submission.ERROR", err)
        return SubmissionResult(status="error", message=SUBMISSION_FAILED)

    if isinstance(answer, SubmissionResult):
        return answer
    try:
        return SubmissionResult.model_validate(answer)
    except ValidationError as e:
        err = error_from_exception(
            e,
            code=ErrorCode.SUBMISSION_FAILURE,
            origin=ErrorOrigin.RELAY,
            details={"answer_type": type(answer).__name__},
        )
        app_logger.log_error_event("Submission.ERROR", err)
        return SubmissionResult(status="error", message=SUBMISSION_FAILED)


class ConfirmationFlow:
    def __init__(self, settings: Optional[ChatSettings] = None, *, session_id: Optional[str] = None):
        self.settings = settings or ChatSettings.from_env()
        self.session_id = session_id
        self.state = WorkflowState.COLLECTING
        self.pending: Optional[CollectedReport] = None
        self.last_error: Optional[dict] = None

    def _move(self, new_state: WorkflowState, reason: str) -> None:
        app_logger.log_event(
            "Flow.TRANSITION",
            {"from": self.state.value, "to": new_state.value, "reason": reason},
            session_id=self.session_id,
            workflow=new_state.value,
        )
        self.state = new_state

    def _require_pending(self, action: str) -> CollectedReport:
        if self.state is not WorkflowState.PENDING_CONFIRMATION or self.pending is None:
            raise ConfirmationStateError(f"cannot {action} in state {self.state.value}")
        return self.pending

    # --------------------------------------------------------------------------

    def observe(self, result: ExtractionResult) -> bool:
        """Capture a report from a complete turn result. True when one was captured."""
        if not result.is_complete:
            return False
        if self.state is not WorkflowState.COLLECTING:
            app_logger.log_event(
                "Flow.CLAIM_IGNORED",
                {"state": self.state.value},
                session_id=self.session_id,
                workflow=self.state.value,
            )
            return False
        try:
            report = CollectedReport.from_result(result)
        except ValidationError as e:
            app_logger.log_event(
                "Flow.CLAIM_IGNORED",
                {"state": self.state.value, "reason": str(e.errors(include_input=False))},
                session_id=self.session_id,
                workflow=self.state.value,
            )
            return False
        self.pending = report
        self._move(WorkflowState.PENDING_CONFIRMATION, "complete_result")
        return True

    def confirm(self, relay: SubmissionRelay) -> SubmissionResult:
        report = self._require_pending("confirm")
        outcome = confirm_and_submit(report, relay)
        if outcome.ok:
            self.pending = None
            self.last_error = None
            self._move(WorkflowState.SUBMITTED, "submitted")
            return outcome

        self.last_error = make_error(
            code=ErrorCode.SUBMISSION_FAILURE,
            origin=ErrorOrigin.RELAY,
            retryable=True,
            dev_message=outcome.message,
            context={"retained": self.settings.retain_report_on_submit_failure},
        )
        if not self.settings.retain_report_on_submit_failure:
            self.pending = None
            self._move(WorkflowState.COLLECTING, "submission_failed_discarded")
        return outcome

    def reject(self) -> ChatMessage:
        self._require_pending("reject")
        self.pending = None
        self.last_error = None
        self._move(WorkflowState.COLLECTING, "rejected")
        return ChatMessage(role="model", content=CORRECTION_PROMPT)
