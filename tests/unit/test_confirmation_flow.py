"""
tests/unit/test_confirmation_flow.py

What this tests (and why)
-------------------------
1) Completion gate:
   - Only complete results with a verifying zone id capture a report; extra
     claims while a report is pending are ignored.
2) Confirm / reject:
   - confirm submits exactly once and closes the flow; reject clears the
     report and returns the corrective prompt.
   - Acting outside PENDING_CONFIRMATION raises ConfirmationStateError.
3) Submission failures:
   - Relay exceptions and malformed answers become status="error".
   - The report is retained by default, discarded when retention is off.

File / module dependencies
--------------------------
- incident_report.confirmation_flow (system under test)
- tests.helpers.RecordingRelay (relay double)
"""

import pytest

from incident_report.config import ChatSettings
from incident_report.confirmation_flow import (
    ConfirmationFlow,
    ConfirmationStateError,
    WorkflowState,
    confirm_and_submit,
)
from incident_report.models import CollectedReport, ExtractionResult, SubmissionResult
from incident_report.prompts import CORRECTION_PROMPT, SUBMISSION_FAILED
from tests.helpers import ZONE_RES2, ZONE_RES5, RecordingRelay


def _complete(zone=ZONE_RES2, description="illegal logging"):
    return ExtractionResult(response_text="Summary...", zone_id=zone, description=description, is_complete=True)


@pytest.fixture()
def flow(settings):
    return ConfirmationFlow(settings, session_id="chat-test")


@pytest.fixture()
def pending_flow(flow):
    assert flow.observe(_complete()) is True
    return flow


def test_incomplete_result_captures_nothing(flow):
    assert flow.observe(ExtractionResult(response_text="Where?", description="fire")) is False
    assert flow.state is WorkflowState.COLLECTING
    assert flow.pending is None


def test_complete_result_moves_to_pending(pending_flow):
    assert pending_flow.state is WorkflowState.PENDING_CONFIRMATION
    assert pending_flow.pending == CollectedReport(zone_id=ZONE_RES2, description="illegal logging")


def test_claim_with_wrong_resolution_is_ignored(flow):
    assert flow.observe(_complete(zone=ZONE_RES5)) is False
    assert flow.state is WorkflowState.COLLECTING


def test_second_claim_while_pending_is_ignored(pending_flow):
    assert pending_flow.observe(_complete(description="oil spill")) is False
    assert pending_flow.pending.description == "illegal logging"


def test_confirm_submits_once_and_closes(pending_flow, relay):
    outcome = pending_flow.confirm(relay)
    assert outcome.ok
    assert relay.calls == [(ZONE_RES2, "illegal logging")]
    assert pending_flow.state is WorkflowState.SUBMITTED
    assert pending_flow.pending is None
    assert pending_flow.observe(_complete()) is False


def test_reject_clears_report_and_prompts_for_correction(pending_flow):
    msg = pending_flow.reject()
    assert msg.role == "model"
    assert msg.content == CORRECTION_PROMPT
    assert pending_flow.state is WorkflowState.COLLECTING
    assert pending_flow.pending is None
    # a new complete turn can be captured again
    assert pending_flow.observe(_complete(description="oil spill")) is True


@pytest.mark.parametrize("action", ["confirm", "reject"])
def test_actions_outside_pending_raise(flow, relay, action):
    with pytest.raises(ConfirmationStateError):
        flow.confirm(relay) if action == "confirm" else flow.reject()
    assert relay.calls == []


def test_failed_submission_retains_report_by_default(pending_flow):
    relay = RecordingRelay([SubmissionResult(status="error", message="storage offline")])
    outcome = pending_flow.confirm(relay)
    assert outcome.ok is False
    assert pending_flow.state is WorkflowState.PENDING_CONFIRMATION
    assert pending_flow.pending is not None
    assert pending_flow.last_error["code"] == "SUBMISSION_FAILURE"
    assert pending_flow.last_error["context"] == {"retained": True}

    # retry succeeds and clears the error
    assert pending_flow.confirm(relay).ok
    assert pending_flow.last_error is None
    assert len(relay.calls) == 2


def test_failed_submission_discards_when_retention_off():
    flow = ConfirmationFlow(ChatSettings(retain_report_on_submit_failure=False))
    flow.observe(_complete())
    outcome = flow.confirm(RecordingRelay([RuntimeError("down")]))
    assert outcome.status == "error"
    assert flow.state is WorkflowState.COLLECTING
    assert flow.pending is None
    assert flow.last_error["context"] == {"retained": False}


# ------------------------------ confirm_and_submit -------------------------

def _report():
    return CollectedReport(zone_id=ZONE_RES2, description="illegal logging")


def test_relay_exception_becomes_error_result():
    outcome = confirm_and_submit(_report(), RecordingRelay([ConnectionError("no route")]))
    assert outcome == SubmissionResult(status="error", message=SUBMISSION_FAILED)


def test_dict_answer_is_validated():
    class DictRelay:
        def submit(self, zone_id, description):
            return {"status": "success", "message": "queued"}

    assert confirm_and_submit(_report(), DictRelay()) == SubmissionResult(status="success", message="queued")


def test_malformed_answer_becomes_error_result():
    class OddRelay:
        def submit(self, zone_id, description):
            return {"status": "maybe"}

    assert confirm_and_submit(_report(), OddRelay()).status == "error"
