#!/usr/bin/env python3
# incident_report/chat_agent.py
from __future__ import annotations

"""
IncidentChatAgent — thin conversation orchestrator around the turn executor.

Responsibilities
---------------
- Own one ConversationSession (opened with the greeting) and one ConfirmationFlow.
- Run one user turn through DialogTurnExecutor on the session snapshot, then
  append the user message and the model reply (in that order).
- Feed each turn result to the completion gate.
- Confirm (submit through the relay) or reject a pending report.
- Enforce the input rules of the chat: no blank messages, no chatting while a
  summary awaits confirmation, nothing after submission, one turn at a time.
- Log every returned packet once via app_logger.log_turn_packet.

Packet (stable output shape)
----------------------------
    {
      "utterance": <str|None>,        # user text (None for confirm/reject)
      "ok": <bool>,
      "reply": <str|None>,            # model text appended to the session
      "result": <dict|None>,          # ExtractionResult.model_dump() for turns
      "workflow": "COLLECTING" | "PENDING_CONFIRMATION" | "SUBMITTED",
      "pending_report": {"zone_id", "description"} | None,
      "submission": {"status", "message"} | None,
      "error": <error envelope|None>,
      "correlation_id": <str>
    }
"""

from typing import Any, Dict, Optional

from incident_report import app_logger
from incident_report.config import ChatSettings
from incident_report.confirmation_flow import ConfirmationFlow, WorkflowState
from incident_report.conversation import ConversationSession
from incident_report.error_handler import ErrorCode, ErrorOrigin, make_error, new_correlation_id
from incident_report.generation_client import GenerationClient, LangChainGenerationClient
from incident_report.models import ChatMessage
from incident_report.prompts import GREETING, SUBMISSION_FAILED
from incident_report.submission_relay import LoggingSubmissionRelay, SubmissionRelay
from incident_report.turn_executor import DialogTurnExecutor


class IncidentChatAgent:
    def __init__(
        self,
        client: Optional[GenerationClient] = None,
        *,
        relay: Optional[SubmissionRelay] = None,
        settings: Optional[ChatSettings] = None,
        greet: bool = True,
    ) -> None:
        """
        Args:
            client: generation client; defaults to LangChainGenerationClient(settings).
            relay: submission relay; defaults to LoggingSubmissionRelay().
            greet: open the session with the greeting message.
        """
        self.settings = settings or ChatSettings.from_env()
        self.session = ConversationSession(greeting=GREETING if greet else None)
        self.executor = DialogTurnExecutor(client or LangChainGenerationClient(self.settings), settings=self.settings)
        self.flow = ConfirmationFlow(self.settings, session_id=self.session.session_id)
        self.relay = relay or LoggingSubmissionRelay()
        self._in_flight = False

    # ---------- Packets ----------

    def _packet(
        self,
        *,
        cid: str,
        ok: bool,
        utterance: Optional[str] = None,
        reply: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
        submission: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        pending = self.flow.pending
        pkt = {
            "utterance": utterance,
            "ok": ok,
            "reply": reply,
            "result": result,
            "workflow": self.flow.state.value,
            "pending_report": pending.model_dump() if pending else None,
            "submission": submission,
            "error": error,
            "correlation_id": cid,
        }
        app_logger.log_turn_packet(pkt, session_id=self.session.session_id)
        return pkt

    def _refused(self, cid: str, code: ErrorCode, utterance: Optional[str] = None) -> Dict[str, Any]:
        err = make_error(code=code, origin=ErrorOrigin.SESSION, retryable=code is not ErrorCode.SESSION_CLOSED,
                         correlation_id=cid)
        return self._packet(cid=cid, ok=False, utterance=utterance, error=err)

    def _gate(self, cid: str, utterance: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if self._in_flight:
            return self._refused(cid, ErrorCode.TURN_IN_FLIGHT, utterance)
        if self.flow.state is WorkflowState.SUBMITTED:
            return self._refused(cid, ErrorCode.SESSION_CLOSED, utterance)
        return None

    # ---------- Turn handling ----------

    def handle(self, user_text: str) -> Dict[str, Any]:
        """Run a single user turn. Never raises on generation problems."""
        cid = new_correlation_id("turn")
        text = (user_text or "").strip()

        refused = self._gate(cid, text)
        if refused:
            return refused
        if not text:
            return self._refused(cid, ErrorCode.EMPTY_MESSAGE, text)
        if self.flow.state is WorkflowState.PENDING_CONFIRMATION:
            return self._refused(cid, ErrorCode.CONFIRMATION_PENDING, text)

        self._in_flight = True
        try:
            outcome = self.executor.run_turn(self.session.snapshot(), text, correlation_id=cid)
            self.session.append(ChatMessage(role="user", content=text))
            self.session.append(ChatMessage(role="model", content=outcome.result.response_text))
            self.flow.observe(outcome.result)
        finally:
            self._in_flight = False

        return self._packet(
            cid=cid,
            ok=outcome.error is None,
            utterance=text,
            reply=outcome.result.response_text,
            result=outcome.result.model_dump(),
            error=outcome.error,
        )

    def confirm(self) -> Dict[str, Any]:
        """Submit the pending report. Failure is reported, the chat stays usable."""
        cid = new_correlation_id("confirm")
        refused = self._gate(cid)
        if refused:
            return refused
        if self.flow.state is not WorkflowState.PENDING_CONFIRMATION:
            err = make_error(code=ErrorCode.UNKNOWN_ERROR, origin=ErrorOrigin.SESSION, retryable=False,
                             user_message="There is no report waiting for confirmation.",
                             next_actions=[], correlation_id=cid)
            return self._packet(cid=cid, ok=False, error=err)

        self._in_flight = True
        try:
            outcome = self.flow.confirm(self.relay)
        finally:
            self._in_flight = False

        reply = outcome.message if outcome.ok else SUBMISSION_FAILED
        self.session.append(ChatMessage(role="model", content=reply))
        error = None
        if not outcome.ok:
            error = dict(self.flow.last_error or {}, correlation_id=cid)
        return self._packet(
            cid=cid,
            ok=outcome.ok,
            reply=reply,
            submission=outcome.model_dump(),
            error=error,
        )

    def reject(self) -> Dict[str, Any]:
        """Discard the pending report and ask what to correct."""
        cid = new_correlation_id("reject")
        refused = self._gate(cid)
        if refused:
            return refused
        if self.flow.state is not WorkflowState.PENDING_CONFIRMATION:
            err = make_error(code=ErrorCode.UNKNOWN_ERROR, origin=ErrorOrigin.SESSION, retryable=False,
                             user_message="There is no report waiting for confirmation.",
                             next_actions=[], correlation_id=cid)
            return self._packet(cid=cid, ok=False, error=err)

        prompt = self.flow.reject()
        self.session.append(prompt)
        return self._packet(cid=cid, ok=True, reply=prompt.content)
