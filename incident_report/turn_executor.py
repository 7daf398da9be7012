"""
incident_report.turn_executor
=============================

Runs one dialog turn: model call → optional verifier round trip → follow-up
model call → reconciled ExtractionResult.

Phases
------
    AWAITING_MODEL ──OUTPUT_READY / GENERATION_FAILED──────────────▶ FINALIZED
          │
          └─TOOLS_REQUESTED─▶ TOOL_REQUESTED ─TOOLS_DISPATCHED─▶ AWAITING_TOOL_RESULTS
                                                                        │
                               FINALIZED ◀── OUTPUT_READY ──┐   TOOL_RESULTS_READY
                               FINALIZED ◀── GENERATION_FAILED ─ AWAITING_FOLLOWUP ◀┘
                               FINALIZED ◀── TOOLS_REQUESTED ──┘   (fallback)

`next_phase(phase, event)` is the pure transition function over that table; an
illegal (phase, event) pair raises ValueError.

Turn contract
-------------
- Context sent to the model: history + the new user message, in order.
- The verifier is the only tool, tool_choice="auto". Requests are executed in
  the order received and their results line up index-for-index.
- Exactly one tool round per turn. If the follow-up asks for tools again the
  turn resolves to the fallback result.
- Any generation failure, timeout, empty or unparseable output resolves to the
  fallback result (prompts.FALLBACK_RESPONSE, no fields, is_complete=False).
  Nothing is raised to the caller.
- The executor never touches the session; appending the reply is the caller's
  job. With a deterministic client the result depends only on (history, message).

Public API
----------
- DialogTurnExecutor(client, settings=None)
    run_turn(history, message) -> TurnOutcome      # result + diagnostics
    process_turn(history, message) -> ExtractionResult
- process_turn(history, message, *, client) -> ExtractionResult
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from incident_report import app_logger
from incident_report.config import ChatSettings
from incident_report.error_handler import (
    ErrorCode,
    ErrorOrigin,
    error_from_exception,
    make_error,
    new_correlation_id,
)
from incident_report.generation_client import GenerationClient, GenerationResponse, GenerationUnavailableError
from incident_report.models import ChatMessage, ExtractionResult, ToolInvocation, ToolResult, extraction_output_schema
from incident_report.response_reconciler import ReconciliationFailure, fallback_result, reconcile
from incident_report.zone_verifier import TOOL_DESCRIPTOR, run_tools


# ------------------------------ State machine ------------------------------

class TurnPhase(str, Enum):
    AWAITING_MODEL = "AWAITING_MODEL"
    TOOL_REQUESTED = "TOOL_REQUESTED"
    AWAITING_TOOL_RESULTS = "AWAITING_TOOL_RESULTS"
    AWAITING_FOLLOWUP = "AWAITING_FOLLOWUP"
    FINALIZED = "FINALIZED"


class TurnEvent(str, Enum):
    OUTPUT_READY = "OUTPUT_READY"
    TOOLS_REQUESTED = "TOOLS_REQUESTED"
    GENERATION_FAILED = "GENERATION_FAILED"
    TOOLS_DISPATCHED = "TOOLS_DISPATCHED"
    TOOL_RESULTS_READY = "TOOL_RESULTS_READY"


_TRANSITIONS: Dict[Tuple[TurnPhase, TurnEvent], TurnPhase] = {
    (TurnPhase.AWAITING_MODEL, TurnEvent.OUTPUT_READY): TurnPhase.FINALIZED,
    (TurnPhase.AWAITING_MODEL, TurnEvent.GENERATION_FAILED): TurnPhase.FINALIZED,
    (TurnPhase.AWAITING_MODEL, TurnEvent.TOOLS_REQUESTED): TurnPhase.TOOL_REQUESTED,
    (TurnPhase.TOOL_REQUESTED, TurnEvent.TOOLS_DISPATCHED): TurnPhase.AWAITING_TOOL_RESULTS,
    (TurnPhase.AWAITING_TOOL_RESULTS, TurnEvent.TOOL_RESULTS_READY): TurnPhase.AWAITING_FOLLOWUP,
    (TurnPhase.AWAITING_FOLLOWUP, TurnEvent.OUTPUT_READY): TurnPhase.FINALIZED,
    (TurnPhase.AWAITING_FOLLOWUP, TurnEvent.GENERATION_FAILED): TurnPhase.FINALIZED,
    # single tool round per turn: a second request ends the turn
    (TurnPhase.AWAITING_FOLLOWUP, TurnEvent.TOOLS_REQUESTED): TurnPhase.FINALIZED,
}


def next_phase(phase: TurnPhase, event: TurnEvent) -> TurnPhase:
    try:
        return _TRANSITIONS[(TurnPhase(phase), TurnEvent(event))]
    except KeyError:
        raise ValueError(f"illegal turn transition: {phase} --{event}-->") from None


# ------------------------------ Turn records -------------------------------

@dataclass
class TurnOutcome:
    result: ExtractionResult
    phases: List[str]
    correlation_id: str
    tool_requests: List[ToolInvocation] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    tokens: Dict[str, int] = field(default_factory=lambda: {"in": 0, "out": 0})

    @property
    def used_fallback(self) -> bool:
        return self.error is not None


@dataclass
class _TurnRun:
    correlation_id: str
    phase: TurnPhase = TurnPhase.AWAITING_MODEL
    phases: List[str] = field(default_factory=lambda: [TurnPhase.AWAITING_MODEL.value])
    tokens: Dict[str, int] = field(default_factory=lambda: {"in": 0, "out": 0})
    tool_requests: List[ToolInvocation] = field(default_factory=list)
    tool_results: List[ToolResult] = field(default_factory=list)

    def advance(self, event: TurnEvent) -> TurnPhase:
        before = self.phase
        self.phase = next_phase(before, event)
        self.phases.append(self.phase.value)
        app_logger.log_event(
            "Turn.PHASE",
            {"from": before.value, "on": event.value, "to": self.phase.value},
            correlation_id=self.correlation_id,
            phase=self.phase.value,
        )
        return self.phase

    def add_tokens(self, usage: Dict[str, int]) -> None:
        self.tokens["in"] += int(usage.get("in", 0) or 0)
        self.tokens["out"] += int(usage.get("out", 0) or 0)


def _with_call_ids(requests: Sequence[ToolInvocation]) -> List[ToolInvocation]:
    return [
        req if req.call_id else req.model_copy(update={"call_id": f"call-{i}"})
        for i, req in enumerate(requests)
    ]


def build_followup_context(
    context: Sequence[ChatMessage],
    first: GenerationResponse,
    requests: Sequence[ToolInvocation],
    results: Sequence[ToolResult],
) -> List[ChatMessage]:
    """Original context + the model's partial message + one tool message per result."""
    out = list(context)
    out.append(ChatMessage(role="model", content=first.content or "", tool_requests=tuple(requests)))
    for req, res in zip(requests, results):
        out.append(
            ChatMessage(
                role="tool",
                content=json.dumps(res.to_wire()),
                tool_name=req.name,
                tool_call_id=req.call_id,
            )
        )
    return out


# -------------------------------- Executor ---------------------------------

class DialogTurnExecutor:
    def __init__(self, client: GenerationClient, settings: Optional[ChatSettings] = None):
        if client is None:
            raise ValueError("a GenerationClient is required")
        self.client = client
        self.settings = settings or ChatSettings.from_env()
        self._schema = extraction_output_schema()
        self._tools = [TOOL_DESCRIPTOR]

    # ------------------------------- Internals --------------------------------

    def _generate(
        self, run: _TurnRun, messages: Sequence[ChatMessage]
    ) -> Tuple[Optional[GenerationResponse], Optional[Dict[str, Any]]]:
        try:
            resp = self.client.generate(
                messages, output_schema=self._schema, tools=self._tools, tool_choice="auto"
            )
        except Exception as e:
            timed_out = isinstance(e, GenerationUnavailableError) and e.timeout
            err = error_from_exception(
                e,
                code=ErrorCode.GENERATION_TIMEOUT if timed_out else ErrorCode.GENERATION_FAILURE,
                origin=ErrorOrigin.GENERATION,
                retryable=True,
                details={"model": self.settings.model_name},
                context={"phase": run.phase.value},
                correlation_id=run.correlation_id,
            )
            return None, err
        if not isinstance(resp, GenerationResponse):
            err = make_error(
                code=ErrorCode.GENERATION_FAILURE,
                origin=ErrorOrigin.GENERATION,
                retryable=True,
                dev_message=f"client returned {type(resp).__name__}, not GenerationResponse",
                details={"model": self.settings.model_name},
                context={"phase": run.phase.value},
                correlation_id=run.correlation_id,
            )
            return None, err
        run.add_tokens(resp.tokens or {})
        return resp, None

    def _fail(self, run: _TurnRun, err: Dict[str, Any]) -> TurnOutcome:
        app_logger.log_error_event("Turn.ERROR", err, correlation_id=run.correlation_id)
        return self._outcome(run, fallback_result(), err)

    def _finalize(self, run: _TurnRun, raw: Any) -> TurnOutcome:
        reconciled = reconcile(raw)
        if isinstance(reconciled, ReconciliationFailure):
            err = make_error(
                code=ErrorCode.SCHEMA_RECONCILIATION_FAILURE,
                origin=ErrorOrigin.RECONCILER,
                retryable=True,
                dev_message=reconciled.reason,
                details={"raw_type": reconciled.raw_type},
                context={"phase": run.phase.value},
                correlation_id=run.correlation_id,
            )
            return self._fail(run, err)
        return self._outcome(run, reconciled, None)

    def _outcome(self, run: _TurnRun, result: ExtractionResult, err: Optional[Dict[str, Any]]) -> TurnOutcome:
        app_logger.log_event(
            "Turn.FINALIZED",
            {
                "phases": run.phases,
                "tool_calls": len(run.tool_requests),
                "has_zone_id": result.zone_id is not None,
                "has_description": result.description is not None,
                "is_complete": result.is_complete,
                "fallback": err is not None,
                "tokens": dict(run.tokens),
            },
            correlation_id=run.correlation_id,
            phase=run.phase.value,
        )
        return TurnOutcome(
            result=result,
            phases=list(run.phases),
            correlation_id=run.correlation_id,
            tool_requests=list(run.tool_requests),
            tool_results=list(run.tool_results),
            error=err,
            tokens=dict(run.tokens),
        )

    # ------------------------------- Main API ---------------------------------

    def run_turn(
        self,
        history: Sequence[ChatMessage],
        message: str,
        *,
        correlation_id: Optional[str] = None,
    ) -> TurnOutcome:
        run = _TurnRun(correlation_id=correlation_id or new_correlation_id("turn"))
        context = list(history) + [ChatMessage(role="user", content=message)]

        # 1) first model call
        first, err = self._generate(run, context)
        if err is not None:
            run.advance(TurnEvent.GENERATION_FAILED)
            return self._fail(run, err)
        if not first.tool_requests:
            run.advance(TurnEvent.OUTPUT_READY)
            return self._finalize(run, first.output)

        # 2) tool round trip
        run.advance(TurnEvent.TOOLS_REQUESTED)
        run.tool_requests = _with_call_ids(first.tool_requests)
        run.advance(TurnEvent.TOOLS_DISPATCHED)
        run.tool_results = run_tools(run.tool_requests)
        for req, res in zip(run.tool_requests, run.tool_results):
            app_logger.log_event(
                "Turn.TOOL_RESULT",
                {"tool": req.name, "call_id": req.call_id, "identifier": req.identifier, **res.to_wire()},
                correlation_id=run.correlation_id,
                phase=run.phase.value,
            )
        run.advance(TurnEvent.TOOL_RESULTS_READY)

        # 3) follow-up call
        followup_ctx = build_followup_context(context, first, run.tool_requests, run.tool_results)
        second, err = self._generate(run, followup_ctx)
        if err is not None:
            run.advance(TurnEvent.GENERATION_FAILED)
            return self._fail(run, err)
        if second.tool_requests:
            run.advance(TurnEvent.TOOLS_REQUESTED)
            return self._fail(
                run,
                make_error(
                    code=ErrorCode.TOOL_CHAIN_UNSUPPORTED,
                    origin=ErrorOrigin.GENERATION,
                    retryable=True,
                    dev_message="follow-up call requested tools again",
                    details={"tools": [r.name for r in second.tool_requests]},
                    context={"phase": TurnPhase.AWAITING_FOLLOWUP.value},
                    correlation_id=run.correlation_id,
                ),
            )
        run.advance(TurnEvent.OUTPUT_READY)
        return self._finalize(run, second.output)

    def process_turn(self, history: Sequence[ChatMessage], message: str) -> ExtractionResult:
        return self.run_turn(history, message).result


def process_turn(
    history: Sequence[ChatMessage],
    message: str,
    *,
    client: GenerationClient,
    settings: Optional[ChatSettings] = None,
) -> ExtractionResult:
    return DialogTurnExecutor(client, settings=settings).process_turn(history, message)
