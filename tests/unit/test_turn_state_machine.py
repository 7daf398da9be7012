"""
tests/unit/test_turn_state_machine.py

What this tests (and why)
-------------------------
The per-turn phase table is a pure function. Every legal edge lands where the
turn executor expects it; anything else is a ValueError so a wiring mistake
can't silently skip a phase.
"""

import pytest

from incident_report.turn_executor import TurnEvent, TurnPhase, next_phase

P, E = TurnPhase, TurnEvent


@pytest.mark.parametrize(
    "phase, event, expected",
    [
        (P.AWAITING_MODEL, E.OUTPUT_READY, P.FINALIZED),
        (P.AWAITING_MODEL, E.GENERATION_FAILED, P.FINALIZED),
        (P.AWAITING_MODEL, E.TOOLS_REQUESTED, P.TOOL_REQUESTED),
        (P.TOOL_REQUESTED, E.TOOLS_DISPATCHED, P.AWAITING_TOOL_RESULTS),
        (P.AWAITING_TOOL_RESULTS, E.TOOL_RESULTS_READY, P.AWAITING_FOLLOWUP),
        (P.AWAITING_FOLLOWUP, E.OUTPUT_READY, P.FINALIZED),
        (P.AWAITING_FOLLOWUP, E.GENERATION_FAILED, P.FINALIZED),
        (P.AWAITING_FOLLOWUP, E.TOOLS_REQUESTED, P.FINALIZED),
    ],
)
def test_legal_transitions(phase, event, expected):
    assert next_phase(phase, event) is expected


def test_string_values_are_accepted():
    assert next_phase("AWAITING_MODEL", "TOOLS_REQUESTED") is P.TOOL_REQUESTED


@pytest.mark.parametrize(
    "phase, event",
    [
        (P.FINALIZED, E.OUTPUT_READY),
        (P.FINALIZED, E.TOOLS_REQUESTED),
        (P.AWAITING_MODEL, E.TOOL_RESULTS_READY),
        (P.TOOL_REQUESTED, E.OUTPUT_READY),
        (P.AWAITING_TOOL_RESULTS, E.GENERATION_FAILED),
    ],
)
def test_illegal_transitions_raise(phase, event):
    with pytest.raises(ValueError):
        next_phase(phase, event)


def test_finalized_is_terminal():
    for event in TurnEvent:
        with pytest.raises(ValueError):
            next_phase(P.FINALIZED, event)
