"""
tests/integrations/test_chat_agent_flow.py

What this tests (and why)
-------------------------
End-to-end chat flows through IncidentChatAgent with a scripted generation
client and a recording relay:

1) Happy path: description first, then a zone id verified through the tool
   round trip -> summary pending -> confirm -> submitted exactly once.
2) No-output turn: fallback reply, error envelope attached, still COLLECTING.
3) Reject: report cleared, corrective prompt appended, next turn proceeds and
   can capture a corrected report.
4) Input gating: blank input, chatting while a summary is pending, anything
   after submission, and overlapping turns are refused without calling the
   model.
5) Submission failure: report retained, the user can retry.
6) Logging: every packet is written once as a TURN line in the JSONL log.

File / module dependencies
--------------------------
- incident_report.chat_agent.IncidentChatAgent (system under test)
- incident_report.generation_client.FakeGenerationClient
- tests.helpers (zone ids, RecordingRelay, tool request builders)
"""

import json

import pytest

from incident_report.chat_agent import IncidentChatAgent
from incident_report.config import ChatSettings
from incident_report.generation_client import FakeGenerationClient
from incident_report.prompts import CORRECTION_PROMPT, FALLBACK_RESPONSE, GREETING, SUBMISSION_FAILED, SUBMISSION_OK
from tests.helpers import ZONE_RES2, ZONE_RES5, RecordingRelay, complete_output, tool_turn


def _agent(script, settings, relay=None):
    client = FakeGenerationClient(script)
    return IncidentChatAgent(client, relay=relay or RecordingRelay(), settings=settings), client


def test_end_to_end_report_is_submitted_once(settings):
    relay = RecordingRelay()
    agent, client = _agent(
        [
            {"responseText": "Thanks. Where did this happen?", "description": "illegal logging"},
            tool_turn(ZONE_RES2),
            complete_output(text=f"Zone {ZONE_RES2}, illegal logging. Is this correct?"),
        ],
        settings,
        relay,
    )

    p1 = agent.handle("I saw illegal logging")
    assert p1["ok"] is True
    assert p1["workflow"] == "COLLECTING"
    assert p1["result"]["description"] == "illegal logging"
    assert p1["pending_report"] is None

    p2 = agent.handle(f"The zone is {ZONE_RES2}")
    assert p2["ok"] is True
    assert p2["result"]["is_complete"] is True
    assert p2["workflow"] == "PENDING_CONFIRMATION"
    assert p2["pending_report"] == {"zone_id": ZONE_RES2, "description": "illegal logging"}
    assert len(client.calls) == 3

    # first call saw greeting + user; second turn's first call saw the full history
    assert [m.role for m in client.calls[0]["messages"]] == ["model", "user"]
    assert client.calls[0]["messages"][0].content == GREETING
    assert [m.role for m in client.calls[1]["messages"]] == ["model", "user", "model", "user"]

    p3 = agent.confirm()
    assert p3["ok"] is True
    assert p3["workflow"] == "SUBMITTED"
    assert p3["submission"] == {"status": "success", "message": "Stored."}
    assert relay.calls == [(ZONE_RES2, "illegal logging")]

    # the chat is closed now
    assert agent.handle("one more thing")["error"]["code"] == "SESSION_CLOSED"
    assert agent.confirm()["error"]["code"] == "SESSION_CLOSED"
    assert relay.calls == [(ZONE_RES2, "illegal logging")]
    assert len(client.calls) == 3

    roles = [m.role for m in agent.session.snapshot()]
    assert roles == ["model", "user", "model", "user", "model", "model"]


def test_no_output_turn_falls_back_and_keeps_collecting(settings):
    agent, _ = _agent([None], settings)
    pkt = agent.handle("hello?")

    assert pkt["ok"] is False
    assert pkt["reply"] == FALLBACK_RESPONSE
    assert pkt["workflow"] == "COLLECTING"
    assert pkt["error"]["code"] == "SCHEMA_RECONCILIATION_FAILURE"
    assert pkt["error"]["correlation_id"] == pkt["correlation_id"]
    assert pkt["result"] == {
        "response_text": FALLBACK_RESPONSE,
        "zone_id": None,
        "description": None,
        "is_complete": False,
    }
    history = agent.session.snapshot()
    assert [m.content for m in history[-2:]] == ["hello?", FALLBACK_RESPONSE]


def test_wrong_resolution_never_reaches_confirmation(settings):
    agent, _ = _agent([tool_turn(ZONE_RES5), complete_output(zone_id=ZONE_RES5)], settings)
    pkt = agent.handle(f"{ZONE_RES5}, illegal logging")
    assert pkt["result"]["is_complete"] is False
    assert pkt["workflow"] == "COLLECTING"


def test_reject_then_next_turn_proceeds(settings):
    agent, client = _agent(
        [
            complete_output(),
            {"responseText": "What should the description say?"},
            complete_output(description="illegal logging near the river"),
        ],
        settings,
    )
    assert agent.handle(f"{ZONE_RES2} illegal logging")["workflow"] == "PENDING_CONFIRMATION"

    rejected = agent.reject()
    assert rejected["ok"] is True
    assert rejected["reply"] == CORRECTION_PROMPT
    assert rejected["workflow"] == "COLLECTING"
    assert rejected["pending_report"] is None
    assert agent.session.snapshot()[-1].content == CORRECTION_PROMPT

    follow = agent.handle("The description is wrong")
    assert follow["ok"] is True
    assert follow["workflow"] == "COLLECTING"
    # the corrective prompt is part of the context of the next turn
    assert client.calls[1]["messages"][-2].content == CORRECTION_PROMPT

    again = agent.handle("It is near the river")
    assert again["pending_report"] == {"zone_id": ZONE_RES2, "description": "illegal logging near the river"}


def test_input_gating(settings):
    agent, client = _agent([complete_output()], settings)

    assert agent.handle("   ")["error"]["code"] == "EMPTY_MESSAGE"
    assert agent.confirm()["error"]["code"] == "UNKNOWN_ERROR"
    assert agent.reject()["ok"] is False
    assert len(client.calls) == 0

    agent.handle(f"{ZONE_RES2} illegal logging")
    blocked = agent.handle("actually, wait")
    assert blocked["ok"] is False
    assert blocked["error"]["code"] == "CONFIRMATION_PENDING"
    assert blocked["workflow"] == "PENDING_CONFIRMATION"
    assert len(client.calls) == 1

    agent._in_flight = True
    assert agent.confirm()["error"]["code"] == "TURN_IN_FLIGHT"
    agent._in_flight = False


def test_failed_submission_can_be_retried(settings):
    relay = RecordingRelay([RuntimeError("storage offline")])
    agent, _ = _agent([complete_output()], settings, relay)
    agent.handle(f"{ZONE_RES2} illegal logging")

    failed = agent.confirm()
    assert failed["ok"] is False
    assert failed["reply"] == SUBMISSION_FAILED
    assert failed["submission"]["status"] == "error"
    assert failed["error"]["code"] == "SUBMISSION_FAILURE"
    assert failed["error"]["correlation_id"] == failed["correlation_id"]
    assert failed["workflow"] == "PENDING_CONFIRMATION"

    retried = agent.confirm()
    assert retried["ok"] is True
    assert retried["workflow"] == "SUBMITTED"
    assert len(relay.calls) == 2


def test_default_relay_logs_submission(settings):
    agent = IncidentChatAgent(FakeGenerationClient([complete_output()]), settings=settings)
    agent.handle(f"{ZONE_RES2} illegal logging")
    pkt = agent.confirm()
    assert pkt["reply"] == SUBMISSION_OK
    assert agent.relay.received[0].zone_id == ZONE_RES2


def test_packets_are_logged_as_turn_lines(settings, configure_log_root):
    agent, _ = _agent([{"responseText": "Where did it happen?"}], settings)
    pkt = agent.handle("there is a fire")

    lines = (configure_log_root / "app.jsonl").read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines if line.strip()]
    turns = [r for r in records if r["event"] == "TURN" and r["cid"] == pkt["correlation_id"]]
    assert len(turns) == 1
    assert turns[0]["session_id"] == agent.session.session_id
    assert turns[0]["payload"]["reply"] == "Where did it happen?"
    assert turns[0]["workflow"] == "COLLECTING"

    phases = [r for r in records if r["event"] == "Turn.PHASE" and r["cid"] == pkt["correlation_id"]]
    assert [p["payload"]["to"] for p in phases] == ["FINALIZED"]


@pytest.mark.parametrize("retain, expected", [(True, "PENDING_CONFIRMATION"), (False, "COLLECTING")])
def test_retention_setting_controls_state_after_failure(retain, expected):
    relay = RecordingRelay([RuntimeError("down")])
    agent = IncidentChatAgent(
        FakeGenerationClient([complete_output()]),
        relay=relay,
        settings=ChatSettings(retain_report_on_submit_failure=retain),
    )
    agent.handle(f"{ZONE_RES2} illegal logging")
    assert agent.confirm()["workflow"] == expected
