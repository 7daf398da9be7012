#!/usr/bin/env python3
"""
Project: Incident Report Chat
File: generation_client.py

Boundary to the text-generation service.

The turn executor only sees the `GenerationClient` protocol:

    generate(messages, *, output_schema, tools, tool_choice="auto") -> GenerationResponse

    GenerationResponse:
        output        raw structured output (dict / JSON string) or None
        tool_requests [ToolInvocation, ...] in the order the service emitted them
        content       raw text of the model message (replayed on the follow-up call)
        tokens        {"in": int, "out": int}
        model         model name

Implementations
- LangChainGenerationClient: LangChain ChatOpenAI with the verifier bound as a
  tool and JSON output mode. Backend failures raise GenerationUnavailableError.
- FakeGenerationClient: scripted test double; records every call.

Message mapping (ChatMessage -> LangChain)
- user  -> HumanMessage
- model -> AIMessage (+ tool_calls when the message carries tool_requests)
- tool  -> ToolMessage(tool_call_id=...)
A SystemMessage with prompts.SYSTEM_PROMPT and the output schema goes first.

Dependencies
- External: langchain-openai, langchain-core, openai (timeout exception type)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

import openai
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI

from incident_report.config import ChatSettings
from incident_report.models import ChatMessage, ToolInvocation
from incident_report.prompts import SYSTEM_PROMPT


class GenerationUnavailableError(RuntimeError):
    """Raised when the generation backend fails (no auto-fallback here)."""

    def __init__(self, message: str, *, timeout: bool = False):
        super().__init__(message)
        self.timeout = timeout


@dataclass
class GenerationResponse:
    output: Optional[Any] = None
    tool_requests: List[ToolInvocation] = field(default_factory=list)
    content: str = ""
    tokens: Dict[str, int] = field(default_factory=lambda: {"in": 0, "out": 0})
    model: str = "unknown"


class GenerationClient(Protocol):
    def generate(
        self,
        messages: Sequence[ChatMessage],
        *,
        output_schema: Dict[str, Any],
        tools: Sequence[Dict[str, Any]],
        tool_choice: str = "auto",
    ) -> GenerationResponse:
        ...


# ---------------------------- Top-level helpers -----------------------------

def _to_openai_tool(descriptor: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": descriptor["name"],
            "description": descriptor.get("description", ""),
            "parameters": descriptor.get("input_schema") or {"type": "object", "properties": {}},
        },
    }


def to_langchain_messages(
    messages: Sequence[ChatMessage],
    *,
    system_prompt: str = SYSTEM_PROMPT,
    output_schema: Optional[Dict[str, Any]] = None,
) -> List[BaseMessage]:
    system = system_prompt
    if output_schema:
        system += "\nOutput JSON schema:\n" + json.dumps(output_schema, ensure_ascii=False)
    out: List[BaseMessage] = [SystemMessage(content=system)]
    for msg in messages:
        if msg.role == "user":
            out.append(HumanMessage(content=msg.content))
        elif msg.role == "model":
            calls = [
                {"name": req.name, "args": dict(req.input), "id": req.call_id or f"call-{i}"}
                for i, req in enumerate(msg.tool_requests)
            ]
            out.append(AIMessage(content=msg.content, tool_calls=calls))
        else:
            out.append(
                ToolMessage(content=msg.content, tool_call_id=msg.tool_call_id or "", name=msg.tool_name)
            )
    return out


def _message_text(ai_message: Any) -> str:
    content = getattr(ai_message, "content", "")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = [p.get("text", "") if isinstance(p, dict) else str(p) for p in content]
        return "".join(parts).strip()
    return str(content).strip()


def _extract_token_usage(ai_message: Any) -> Dict[str, int]:
    meta = getattr(ai_message, "response_metadata", {}) or {}
    usage = meta.get("token_usage") or {}
    if usage:
        return {
            "in": int(usage.get("prompt_tokens", 0) or 0),
            "out": int(usage.get("completion_tokens", 0) or 0),
        }
    usage2 = getattr(ai_message, "usage_metadata", None) or {}
    return {
        "in": int(usage2.get("input_tokens", 0) or 0),
        "out": int(usage2.get("output_tokens", 0) or 0),
    }


def parse_ai_message(ai_message: Any, *, model: str) -> GenerationResponse:
    text = _message_text(ai_message)
    requests = [
        ToolInvocation(name=call.get("name", ""), input=dict(call.get("args") or {}), call_id=call.get("id"))
        for call in (getattr(ai_message, "tool_calls", None) or [])
    ]
    return GenerationResponse(
        output=text or None,
        tool_requests=requests,
        content=text,
        tokens=_extract_token_usage(ai_message),
        model=model,
    )


# ------------------------------ Real client ----------------------------------

class LangChainGenerationClient:
    """
    Structured-output chat calls through LangChain's ChatOpenAI.

    Args:
        settings: model/temperature/timeout; defaults to ChatSettings.from_env().
        llm: optional injected chat model exposing .bind_tools(...).invoke(...)
             (tests, alternative providers).
    """

    def __init__(self, settings: Optional[ChatSettings] = None, llm: Any = None, system_prompt: str = SYSTEM_PROMPT):
        self._settings = settings or ChatSettings.from_env()
        self._llm = llm  # created lazily
        self._system_prompt = system_prompt

    @property
    def model_name(self) -> str:
        return self._settings.model_name

    def _ensure_llm(self) -> Any:
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=self._settings.model_name,
                temperature=self._settings.temperature,
                timeout=self._settings.timeout_s,
                max_retries=self._settings.max_retries,
                model_kwargs={"response_format": {"type": "json_object"}},
            )
        return self._llm

    def generate(
        self,
        messages: Sequence[ChatMessage],
        *,
        output_schema: Dict[str, Any],
        tools: Sequence[Dict[str, Any]],
        tool_choice: str = "auto",
    ) -> GenerationResponse:
        lc_messages = to_langchain_messages(
            messages, system_prompt=self._system_prompt, output_schema=output_schema
        )
        try:
            llm = self._ensure_llm()
            runnable = llm.bind_tools([_to_openai_tool(t) for t in tools], tool_choice=tool_choice) if tools else llm
            ai_msg = runnable.invoke(lc_messages)
        except openai.APITimeoutError as e:
            raise GenerationUnavailableError(f"generation timed out: {e!r}", timeout=True) from e
        except Exception as e:
            raise GenerationUnavailableError(f"generation backend failed: {e!r}") from e
        return parse_ai_message(ai_msg, model=self._settings.model_name)


# ------------------------------ Test Double ----------------------------------

ScriptItem = Union[GenerationResponse, Dict[str, Any], BaseException, None]


class FakeGenerationClient:
    """
    Minimal drop-in for tests: replays a script of responses, one per call.

    Script items:
      - GenerationResponse   -> returned as-is
      - dict                 -> shorthand for GenerationResponse(output=<dict>)
      - None                 -> a response with no output and no tool requests
      - an exception object  -> raised

    Or pass `responder=fn(messages) -> ScriptItem` for input-dependent answers.
    When the script runs out, every further call answers with no output.

    Usage:
        client = FakeGenerationClient([
            GenerationResponse(tool_requests=[ToolInvocation(name="verifyZoneIdentifier",
                                                             input={"identifier": "82801ffffffffff"})]),
            {"responseText": "Got it", "zoneId": "82801ffffffffff",
             "description": "illegal logging", "isComplete": True},
        ])
    """

    def __init__(
        self,
        responses: Optional[Sequence[ScriptItem]] = None,
        *,
        responder: Optional[Callable[[List[ChatMessage]], ScriptItem]] = None,
        model: str = "fake-model",
    ):
        self._script = list(responses or [])
        self._responder = responder
        self._model = model
        self.calls: List[Dict[str, Any]] = []

    def generate(
        self,
        messages: Sequence[ChatMessage],
        *,
        output_schema: Dict[str, Any],
        tools: Sequence[Dict[str, Any]],
        tool_choice: str = "auto",
    ) -> GenerationResponse:
        snapshot = list(messages)
        self.calls.append(
            {"messages": snapshot, "tools": [t.get("name") for t in tools], "tool_choice": tool_choice}
        )
        if self._responder is not None:
            item = self._responder(snapshot)
        elif self._script:
            item = self._script.pop(0)
        else:
            item = None

        if isinstance(item, BaseException):
            raise item
        if item is None:
            return GenerationResponse(model=self._model)
        if isinstance(item, GenerationResponse):
            return item
        return GenerationResponse(output=item, content=json.dumps(item, ensure_ascii=False), model=self._model)
