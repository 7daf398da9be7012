"""
Project: Incident Report Chat
File: conversation.py

Append-only conversation history.

- ConversationState: frozen tuple of ChatMessage; append() returns a new state.
  Order is the prompt context, so nothing is ever removed or reordered.
- ConversationSession: owns the current state for one chat.
    append(message) -> ConversationState
    snapshot()      -> list[ChatMessage]   # copy handed to the turn executor

A user message may not follow another user message: the in-flight user message
is appended only after its turn resolved, together with the model reply.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from incident_report.error_handler import new_correlation_id
from incident_report.models import ChatMessage


class ConversationState(BaseModel):
    messages: Tuple[ChatMessage, ...] = Field(default=())
    model_config = ConfigDict(extra="forbid", frozen=True)

    def append(self, message: ChatMessage) -> "ConversationState":
        if message.role == "user" and self.messages and self.messages[-1].role == "user":
            raise ValueError("two consecutive user messages; append the model reply first")
        return ConversationState(messages=self.messages + (message,))

    def __len__(self) -> int:
        return len(self.messages)


class ConversationSession:
    def __init__(self, *, greeting: Optional[str] = None, session_id: Optional[str] = None) -> None:
        self.session_id = session_id or new_correlation_id("chat")
        self._state = ConversationState()
        if greeting:
            self.append(ChatMessage(role="model", content=greeting))

    @property
    def state(self) -> ConversationState:
        return self._state

    def append(self, message: ChatMessage) -> ConversationState:
        self._state = self._state.append(message)
        return self._state

    def snapshot(self) -> List[ChatMessage]:
        return list(self._state.messages)
