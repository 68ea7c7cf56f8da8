"""Chat models for the streaming chat API."""

import json
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Message author role."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatRequest(BaseModel):
    """Request body for ``POST /chat/message``."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, max_length=2000, description="User message")
    session_id: Optional[str] = Field(
        default=None,
        alias="sessionId",
        description="Existing session to continue; a new one is created when unknown",
    )


class HistoryMessage(BaseModel):
    """A message in the prompt history window."""

    role: MessageRole
    content: str

    def to_llm(self) -> dict:
        return {"role": self.role.value, "content": self.content}


class _StreamEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_sse(self) -> str:
        """Serialize as one server-sent event frame."""
        payload = self.model_dump(by_alias=True, exclude_none=True)
        return f"data: {json.dumps(payload)}\n\n"


class StartEvent(_StreamEvent):
    type: Literal["start"] = "start"
    session_id: str = Field(..., alias="sessionId")


class TokenEvent(_StreamEvent):
    type: Literal["token"] = "token"
    content: str


class DoneEvent(_StreamEvent):
    type: Literal["done"] = "done"
    message_id: str = Field(..., alias="messageId")


class ErrorEvent(_StreamEvent):
    type: Literal["error"] = "error"
    code: str = "llm_error"
    message: str = "Service temporarily unavailable"


StreamEvent = Union[StartEvent, TokenEvent, DoneEvent, ErrorEvent]


class MessageResponse(BaseModel):
    """A persisted chat message."""

    id: str
    role: MessageRole
    content: str
    token_count: int
    created_at: datetime


class HistoryResponse(BaseModel):
    """Response model for ``GET /chat/history/{session_id}``."""

    session_id: str
    messages: List[MessageResponse]


class BotConfigResponse(BaseModel):
    """Public bot configuration for chat widgets."""

    bot_name: str
    welcome_message: str
