"""Domain models for the chat application."""

from typing import List, Literal, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["user", "assistant"]


class Message(BaseModel):
    """Transcript entry held by the client."""

    id: UUID = Field(default_factory=uuid4)
    role: Role
    content: str


class ClientMessage(BaseModel):
    """Role/content pair as sent over the wire."""

    role: Role
    content: str


class ChatRequest(BaseModel):
    """Body of ``POST /api/chat``."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[ClientMessage] = []
    session_id: Optional[str] = Field(default=None, alias="sessionId")

    @field_validator("messages", mode="before")
    @classmethod
    def _null_messages(cls, v):
        return [] if v is None else v


class StoredConversation(BaseModel):
    """Cached copy of a session's last known history."""

    messages: List[ClientMessage]
    expires_at: float


# Upstream (Gemini) request shape

class Part(BaseModel):
    text: str


class Content(BaseModel):
    role: Literal["user", "model"]
    parts: List[Part]


class GenerateContentRequest(BaseModel):
    contents: List[Content]
