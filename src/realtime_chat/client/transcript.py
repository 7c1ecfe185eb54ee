"""Client-side transcript with a streamable assistant placeholder."""

from typing import Callable, List, Optional
from uuid import UUID

import structlog

from ..domain.models import ClientMessage, Message

logger = structlog.get_logger()

PENDING_CONTENT = "Thinking…"

Listener = Callable[[List[Message]], None]


class TranscriptError(Exception):
    """Raised on a mutation the transcript does not allow."""


class TranscriptStore:
    """Ordered, append-only list of messages.

    Only the trailing assistant placeholder may change, and only while it is
    open. Every mutation is pushed to the subscribed listeners.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []
        self._open_placeholder: Optional[UUID] = None
        self._listeners: List[Listener] = []

    @property
    def messages(self) -> List[Message]:
        return [m.model_copy() for m in self._messages]

    @property
    def open_placeholder_id(self) -> Optional[UUID]:
        return self._open_placeholder

    def __len__(self) -> int:
        return len(self._messages)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a render callback; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.messages
        for listener in list(self._listeners):
            listener(snapshot)

    def append_user_message(self, text: str) -> Optional[Message]:
        if not text or not text.strip():
            return None
        message = Message(role="user", content=text)
        self._messages.append(message)
        self._notify()
        return message

    def append_assistant_placeholder(self) -> Message:
        if self._open_placeholder is not None:
            raise TranscriptError("An assistant reply is already streaming")
        message = Message(role="assistant", content=PENDING_CONTENT)
        self._messages.append(message)
        self._open_placeholder = message.id
        self._notify()
        return message

    def update_placeholder_content(self, message_id: UUID, new_content: str) -> None:
        """Replace the open placeholder's content; empty keeps the pending marker."""
        if message_id != self._open_placeholder:
            raise TranscriptError(f"Message {message_id} is not an open placeholder")
        for message in reversed(self._messages):
            if message.id == message_id:
                message.content = new_content or PENDING_CONTENT
                break
        self._notify()

    def close_placeholder(self) -> None:
        """Freeze the placeholder once its stream has ended or failed."""
        self._open_placeholder = None

    def history(self) -> List[ClientMessage]:
        """Role/content pairs ready to send to the relay."""
        return [ClientMessage(role=m.role, content=m.content) for m in self._messages]

    def clear(self) -> None:
        if self._open_placeholder is not None:
            raise TranscriptError("Cannot clear while a reply is streaming")
        self._messages.clear()
        logger.debug("transcript_cleared")
        self._notify()
