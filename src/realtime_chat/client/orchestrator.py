"""Drives one chat turn: send the history, stream the reply into the transcript."""

import asyncio
import codecs
from enum import Enum
from typing import Optional

import httpx
import structlog

from ..domain.models import Message
from .transcript import TranscriptStore

logger = structlog.get_logger()

CHAT_ENDPOINT = "/api/chat"
GENERIC_ERROR = "Something went wrong. Please try again."


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class TurnFailed(Exception):
    """The relay refused the turn; carries the raw response text."""


class ChatOrchestrator:
    """Runs at most one outstanding turn against the relay.

    A turn appends the user message and a placeholder, posts the history and
    rewrites the placeholder with the full accumulated reply after every
    chunk. Failures leave whatever text already arrived in place.
    """

    def __init__(
        self,
        transcript: TranscriptStore,
        http_client: httpx.AsyncClient,
        session_id: Optional[str],
        endpoint: str = CHAT_ENDPOINT,
    ) -> None:
        self.transcript = transcript
        self.http_client = http_client
        self.session_id = session_id
        self.endpoint = endpoint
        self.state = TurnState.IDLE
        self.error: Optional[str] = None
        self.error_detail: Optional[str] = None

    @property
    def loading(self) -> bool:
        return self.state in (TurnState.SENDING, TurnState.STREAMING)

    @property
    def input_enabled(self) -> bool:
        return bool(self.session_id) and not self.loading

    async def submit(self, text: str) -> Optional[Message]:
        """Run a turn for ``text`` and return the finished assistant message.

        Returns None without touching the transcript when the text is blank,
        no session id is known, or another turn (ours or one sharing the
        transcript) is still in flight.
        """
        text = (text or "").strip()
        if not text or not self.input_enabled:
            return None
        if self.transcript.open_placeholder_id is not None:
            # another orchestrator sharing this transcript is mid-turn
            return None

        self.transcript.append_user_message(text)
        body = {
            "messages": [m.model_dump() for m in self.transcript.history()],
            "sessionId": self.session_id,
        }
        placeholder = self.transcript.append_assistant_placeholder()
        self.state = TurnState.SENDING
        self.error = None
        self.error_detail = None

        accumulated = ""
        try:
            async with self.http_client.stream("POST", self.endpoint, json=body) as response:
                if not response.is_success:
                    detail = (await response.aread()).decode("utf-8", errors="replace")
                    raise TurnFailed(detail or "Request failed")

                self.state = TurnState.STREAMING
                decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
                async for chunk in response.aiter_bytes():
                    accumulated += decoder.decode(chunk)
                    self.transcript.update_placeholder_content(placeholder.id, accumulated)
                tail = decoder.decode(b"", final=True)
                if tail:
                    accumulated += tail
                    self.transcript.update_placeholder_content(placeholder.id, accumulated)

            self.state = TurnState.COMPLETED
            logger.info("turn_completed", session_id=self.session_id, chars=len(accumulated))
        except asyncio.CancelledError:
            self.state = TurnState.FAILED
            logger.info("turn_abandoned", session_id=self.session_id)
            raise
        except Exception as e:
            self.state = TurnState.FAILED
            self.error = GENERIC_ERROR
            self.error_detail = str(e)
            logger.warning("turn_failed", session_id=self.session_id, error=str(e))
        finally:
            self.transcript.close_placeholder()

        for message in reversed(self.transcript.messages):
            if message.id == placeholder.id:
                return message
        return None
