"""In-memory conversation cache with lazy expiry."""

import asyncio
import time
from typing import Callable, Dict, List, Optional, Sequence

import structlog

from ..domain.models import ClientMessage, StoredConversation
from .base import ConversationCache

logger = structlog.get_logger()

DEFAULT_TTL_SECONDS = 60 * 60


class InMemoryConversationCache(ConversationCache):
    """Process-wide cache keyed by session id.

    Entries are only removed by ``sweep``; nothing runs in the background, so
    an expired entry lingers until the next relay request arrives.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._conversations: Dict[str, StoredConversation] = {}
        self._lock = asyncio.Lock()
        logger.info("conversation_cache_initialized", ttl_seconds=ttl_seconds)

    async def set(self, session_id: str, messages: Sequence[ClientMessage]) -> StoredConversation:
        """Store or overwrite the conversation for a session."""
        entry = StoredConversation(
            messages=list(messages),
            expires_at=self._clock() + self.ttl_seconds,
        )
        async with self._lock:
            self._conversations[session_id] = entry
        logger.debug(
            "conversation_cached",
            session_id=session_id,
            message_count=len(entry.messages),
        )
        return entry

    async def get(self, session_id: str) -> Optional[StoredConversation]:
        """Return the live conversation for a session, if any."""
        async with self._lock:
            entry = self._conversations.get(session_id)
        if entry is None or entry.expires_at <= self._clock():
            return None
        return entry

    async def sweep(self) -> int:
        """Remove expired entries and return how many were dropped."""
        now = self._clock()
        async with self._lock:
            expired = [k for k, v in self._conversations.items() if v.expires_at <= now]
            for key in expired:
                del self._conversations[key]
        if expired:
            logger.info("conversation_cache_swept", removed=len(expired))
        return len(expired)

    async def session_ids(self) -> List[str]:
        """List every stored session id, swept or not."""
        async with self._lock:
            return list(self._conversations)
