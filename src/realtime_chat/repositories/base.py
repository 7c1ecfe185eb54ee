"""Base cache interface."""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from ..domain.models import ClientMessage, StoredConversation


class ConversationCache(ABC):
    """Abstract base class for session-keyed conversation caches."""

    @abstractmethod
    async def set(self, session_id: str, messages: Sequence[ClientMessage]) -> StoredConversation:
        """Store or overwrite the conversation for a session."""
        pass

    @abstractmethod
    async def get(self, session_id: str) -> Optional[StoredConversation]:
        """Return the live conversation for a session, if any."""
        pass

    @abstractmethod
    async def sweep(self) -> int:
        """Remove expired entries and return how many were dropped."""
        pass

    @abstractmethod
    async def session_ids(self) -> List[str]:
        """List every stored session id, swept or not."""
        pass
