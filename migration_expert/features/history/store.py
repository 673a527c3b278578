"""
Append-only conversation history.

Messages are scoped to (user_id, conversation_id). The only mutation after
a write is the bulk clear of one scope. Listing is always ordered by
created_at ascending, with store-assigned ids breaking ties in insertion
order.
"""

import itertools
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Protocol, Tuple

from migration_expert.features.history.models import ChatMessage, NewChatMessage

MAX_PAGE_SIZE = 100


def clamp_limit(limit: int, max_page_size: int = MAX_PAGE_SIZE) -> int:
    return max(1, min(int(limit), max_page_size))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryStore(Protocol):
    """Implementations raise PersistenceError for any datastore failure."""

    async def append(self, user_id: str, conversation_id: str, message: NewChatMessage) -> ChatMessage:
        ...

    async def list(self, user_id: str, conversation_id: str, limit: int = MAX_PAGE_SIZE) -> List[ChatMessage]:
        ...

    async def clear(self, user_id: str, conversation_id: str) -> int:
        ...


class InMemoryHistoryStore:
    def __init__(self, now_fn: Callable[[], datetime] = _utcnow, max_page_size: int = MAX_PAGE_SIZE):
        self.now_fn = now_fn
        self.max_page_size = max_page_size
        self._messages: Dict[Tuple[str, str], List[ChatMessage]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    async def append(self, user_id: str, conversation_id: str, message: NewChatMessage) -> ChatMessage:
        with self._lock:
            stored = ChatMessage(
                id=next(self._ids),
                conversation_id=conversation_id,
                user_id=user_id,
                created_at=self.now_fn(),
                **message.model_dump(),
            )
            self._messages.setdefault((user_id, conversation_id), []).append(stored)
        return stored

    async def list(self, user_id: str, conversation_id: str, limit: int = MAX_PAGE_SIZE) -> List[ChatMessage]:
        with self._lock:
            scope = list(self._messages.get((user_id, conversation_id), []))
        scope.sort(key=lambda m: (m.created_at, m.id))
        return scope[: clamp_limit(limit, self.max_page_size)]

    async def clear(self, user_id: str, conversation_id: str) -> int:
        with self._lock:
            removed = self._messages.pop((user_id, conversation_id), [])
        return len(removed)
