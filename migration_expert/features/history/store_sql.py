"""
SQL-backed history store.

Maintains the same interface as InMemoryHistoryStore. SQLAlchemy calls are
synchronous, so each one runs in Starlette's threadpool to keep the event
loop free.
"""

from datetime import datetime, timezone
from typing import Callable, List

from sqlalchemy import delete, insert, select
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from migration_expert.core.database import chat_history, session_scope
from migration_expert.core.errors import PersistenceError
from migration_expert.features.history.models import ChatMessage, NewChatMessage
from migration_expert.features.history.store import MAX_PAGE_SIZE, clamp_limit


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_to_message(row) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        conversation_id=row["conversation_id"],
        user_id=row["user_id"],
        role=row["role"],
        message=row["message"],
        country=row["country"],
        is_plan=bool(row["is_plan"]),
        created_at=_as_utc(row["created_at"]),
    )


class SqlHistoryStore:
    def __init__(self, session_factory, now_fn: Callable[[], datetime] = _utcnow, max_page_size: int = MAX_PAGE_SIZE):
        self.session_factory = session_factory
        self.now_fn = now_fn
        self.max_page_size = max_page_size

    def _append(self, user_id: str, conversation_id: str, message: NewChatMessage) -> ChatMessage:
        values = dict(
            user_id=user_id,
            conversation_id=conversation_id,
            created_at=self.now_fn(),
            **message.model_dump(),
        )
        try:
            with session_scope(self.session_factory) as session:
                result = session.execute(insert(chat_history).values(**values))
                new_id = result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to append chat message") from e
        return _row_to_message({"id": new_id, **values})

    def _list(self, user_id: str, conversation_id: str, limit: int) -> List[ChatMessage]:
        stmt = (
            select(chat_history)
            .where(chat_history.c.user_id == user_id, chat_history.c.conversation_id == conversation_id)
            .order_by(chat_history.c.created_at.asc(), chat_history.c.id.asc())
            .limit(clamp_limit(limit, self.max_page_size))
        )
        try:
            with session_scope(self.session_factory) as session:
                rows = session.execute(stmt).mappings().all()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to read chat history") from e
        return [_row_to_message(row) for row in rows]

    def _clear(self, user_id: str, conversation_id: str) -> int:
        stmt = delete(chat_history).where(
            chat_history.c.user_id == user_id,
            chat_history.c.conversation_id == conversation_id,
        )
        try:
            with session_scope(self.session_factory) as session:
                result = session.execute(stmt)
                return result.rowcount or 0
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to clear chat history") from e

    async def append(self, user_id: str, conversation_id: str, message: NewChatMessage) -> ChatMessage:
        return await run_in_threadpool(self._append, user_id, conversation_id, message)

    async def list(self, user_id: str, conversation_id: str, limit: int = MAX_PAGE_SIZE) -> List[ChatMessage]:
        return await run_in_threadpool(self._list, user_id, conversation_id, limit)

    async def clear(self, user_id: str, conversation_id: str) -> int:
        return await run_in_threadpool(self._clear, user_id, conversation_id)
