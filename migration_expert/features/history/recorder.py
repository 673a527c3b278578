"""
Background recording of generated plans.

The caller gets its plan as soon as generation finishes; the history write
runs as a tracked asyncio task. A 200 response therefore does not imply the
record is durable. Failures are logged, never raised to the caller.
"""

import asyncio
from typing import Optional, Set

from migration_expert.core.logging import get_request_id, log_event
from migration_expert.features.history.models import NewChatMessage
from migration_expert.features.history.store import HistoryStore


class PlanRecorder:
    def __init__(self, store: HistoryStore, *, await_writes: bool = False):
        self.store = store
        self.await_writes = await_writes
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def record(self, user_id: str, conversation_id: str, message: NewChatMessage) -> "asyncio.Task[bool]":
        """Schedule the append and return its task.

        The task resolves to True once the message is stored and False if
        the write failed (the failure has been logged by then).
        """
        task = asyncio.create_task(self._write(user_id, conversation_id, message, get_request_id()))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        if self.await_writes:
            # A cancelled request must not cancel the write it already scheduled
            await asyncio.shield(task)
        return task

    async def _write(self, user_id: str, conversation_id: str, message: NewChatMessage, request_id: Optional[str]) -> bool:
        try:
            stored = await self.store.append(user_id, conversation_id, message)
        except Exception as e:
            log_event(
                "error",
                "history.append_failed",
                request_id=request_id,
                user_id=user_id,
                conversation_id=conversation_id,
                error_code=getattr(e, "code", "persistence_failed"),
                exc_info=True,
            )
            return False

        log_event(
            "info",
            "history.append_ok",
            request_id=request_id,
            user_id=user_id,
            conversation_id=conversation_id,
            extra={"message_id": stored.id, "is_plan": stored.is_plan},
        )
        return True

    async def drain(self) -> None:
        """Wait for every write scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
