"""
Read-only subscription lookup.

At most one row per user; zero rows is a valid state ("no subscription").
Lookups are forgiving: any datastore failure is logged and reported as no
subscription.
"""

from datetime import datetime
from typing import Dict, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from migration_expert.core.database import session_scope, subscriptions
from migration_expert.core.errors import PersistenceError
from migration_expert.core.logging import log_event


class SubscriptionStore(Protocol):
    async def get_for_user(self, user_id: str) -> Optional[dict]:
        """Return the user's subscription row or None. Raises PersistenceError."""
        ...


class InMemorySubscriptionStore:
    def __init__(self, rows: Optional[Dict[str, dict]] = None):
        self._rows: Dict[str, dict] = dict(rows or {})

    def put(self, user_id: str, **fields) -> None:
        self._rows[user_id] = {"user_id": user_id, **fields}

    async def get_for_user(self, user_id: str) -> Optional[dict]:
        row = self._rows.get(user_id)
        return dict(row) if row else None


def _serialize(row) -> dict:
    return {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in dict(row).items()}


class SqlSubscriptionStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _get(self, user_id: str) -> Optional[dict]:
        stmt = select(subscriptions).where(subscriptions.c.user_id == user_id).limit(1)
        try:
            with session_scope(self.session_factory) as session:
                row = session.execute(stmt).mappings().first()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to read subscription") from e
        return _serialize(row) if row else None

    async def get_for_user(self, user_id: str) -> Optional[dict]:
        return await run_in_threadpool(self._get, user_id)


async def get_subscription(store: SubscriptionStore, user_id: str) -> Optional[dict]:
    try:
        return await store.get_for_user(user_id)
    except Exception as e:
        log_event(
            "warning",
            "subscription.lookup_failed",
            user_id=user_id,
            error_code=getattr(e, "code", "persistence_failed"),
            exc_info=True,
        )
        return None
