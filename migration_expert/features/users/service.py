"""
User profile rows created at signup.

SQL-backed when a database is configured, in-memory otherwise.
"""

from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from migration_expert.core.database import profiles, session_scope
from migration_expert.core.errors import PersistenceError


class ProfileStore(Protocol):
    async def create(self, user_id: str, display_name: Optional[str]) -> None:
        ...

    async def get(self, user_id: str) -> Optional[dict]:
        ...


class InMemoryProfileStore:
    def __init__(self):
        self._profiles: Dict[str, dict] = {}

    async def create(self, user_id: str, display_name: Optional[str]) -> None:
        self._profiles.setdefault(
            user_id,
            {"user_id": user_id, "display_name": display_name, "created_at": datetime.now(timezone.utc)},
        )

    async def get(self, user_id: str) -> Optional[dict]:
        return self._profiles.get(user_id)


class SqlProfileStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def _create(self, user_id: str, display_name: Optional[str]) -> None:
        try:
            with session_scope(self.session_factory) as session:
                session.execute(insert(profiles).values(user_id=user_id, display_name=display_name))
        except IntegrityError:
            # Profile already exists
            return
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to create profile") from e

    def _get(self, user_id: str) -> Optional[dict]:
        try:
            with session_scope(self.session_factory) as session:
                row = session.execute(profiles.select().where(profiles.c.user_id == user_id)).mappings().first()
        except SQLAlchemyError as e:
            raise PersistenceError("Failed to read profile") from e
        return dict(row) if row else None

    async def create(self, user_id: str, display_name: Optional[str]) -> None:
        await run_in_threadpool(self._create, user_id, display_name)

    async def get(self, user_id: str) -> Optional[dict]:
        return await run_in_threadpool(self._get, user_id)
