"""
Relational datastore: engine construction, sessions and the three tables
this service touches.

- chat_history: written by the plan pipeline, read and cleared by the chat API
- subscriptions: owned by billing, read-only here
- profiles: one row per account, created at signup

Stores receive a session factory rather than reaching for a global engine,
so tests can point them at an in-memory SQLite database.
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, Integer, String, DateTime, Boolean, Text, Index
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from migration_expert.core.config import settings


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Connection pooling configuration
POOL_SIZE = 10
MAX_OVERFLOW = 20
POOL_TIMEOUT = 30
POOL_RECYCLE = 3600  # Recycle connections after 1 hour


def make_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create a SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    url = database_url or settings.DATABASE_URL
    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    if url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        return create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        url,
        poolclass=QueuePool,
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        pool_pre_ping=True,
        echo=False,  # Set to True for SQL query logging
    )


def make_session_factory(engine: Engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def session_scope(session_factory):
    """
    Context manager for database sessions.

    Usage:
        with session_scope(factory) as session:
            session.execute(...)
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Engine) -> None:
    """Create missing tables; existing ones are left untouched."""
    metadata.create_all(bind=engine)


def drop_all_tables(engine: Engine) -> None:
    """Drop every table. Tests only."""
    metadata.drop_all(bind=engine)


# Chat history: append-only, deleted only in bulk per (user_id, conversation_id)
chat_history = Table(
    'chat_history',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False),
    Column('conversation_id', String(200), nullable=False),
    Column('role', String(20), nullable=False),
    Column('message', Text, nullable=False),
    Column('country', String(100), nullable=True),
    Column('is_plan', Boolean, nullable=False, default=False),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    # Composite index for the list pattern: scope + (created_at, id) ordering
    Index('idx_chat_history_scope_created', 'user_id', 'conversation_id', 'created_at', 'id'),
)

# Subscriptions: at most one row per user, owned by billing, read-only here
subscriptions = Table(
    'subscriptions',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), nullable=False, unique=True, index=True),
    Column('plan_tier', String(50), nullable=False),
    Column('status', String(50), nullable=False, server_default='active'),
    Column('current_period_end', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Profiles: created at signup
profiles = Table(
    'profiles',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('display_name', Text, nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)
