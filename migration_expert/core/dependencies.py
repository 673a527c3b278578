"""
Service container attached to app.state and the FastAPI dependencies that
read from it.

Backends are chosen from settings: "auto" uses the network/SQL
implementation when its credentials are present and the in-memory one
otherwise (degraded mode, logged once at startup by validate_config).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from migration_expert.core.database import create_all_tables, make_engine, make_session_factory
from migration_expert.core.ratelimit import CounterStore, FixedWindowRateLimiter, build_counter_store, build_policies
from migration_expert.features.history.recorder import PlanRecorder
from migration_expert.features.history.store import MAX_PAGE_SIZE, HistoryStore, InMemoryHistoryStore
from migration_expert.features.history.store_sql import SqlHistoryStore
from migration_expert.features.identity.provider import IdentityProvider
from migration_expert.features.identity.service import build_identity_provider
from migration_expert.features.plans.generator import PlanGenerator, build_plan_generator
from migration_expert.features.subscriptions.service import InMemorySubscriptionStore, SqlSubscriptionStore, SubscriptionStore
from migration_expert.features.users.service import InMemoryProfileStore, ProfileStore, SqlProfileStore

logger = logging.getLogger("migration_expert")


@dataclass
class Services:
    identity: IdentityProvider
    generator: PlanGenerator
    history: HistoryStore
    recorder: PlanRecorder
    subscriptions: SubscriptionStore
    profiles: ProfileStore
    rate_limiter: FixedWindowRateLimiter


def build_services(
    cfg,
    *,
    identity: Optional[IdentityProvider] = None,
    generator: Optional[PlanGenerator] = None,
    history: Optional[HistoryStore] = None,
    subscriptions: Optional[SubscriptionStore] = None,
    profiles: Optional[ProfileStore] = None,
    counter_store: Optional[CounterStore] = None,
) -> Services:
    """Build every collaborator from settings; explicit arguments win."""
    backend = (getattr(cfg, "HISTORY_BACKEND", "auto") or "auto").lower()
    use_sql = backend == "sql" or (backend == "auto" and bool(cfg.DATABASE_URL))
    page_size = min(int(getattr(cfg, "HISTORY_MAX_PAGE_SIZE", MAX_PAGE_SIZE)), MAX_PAGE_SIZE)

    if use_sql and (history is None or subscriptions is None or profiles is None):
        engine = make_engine(cfg.DATABASE_URL)
        create_all_tables(engine)
        session_factory = make_session_factory(engine)
        history = history or SqlHistoryStore(session_factory, max_page_size=page_size)
        subscriptions = subscriptions or SqlSubscriptionStore(session_factory)
        profiles = profiles or SqlProfileStore(session_factory)
    elif not use_sql and history is None:
        logger.warning("Using in-memory history store; conversations are lost on restart")

    history = history or InMemoryHistoryStore(max_page_size=page_size)
    return Services(
        identity=identity or build_identity_provider(cfg),
        generator=generator or build_plan_generator(cfg),
        history=history,
        recorder=PlanRecorder(history, await_writes=bool(getattr(cfg, "HISTORY_AWAIT_WRITES", False))),
        subscriptions=subscriptions or InMemorySubscriptionStore(),
        profiles=profiles or InMemoryProfileStore(),
        rate_limiter=FixedWindowRateLimiter(counter_store or build_counter_store(cfg), build_policies(cfg)),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
