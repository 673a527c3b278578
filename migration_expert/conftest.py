# migration_expert/conftest.py
from typing import List, Optional

import pytest

from migration_expert.core.config import Settings
from migration_expert.core.dependencies import build_services
from migration_expert.core.errors import GenerationFailedError, PersistenceError
from migration_expert.core.ratelimit import InMemoryCounterStore
from migration_expert.features.history.store import InMemoryHistoryStore
from migration_expert.features.identity.memory import InMemoryIdentityProvider
from migration_expert.features.identity.provider import IdentityRejected
from migration_expert.features.subscriptions.service import InMemorySubscriptionStore
from migration_expert.features.users.service import InMemoryProfileStore


class FakeTime:
    def __init__(self, start: float = 0.0):
        self.current = start

    def advance(self, seconds: float):
        self.current += seconds

    def __call__(self):
        return self.current


class FakeGenerator:
    """Records every prompt; returns a canned plan or raises."""

    def __init__(self, plan: str = "## Profile analysis\nYou qualify for Express Entry.", fail: bool = False):
        self.plan = plan
        self.fail = fail
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail:
            raise GenerationFailedError("Failed to reach the AI service")
        return self.plan

    @property
    def calls(self) -> int:
        return len(self.prompts)


class FailingHistoryStore(InMemoryHistoryStore):
    """History store whose selected operations always fail."""

    def __init__(self, fail_append: bool = True, fail_list: bool = False, fail_clear: bool = False):
        super().__init__()
        self.fail_append = fail_append
        self.fail_list = fail_list
        self.fail_clear = fail_clear
        self.append_attempts = 0

    async def append(self, user_id, conversation_id, message):
        self.append_attempts += 1
        if self.fail_append:
            raise PersistenceError("Failed to append chat message")
        return await super().append(user_id, conversation_id, message)

    async def list(self, user_id, conversation_id, limit=100):
        if self.fail_list:
            raise PersistenceError("Failed to read chat history")
        return await super().list(user_id, conversation_id, limit)

    async def clear(self, user_id, conversation_id):
        if self.fail_clear:
            raise PersistenceError("Failed to clear chat history")
        return await super().clear(user_id, conversation_id)


def make_settings(**overrides) -> Settings:
    defaults = dict(
        ENV="test",
        CONFIG_STRICT=False,
        GEMINI_API_KEY="test-gemini-key",
        SUPABASE_URL=None,
        SUPABASE_SERVICE_ROLE_KEY=None,
        SUPABASE_JWT_SECRET=None,
        DATABASE_URL=None,
        IDENTITY_BACKEND="memory",
        HISTORY_BACKEND="memory",
        HISTORY_AWAIT_WRITES=False,
        RATE_LIMIT_ENABLED=True,
        RATE_LIMIT_BACKEND="memory",
        RATE_LIMIT_GENERAL_MAX=100,
        RATE_LIMIT_AUTH_MAX=10,
        RATE_LIMIT_PLAN_MAX=10,
        RATE_LIMIT_WINDOW_SECONDS=900,
        STATIC_DIR="public-does-not-exist",
    )
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def identity_provider():
    return InMemoryIdentityProvider(secret="test-secret")


@pytest.fixture
def build_app(identity_provider, generator, fake_time):
    """Factory: build_app(history=..., **settings_overrides) -> (app, services)."""
    from migration_expert.main import create_app

    def _build(history=None, subscriptions=None, **overrides):
        cfg = make_settings(**overrides)
        services = build_services(
            cfg,
            identity=identity_provider,
            generator=generator,
            history=history or InMemoryHistoryStore(),
            subscriptions=subscriptions or InMemorySubscriptionStore(),
            profiles=InMemoryProfileStore(),
            counter_store=InMemoryCounterStore(time_fn=fake_time),
        )
        return create_app(cfg, services=services), services

    return _build


async def auth_headers_for(provider: InMemoryIdentityProvider, email: str = "a@x.com", password: str = "secret1") -> dict:
    try:
        await provider.sign_up(email, password)
    except IdentityRejected:
        # Already registered
        pass
    _, session = await provider.sign_in(email, password)
    return {"Authorization": f"Bearer {session.access_token}"}


def token_for(provider: InMemoryIdentityProvider, email: str = "a@x.com", password: str = "secret1") -> Optional[str]:
    """Synchronous helper for TestClient-based tests."""
    import asyncio

    headers = asyncio.run(auth_headers_for(provider, email, password))
    return headers["Authorization"]
