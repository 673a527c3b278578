"""End-to-end tests for signup, login and plan generation."""

import httpx
import pytest

from migration_expert.conftest import FailingHistoryStore, auth_headers_for

QA = [{"question": "age", "answer": "30"}, {"question": "profession", "answer": "nurse"}]


def _client(app):
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.asyncio
async def test_signup_login_generate_records_one_plan(build_app, generator):
    app, services = build_app()

    async with _client(app) as client:
        signup = await client.post("/api/signup", json={"email": "ana@x.com", "password": "secret1"})
        assert signup.status_code == 200
        assert signup.json()["success"] is True
        user_id = signup.json()["userId"]

        login = await client.post("/api/login", json={"email": "ana@x.com", "password": "secret1"})
        assert login.status_code == 200
        assert login.json()["user"]["id"] == user_id
        token = login.json()["session"]["access_token"]
        headers = {"Authorization": f"Bearer {token}"}

        response = await client.post(
            "/api/generate-plan",
            json={"conversationId": "c1", "country": "Canada", "qaList": QA},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json() == {"plan": generator.plan}

        await services.recorder.drain()

        history = await client.get("/api/chat/history", params={"conversationId": "c1"}, headers=headers)

    [entry] = history.json()["history"]
    assert entry["role"] == "assistant"
    assert entry["is_plan"] is True
    assert entry["country"] == "Canada"
    assert entry["message"] == generator.plan
    assert "Canada" in generator.prompts[0]
    assert "A1: 30" in generator.prompts[0]


@pytest.mark.asyncio
async def test_body_user_id_is_ignored(build_app, identity_provider):
    app, services = build_app()
    headers = await auth_headers_for(identity_provider, "a@x.com")
    victim_headers = await auth_headers_for(identity_provider, "victim@x.com")

    async with _client(app) as client:
        response = await client.post(
            "/api/generate-plan",
            json={"conversationId": "c1", "country": "Canada", "qaList": QA, "userId": "victim"},
            headers=headers,
        )
        assert response.status_code == 200
        await services.recorder.drain()

        mine = await client.get("/api/chat/history", params={"conversationId": "c1"}, headers=headers)
        theirs = await client.get("/api/chat/history", params={"conversationId": "c1"}, headers=victim_headers)

    assert len(mine.json()["history"]) == 1
    assert theirs.json()["history"] == []


@pytest.mark.asyncio
async def test_plan_limit_blocks_eleventh_request_before_generation(build_app, identity_provider, generator):
    app, services = build_app()
    headers = await auth_headers_for(identity_provider)
    payload = {"conversationId": "c1", "country": "Canada", "qaList": QA}

    async with _client(app) as client:
        statuses = [(await client.post("/api/generate-plan", json=payload, headers=headers)).status_code for _ in range(11)]
        await services.recorder.drain()

    assert statuses[:10] == [200] * 10
    assert statuses[10] == 429
    assert generator.calls == 10


@pytest.mark.asyncio
async def test_history_failure_still_returns_plan(build_app, identity_provider, generator, caplog):
    store = FailingHistoryStore(fail_append=True)
    app, services = build_app(history=store)
    headers = await auth_headers_for(identity_provider)

    async with _client(app) as client:
        response = await client.post(
            "/api/generate-plan",
            json={"conversationId": "c1", "country": "Canada", "qaList": QA},
            headers=headers,
        )
        await services.recorder.drain()

    assert response.status_code == 200
    assert response.json()["plan"] == generator.plan
    assert store.append_attempts == 1
    [failure] = [r for r in caplog.records if r.getMessage() == "history.append_failed"]
    assert failure.conversation_id == "c1"
    assert failure.request_id == response.headers["x-request-id"]


@pytest.mark.asyncio
async def test_await_writes_mode_records_before_responding(build_app, identity_provider):
    app, services = build_app(HISTORY_AWAIT_WRITES=True)
    headers = await auth_headers_for(identity_provider)

    async with _client(app) as client:
        await client.post("/api/generate-plan", json={"conversationId": "c1", "country": "Canada", "qaList": QA}, headers=headers)
        assert services.recorder.pending == 0
        history = await client.post("/api/chat/history", json={"conversationId": "c1"}, headers=headers)

    assert len(history.json()["history"]) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload, message",
    [
        ({"country": "Canada", "qaList": QA}, "conversationId is required"),
        ({"conversationId": "c1", "qaList": QA}, "country is required"),
        ({"conversationId": "c1", "country": "Canada"}, "qaList must contain at least one answer"),
        ({"conversationId": "c1", "country": "Canada", "qaList": []}, "qaList must contain at least one answer"),
    ],
)
async def test_missing_fields_rejected_without_generation(build_app, identity_provider, generator, payload, message):
    app, services = build_app()
    headers = await auth_headers_for(identity_provider)

    async with _client(app) as client:
        response = await client.post("/api/generate-plan", json=payload, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"] == {
        "code": "invalid_request",
        "message": message,
        "request_id": response.headers["x-request-id"],
    }
    assert generator.calls == 0
    assert services.recorder.pending == 0


@pytest.mark.asyncio
async def test_generation_failure_is_500_and_records_nothing(build_app, identity_provider, generator):
    generator.fail = True
    app, services = build_app()
    headers = await auth_headers_for(identity_provider)

    async with _client(app) as client:
        response = await client.post(
            "/api/generate-plan",
            json={"conversationId": "c1", "country": "Canada", "qaList": QA},
            headers=headers,
        )
        await services.recorder.drain()
        history = await client.get("/api/chat/history", params={"conversationId": "c1"}, headers=headers)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "generation_failed"
    assert history.json()["history"] == []


@pytest.mark.asyncio
async def test_signup_and_login_errors(build_app):
    app, _ = build_app()

    async with _client(app) as client:
        bad_email = await client.post("/api/signup", json={"email": "nope", "password": "secret1"})
        await client.post("/api/signup", json={"email": "a@x.com", "password": "secret1"})
        duplicate = await client.post("/api/signup", json={"email": "a@x.com", "password": "secret1"})
        wrong = await client.post("/api/login", json={"email": "a@x.com", "password": "wrong-one"})

    assert bad_email.status_code == 400
    assert duplicate.status_code == 400
    assert "already been registered" in duplicate.json()["error"]["message"]
    assert wrong.status_code == 400
    assert wrong.json()["error"]["message"] == "Login failed"


@pytest.mark.asyncio
async def test_auth_limit_applies_to_signup_and_login(build_app):
    app, _ = build_app(RATE_LIMIT_AUTH_MAX=3)

    async with _client(app) as client:
        statuses = []
        for i in range(4):
            response = await client.post("/api/login", json={"email": f"u{i}@x.com", "password": "secret1"})
            statuses.append(response.status_code)
        blocked_signup = await client.post("/api/signup", json={"email": "new@x.com", "password": "secret1"})

    assert statuses == [400, 400, 400, 429]
    assert blocked_signup.status_code == 429
    assert blocked_signup.headers["Retry-After"] == "900"


@pytest.mark.asyncio
async def test_forwarded_for_is_ignored_by_default(build_app, identity_provider, generator):
    app, services = build_app()
    headers = await auth_headers_for(identity_provider)
    payload = {"conversationId": "c1", "country": "Canada", "qaList": QA}

    async with _client(app) as client:
        statuses = []
        for i in range(30):
            spoofed = {**headers, "X-Forwarded-For": f"10.0.0.{i}"}
            statuses.append((await client.post("/api/generate-plan", json=payload, headers=spoofed)).status_code)
        await services.recorder.drain()

    assert statuses[:10] == [200] * 10
    assert set(statuses[10:]) == {429}
    assert generator.calls == 10
