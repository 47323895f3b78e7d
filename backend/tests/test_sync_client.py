"""Sync client against the real app (ASGI transport) and scripted failures (mock transport)."""

from __future__ import annotations

import json
from typing import List

import anyio
import httpx
import pytest

from kidslearn.auth_tokens import derive_token
from kidslearn.main import app
from kidslearn.progress_models import ProgressDocument
from kidslearn.rewards import AllQuizzesCorrect, EssaySavedWithMinChars, RewardGate
from kidslearn.sync_client import ProgressSyncClient
from kidslearn.telemetry import capture_events

pytestmark = pytest.mark.anyio

BASE_URL = "http://testserver"


def _asgi_http() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=BASE_URL)


def _mock_http(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)


async def test_claim_load_record_and_reload() -> None:
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http)
        claim = await sync.claim_username("Alice123")
        assert claim.created is True and claim.error is None
        assert sync.token == derive_token("alice123")

        assert await sync.load("Alice123") == "ready"
        assert sync.username == "alice123"
        assert sync.xp == 0

        result = await sync.record_quiz_attempt("ancient-egypt", "q1", True)
        assert result.xp_granted == 100
        assert result.flush is not None and result.flush.ok

        other_device = ProgressSyncClient(client=http)
        assert await other_device.load("alice123") == "ready"
        assert other_device.xp == 100
        assert other_device.get_topic_progress("ancient-egypt").quiz_attempts["q1"].first_try_correct is True

        again = await ProgressSyncClient(client=http).claim_username("alice123")
        assert again.exists is True and again.created is False


async def test_unknown_username_loads_empty_session() -> None:
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http, token=derive_token("newkid"))
        assert await sync.load("newkid") == "empty"
        assert sync.has_session
        assert sync.mirror.topics == {}

        flushed = await sync.flush()
        assert flushed.ok
        assert await ProgressSyncClient(client=http).load("newkid") == "ready"


async def test_invalid_username_fails_without_network_io() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"xp": 0, "topics": {}})

    async with _mock_http(handler) as http:
        sync = ProgressSyncClient(client=http)
        assert await sync.load("AL") == "failed"
        assert sync.last_error is not None and sync.last_error.kind == "validation"

        claim = await sync.claim_username("x")
        assert claim.error is not None
        assert claim.error.message == "Username must be at least 3 characters."

        result = await sync.flush()
        assert not result.ok and result.error is not None and result.error.kind == "session"
    assert requests == []


@pytest.mark.parametrize(
    ("response", "kind"),
    [
        (httpx.Response(500, json={"error": "Internal server error"}), "storage"),
        (httpx.Response(400, json={"error": "Invalid username format."}), "validation"),
        (httpx.Response(200, content=b"<html>oops</html>"), "protocol"),
        (httpx.Response(200, json={"xp": -3, "topics": {}}), "protocol"),
    ],
)
async def test_load_failures_are_reported_not_raised(response: httpx.Response, kind: str) -> None:
    async with _mock_http(lambda request: response) as http:
        sync = ProgressSyncClient(client=http, token="anything")
        assert await sync.load("alice123") == "failed"
        assert sync.last_error is not None and sync.last_error.kind == kind
        assert sync.mirror.xp == 0

        # A failed load must never overwrite the stored document.
        flushed = await sync.flush()
        assert flushed.error is not None and flushed.error.kind == "session"


async def test_network_error_on_flush_keeps_mirror() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if request.method == "GET":
            return httpx.Response(404, json={"error": "No progress found for this username."})
        raise httpx.ConnectError("connection refused", request=request)

    async with _mock_http(handler) as http:
        sync = ProgressSyncClient(client=http, token=derive_token("alice123"))
        assert await sync.load("alice123") == "empty"
        with capture_events() as events:
            result = await sync.record_quiz_attempt("t", "q", True)
        assert result.flush is not None and not result.flush.ok
        assert result.flush.error is not None and result.flush.error.kind == "network"
        assert sync.xp == 100
        assert events[-1].name == "progress_flush_completed"
        assert events[-1].payload["ok"] is False

    assert calls["count"] == 2


async def test_flush_without_token_reports_auth_error() -> None:
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http)
        assert await sync.load("alice123") == "empty"
        result = await sync.flush()
        assert not result.ok
        assert result.error is not None and result.error.kind == "auth"


async def test_flush_with_wrong_token_gets_401() -> None:
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http, token=derive_token("someone-else"))
        await sync.load("alice123")
        result = await sync.flush()
        assert result.status_code == 401
        assert result.error is not None and result.error.kind == "auth"
        assert result.error.message == "Invalid or missing authentication token."


async def test_switching_username_drops_previous_token() -> None:
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http)
        await sync.claim_username("alice123")
        await sync.load("alice123")
        await sync.load("bob456")
        assert sync.token is None


async def test_flush_sends_snapshot_taken_before_the_request() -> None:
    started = anyio.Event()
    release = anyio.Event()
    bodies: List[dict] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(404, json={"error": "No progress found for this username."})
        bodies.append(json.loads(request.content))
        started.set()
        await release.wait()
        return httpx.Response(200, json={"ok": True})

    async with _mock_http(handler) as http:
        sync = ProgressSyncClient(client=http, token=derive_token("alice123"))
        await sync.load("alice123")
        sync.mirror.xp = 10

        async with anyio.create_task_group() as tg:
            tg.start_soon(sync.flush)
            await started.wait()
            sync.mirror.xp = 999
            release.set()

    assert bodies[0]["progress"]["xp"] == 10
    assert sync.xp == 999


async def test_reward_unlock_and_essay_flush_only_on_change() -> None:
    gate = RewardGate(
        topic_id="ancient-egypt",
        reward_id="pyramid",
        requirements=[AllQuizzesCorrect(quiz_ids=["q1"]), EssaySavedWithMinChars(min_chars=5)],
    )
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http)
        await sync.claim_username("alice123")
        await sync.load("alice123")

        assert (await sync.unlock_reward_if_ready(gate)).changed is False
        await sync.record_quiz_attempt("ancient-egypt", "q1", True)
        saved = await sync.record_essay_save("ancient-egypt", "The Nile")
        assert saved.xp_granted == 75
        assert (await sync.mark_essay_submitted("ancient-egypt")).changed is False
        assert sync.is_reward_unlockable(gate)

        unlocked = await sync.unlock_reward_if_ready(gate)
        assert unlocked.changed is True and unlocked.flush is not None and unlocked.flush.ok
        repeat = await sync.unlock_reward_if_ready(gate)
        assert repeat.changed is False and repeat.flush is None

        reloaded = ProgressSyncClient(client=http)
        await reloaded.load("alice123")
        topic = reloaded.get_topic_progress("ancient-egypt")
        assert topic.reward_unlocked is True
        assert topic.essay_text == "The Nile"
        assert reloaded.xp == 175


async def test_merge_local_requires_a_loaded_session() -> None:
    local = ProgressDocument.from_wire({"xp": 40, "topics": {"rome": {"essaySubmitted": True}}})
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http)
        assert sync.merge_local(local) is False

        await sync.load("alice123")
        assert sync.merge_local(local) is True
        assert sync.xp == 40
        assert sync.get_topic_progress("rome").essay_submitted is True


async def test_default_http_client_uses_configured_base_url(monkeypatch: pytest.MonkeyPatch) -> None:
    from kidslearn.config import get_settings

    monkeypatch.setenv("KIDSLEARN_API_BASE_URL", "http://progress.internal:9000")
    get_settings.cache_clear()
    async with ProgressSyncClient() as sync:
        assert sync._client.base_url.host == "progress.internal"
        assert sync._client.base_url.port == 9000
        assert sync.status == "uninitialized"


async def test_timeout_on_load_is_a_network_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with _mock_http(handler) as http:
        sync = ProgressSyncClient(client=http)
        assert await sync.load("alice123") == "failed"
        assert sync.last_error is not None and sync.last_error.kind == "network"


async def test_reset_progress_replaces_stored_document() -> None:
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http)
        await sync.claim_username("alice123")
        await sync.load("alice123")
        await sync.record_quiz_attempt("ancient-egypt", "q1", True)
        await sync.record_essay_save("ancient-egypt", "Pyramids")

        result = await sync.reset_progress()
        assert result.changed is True
        assert result.flush is not None and result.flush.ok
        assert sync.xp == 0
        assert sync.mirror.topics == {}

        reloaded = ProgressSyncClient(client=http)
        assert await reloaded.load("alice123") == "ready"
        assert reloaded.xp == 0
        assert reloaded.mirror.topics == {}


async def test_reset_progress_without_session_does_not_write() -> None:
    requests: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"ok": True})

    async with _mock_http(handler) as http:
        sync = ProgressSyncClient(client=http, token=derive_token("alice123"))
        result = await sync.reset_progress()
        assert result.flush is not None and result.flush.error is not None
        assert result.flush.error.kind == "session"
    assert requests == []


async def test_merge_local_then_flush_keeps_client_only_fields() -> None:
    local = ProgressDocument.from_wire({"xp": 40, "topics": {}, "themeId": "ocean"})
    async with _asgi_http() as http:
        sync = ProgressSyncClient(client=http)
        await sync.claim_username("alice123")
        await sync.load("alice123")
        sync.merge_local(local)
        assert (await sync.flush()).ok

        stored = await http.get("/api/progress", params={"username": "alice123"})
        assert stored.json()["themeId"] == "ocean"
        assert stored.json()["xp"] == 40
