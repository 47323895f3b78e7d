"""Client-side mirror of a learner's progress document, synced over HTTP.

``load()`` fetches the stored document into ``mirror``; mutations change the
mirror synchronously; ``flush()`` uploads a snapshot of the whole mirror.
Flushes are neither queued nor coalesced. Two flushes in flight at once are
independent requests and the store keeps whichever completes last, which can
be the older snapshot. Other tabs or devices using the same username are not
coordinated with at all.

No method here raises for network, HTTP or validation problems; they come
back as ``SyncError`` values and the mirror stays usable offline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Optional

import httpx
from pydantic import ValidationError

from . import recorder, rewards
from .auth_tokens import describe_username_problem, is_valid_username
from .config import get_settings
from .progress_merge import merge_progress
from .progress_models import ProgressDocument, TopicProgress
from .telemetry import emit_event

logger = logging.getLogger(__name__)

SyncStatus = Literal["uninitialized", "loading", "ready", "empty", "failed"]
SyncErrorKind = Literal["validation", "auth", "network", "storage", "protocol", "session"]


@dataclass(frozen=True)
class SyncError:
    kind: SyncErrorKind
    message: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class FlushResult:
    ok: bool
    status_code: Optional[int] = None
    error: Optional[SyncError] = None


@dataclass(frozen=True)
class ClaimResult:
    created: bool = False
    exists: bool = False
    error: Optional[SyncError] = None


@dataclass(frozen=True)
class MutationResult:
    changed: bool
    xp_granted: int = 0
    flush: Optional[FlushResult] = None


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return default


def _error_for_status(response: httpx.Response) -> SyncError:
    code = response.status_code
    if code == 401:
        kind: SyncErrorKind = "auth"
    elif 400 <= code < 500:
        kind = "validation"
    else:
        kind = "storage"
    return SyncError(kind=kind, message=_error_message(response, f"HTTP {code}"), status_code=code)


class ProgressSyncClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if client is None:
            settings = get_settings()
            client = httpx.AsyncClient(
                base_url=base_url or settings.api_base_url,
                timeout=timeout if timeout is not None else settings.api_timeout_seconds,
            )
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client
        self.token = token
        self.username: Optional[str] = None
        self.status: SyncStatus = "uninitialized"
        self.mirror = ProgressDocument.empty()
        self.last_error: Optional[SyncError] = None

    async def __aenter__(self) -> "ProgressSyncClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @property
    def xp(self) -> int:
        return self.mirror.xp

    @property
    def has_session(self) -> bool:
        return self.status in ("ready", "empty")

    def _fail(self, error: SyncError) -> SyncStatus:
        self.status = "failed"
        self.last_error = error
        logger.warning("Progress load failed for %s: %s", self.username, error.message)
        return self.status

    async def claim_username(self, username: str) -> ClaimResult:
        """Register (or re-enter) a username and keep the write token it returns."""
        problem = describe_username_problem(username)
        if problem is not None:
            return ClaimResult(error=SyncError(kind="validation", message=problem))
        try:
            response = await self._client.post("/api/username", json={"username": username.strip().lower()})
        except httpx.HTTPError:
            return ClaimResult(error=SyncError(kind="network", message="Could not reach server. Try again later."))
        if response.status_code != 200:
            return ClaimResult(error=_error_for_status(response))
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            return ClaimResult(error=SyncError(kind="protocol", message="Malformed claim response."))
        if isinstance(data.get("token"), str):
            self.token = data["token"]
        return ClaimResult(created=bool(data.get("created")), exists=bool(data.get("exists")))

    async def load(self, username: str, *, token: Optional[str] = None) -> SyncStatus:
        """Start a session: fetch the stored document into the mirror."""
        self.mirror = ProgressDocument.empty()
        self.last_error = None
        if not is_valid_username(username):
            self.username = None
            return self._fail(SyncError(kind="validation", message="Invalid username format."))

        normalized = username.lower()
        if token is not None:
            self.token = token
        elif self.username is not None and self.username != normalized:
            # A token only authorises the username it was derived from.
            self.token = None
        self.username = normalized
        self.status = "loading"

        try:
            response = await self._client.get("/api/progress", params={"username": normalized})
        except httpx.HTTPError as exc:
            return self._fail(SyncError(kind="network", message=str(exc) or type(exc).__name__))

        if response.status_code == 404:
            self.status = "empty"
            return self.status
        if response.status_code != 200:
            return self._fail(_error_for_status(response))

        try:
            self.mirror = ProgressDocument.from_wire(response.json())
        except (ValueError, ValidationError) as exc:
            self.mirror = ProgressDocument.empty()
            return self._fail(SyncError(kind="protocol", message=f"Malformed progress document: {exc}"))
        self.status = "ready"
        return self.status

    def merge_local(self, local: ProgressDocument) -> bool:
        """Fold device-local progress into the freshly loaded mirror."""
        if not self.has_session:
            return False
        self.mirror = merge_progress(local, self.mirror)
        return True

    async def flush(self) -> FlushResult:
        """Upload the current mirror. Only this method ever writes to the store."""
        if not self.has_session or self.username is None:
            return FlushResult(ok=False, error=SyncError(kind="session", message="No loaded progress session."))
        if not self.token:
            logger.warning("No auth token for %s, skipping cloud save", self.username)
            return FlushResult(ok=False, error=SyncError(kind="auth", message="Missing write token."))

        # Snapshot before awaiting so later mutations do not leak into this request.
        payload = {"username": self.username, "progress": self.mirror.to_wire(), "token": self.token}
        try:
            response = await self._client.put("/api/progress", json=payload)
        except httpx.HTTPError as exc:
            result = FlushResult(ok=False, error=SyncError(kind="network", message=str(exc) or type(exc).__name__))
        else:
            if response.status_code == 200:
                result = FlushResult(ok=True, status_code=200)
            else:
                result = FlushResult(ok=False, status_code=response.status_code, error=_error_for_status(response))

        if not result.ok:
            logger.warning("Progress flush failed for %s: %s", self.username, result.error)
        emit_event(
            "progress_flush_completed",
            username=self.username,
            ok=result.ok,
            status_code=result.status_code,
            xp=payload["progress"]["xp"],
        )
        return result

    def get_topic_progress(self, topic_id: str) -> TopicProgress:
        return recorder.get_topic_progress(self.mirror, topic_id)

    def is_reward_unlockable(self, gate: rewards.RewardGate) -> bool:
        return rewards.is_reward_unlockable(self.mirror, gate)

    async def record_quiz_attempt(
        self,
        topic_id: str,
        quiz_id: str,
        is_correct: bool,
        *,
        first_try_xp: int = recorder.DEFAULT_FIRST_TRY_XP,
        retry_xp: int = recorder.DEFAULT_RETRY_XP,
    ) -> MutationResult:
        granted = recorder.record_quiz_attempt(
            self.mirror,
            topic_id,
            quiz_id,
            is_correct,
            first_try_xp=first_try_xp,
            retry_xp=retry_xp,
        )
        return MutationResult(changed=True, xp_granted=granted, flush=await self.flush())

    async def mark_essay_submitted(self, topic_id: str) -> MutationResult:
        if not recorder.mark_essay_submitted(self.mirror, topic_id):
            return MutationResult(changed=False)
        return MutationResult(changed=True, flush=await self.flush())

    async def record_essay_save(self, topic_id: str, text: str, *, xp: int = recorder.DEFAULT_ESSAY_XP) -> MutationResult:
        granted = recorder.record_essay_save(self.mirror, topic_id, text, xp=xp)
        return MutationResult(changed=True, xp_granted=granted, flush=await self.flush())

    async def unlock_reward_if_ready(self, gate: rewards.RewardGate) -> MutationResult:
        """Latch and persist the reward once; ``changed`` is the one-time celebration signal."""
        if not rewards.unlock_if_ready(self.mirror, gate):
            return MutationResult(changed=False)
        return MutationResult(changed=True, flush=await self.flush())

    async def reset_progress(self) -> MutationResult:
        """Start the learner over: replace the mirror with an empty document and store it."""
        self.mirror = ProgressDocument.empty()
        logger.info("Progress reset for %s", self.username)
        return MutationResult(changed=True, flush=await self.flush())


__all__ = [
    "ClaimResult",
    "FlushResult",
    "MutationResult",
    "ProgressSyncClient",
    "SyncError",
    "SyncStatus",
]
