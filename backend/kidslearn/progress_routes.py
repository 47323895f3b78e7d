"""Progress and username endpoints consumed by the lesson client."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request, status
from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse

from .auth_tokens import derive_token, is_valid_username, verify_token
from .progress_models import empty_progress_payload, is_progress_payload
from .progress_store import ProgressStoreError, progress_store
from .telemetry import emit_event

router = APIRouter(prefix="/api", tags=["progress"])
logger = logging.getLogger(__name__)

INVALID_USERNAME = "Invalid username format."
INVALID_TOKEN = "Invalid or missing authentication token."
INVALID_PROGRESS = "Invalid progress data."
NOT_FOUND = "No progress found for this username."
INTERNAL_ERROR = "Internal server error"
METHOD_NOT_ALLOWED = "Method not allowed"
USERNAME_RULES = (
    "Username must be 3-20 characters and can only contain letters, numbers, hyphens, and underscores."
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _normalized(username: Any) -> Optional[str]:
    if not is_valid_username(username):
        return None
    return username.lower()


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.get("/progress")
async def fetch_progress(username: Optional[str] = Query(default=None)) -> JSONResponse:
    normalized = _normalized(username)
    if normalized is None:
        return _error(status.HTTP_400_BAD_REQUEST, INVALID_USERNAME)

    try:
        document = await run_in_threadpool(progress_store.read, normalized)
    except ProgressStoreError:
        logger.exception("Storage error in GET /api/progress for %s", normalized)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)

    if document is None:
        return _error(status.HTTP_404_NOT_FOUND, NOT_FOUND)
    try:
        return JSONResponse(status_code=status.HTTP_200_OK, content=document)
    except ValueError:
        logger.exception("Stored progress for %s is not valid JSON", normalized)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)


@router.put("/progress")
async def store_progress(request: Request) -> JSONResponse:
    body = await _json_body(request)

    normalized = _normalized(body.get("username"))
    if normalized is None:
        return _error(status.HTTP_400_BAD_REQUEST, INVALID_USERNAME)

    if not verify_token(normalized, body.get("token")):
        emit_event("progress_write_rejected", username=normalized, reason="token")
        return _error(status.HTTP_401_UNAUTHORIZED, INVALID_TOKEN)

    progress = body.get("progress")
    if not is_progress_payload(progress):
        emit_event("progress_write_rejected", username=normalized, reason="payload")
        return _error(status.HTTP_400_BAD_REQUEST, INVALID_PROGRESS)

    # Whole-document overwrite with no version check: the last completed write wins.
    try:
        await run_in_threadpool(progress_store.write, normalized, progress)
    except ProgressStoreError:
        logger.exception("Storage error in PUT /api/progress for %s", normalized)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)

    emit_event(
        "progress_stored",
        username=normalized,
        xp=progress["xp"],
        topic_count=len(progress["topics"]),
    )
    return JSONResponse(status_code=status.HTTP_200_OK, content={"ok": True})


@router.api_route(
    "/progress",
    methods=["POST", "PATCH", "DELETE", "HEAD", "OPTIONS", "TRACE"],
    include_in_schema=False,
)
async def progress_method_not_allowed() -> JSONResponse:
    return _error(status.HTTP_405_METHOD_NOT_ALLOWED, METHOD_NOT_ALLOWED)


@router.post("/username")
async def claim_username(request: Request) -> JSONResponse:
    """Hand out the write token for a username, creating an empty document on first claim."""
    body = await _json_body(request)
    normalized = _normalized(body.get("username"))
    if normalized is None:
        return _error(status.HTTP_400_BAD_REQUEST, USERNAME_RULES)

    token = derive_token(normalized)
    try:
        exists = await run_in_threadpool(progress_store.exists, normalized)
        if exists:
            emit_event("username_claimed", username=normalized, created=False)
            return JSONResponse(content={"exists": True, "username": normalized, "token": token})
        await run_in_threadpool(progress_store.write, normalized, empty_progress_payload())
    except ProgressStoreError:
        logger.exception("Storage error in POST /api/username for %s", normalized)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, INTERNAL_ERROR)

    emit_event("username_claimed", username=normalized, created=True)
    return JSONResponse(content={"created": True, "username": normalized, "token": token})


@router.api_route(
    "/username",
    methods=["GET", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "TRACE"],
    include_in_schema=False,
)
async def username_method_not_allowed() -> JSONResponse:
    return _error(status.HTTP_405_METHOD_NOT_ALLOWED, METHOD_NOT_ALLOWED)


__all__ = ["router"]
