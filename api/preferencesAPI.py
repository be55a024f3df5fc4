# /api/preferencesAPI.py
# PrefSync - notification preferences: load, save, revert, refresh, status
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from _logging import log as _root_log
from ps_platform.errors import (
    AlreadyInProgress,
    AuthorityReadFailed,
    IncompleteMatrix,
    NotLoaded,
    SyncError,
)
from ps_platform.sync import PreferenceMatrix, SyncOrchestrator, SyncOutcome

router = APIRouter(prefix="/api/notifications/preferences", tags=["preferences"])

_log = _root_log.child("API")


class PreferenceRow(BaseModel):
    topic_id: str
    channel_id: str
    opted_in: bool


class PreferencesIn(BaseModel):
    preferences: list[PreferenceRow]


def _ok(payload: dict[str, Any], *, status_code: int = 200) -> JSONResponse:
    payload.setdefault("ok", True)
    return JSONResponse(payload, status_code=status_code)


def _err(msg: str, *, status_code: int = 400, extra: dict[str, Any] | None = None) -> JSONResponse:
    payload: dict[str, Any] = {"ok": False, "error": msg}
    if extra:
        payload.update(extra)
    return JSONResponse(payload, status_code=status_code)


def _auth_rejected(e: SyncError | None) -> bool:
    return e is not None and getattr(e.cause, "status", None) in (401, 403)


def _status_for(e: SyncError) -> int:
    if _auth_rejected(e):
        return 401
    if isinstance(e, IncompleteMatrix):
        return 422
    if isinstance(e, (AlreadyInProgress, NotLoaded)):
        return 409
    if isinstance(e, AuthorityReadFailed):
        return 502
    return 500


def _forget(request: Request, orch: SyncOrchestrator) -> None:
    # Upmind rejected the token
    if request.app.state.sessions.drop(orch.user_token):
        _log.debug("session dropped after upmind rejected the token")


def _sync_err(e: SyncError, request: Request | None = None, orch: SyncOrchestrator | None = None) -> JSONResponse:
    if request is not None and orch is not None and _auth_rejected(e):
        _forget(request, orch)
    return _err(e.message, status_code=_status_for(e), extra={"code": type(e).__name__, "detail": e.detail})


def _bearer(authorization: str | None) -> str:
    raw = (authorization or "").strip()
    if raw[:7].lower() == "bearer ":
        return raw[7:].strip()
    return ""


def _session(request: Request, authorization: str | None, user_id: str | None) -> SyncOrchestrator | None:
    token = _bearer(authorization)
    if not token:
        return None
    return request.app.state.sessions.get(token, (user_id or "").strip())


def _snapshot_payload(orch: SyncOrchestrator, snap: PreferenceMatrix) -> dict[str, Any]:
    return {"preferences": snap.to_rows(), "status": orch.status()}


@router.get("")
def api_preferences_get(
    request: Request,
    authorization: str | None = Header(None),
    x_user_id: str | None = Header(None),
) -> JSONResponse:
    orch = _session(request, authorization, x_user_id)
    if orch is None:
        return _err("missing bearer token", status_code=401)
    try:
        return _ok(_snapshot_payload(orch, orch.get_snapshot()))
    except SyncError as e:
        return _sync_err(e, request, orch)


@router.put("")
def api_preferences_save(
    request: Request,
    body: PreferencesIn = Body(...),
    authorization: str | None = Header(None),
    x_user_id: str | None = Header(None),
) -> JSONResponse:
    orch = _session(request, authorization, x_user_id)
    if orch is None:
        return _err("missing bearer token", status_code=401)
    try:
        desired = PreferenceMatrix.from_rows(orch.catalog, [r.model_dump() for r in body.preferences])
        result = orch.save(desired)
    except SyncError as e:
        return _sync_err(e)

    payload = result.to_dict()
    if result.outcome is SyncOutcome.FAILED:
        payload["error"] = result.error.message if result.error else "save failed"
        if _auth_rejected(result.error):
            _forget(request, orch)
            return JSONResponse(payload, status_code=401)
        return JSONResponse(payload, status_code=502)
    if result.outcome is SyncOutcome.PARTIAL_SUCCESS and result.error is not None:
        payload["warning"] = result.error.message
    return JSONResponse(payload)


@router.post("/revert")
def api_preferences_revert(
    request: Request,
    authorization: str | None = Header(None),
    x_user_id: str | None = Header(None),
) -> JSONResponse:
    orch = _session(request, authorization, x_user_id)
    if orch is None:
        return _err("missing bearer token", status_code=401)
    try:
        return _ok(_snapshot_payload(orch, orch.revert()))
    except SyncError as e:
        return _sync_err(e)


@router.post("/refresh")
def api_preferences_refresh(
    request: Request,
    authorization: str | None = Header(None),
    x_user_id: str | None = Header(None),
) -> JSONResponse:
    orch = _session(request, authorization, x_user_id)
    if orch is None:
        return _err("missing bearer token", status_code=401)
    try:
        return _ok(_snapshot_payload(orch, orch.refresh()))
    except SyncError as e:
        return _sync_err(e, request, orch)


@router.get("/status")
def api_preferences_status(
    request: Request,
    authorization: str | None = Header(None),
) -> JSONResponse:
    token = _bearer(authorization)
    if not token:
        return _err("missing bearer token", status_code=401)
    # status never opens a session
    orch = request.app.state.sessions.peek(token)
    if orch is None:
        return _ok({"state": "idle", "loaded": False, "loaded_at": None, "last_outcome": None,
                    "last_reason": None, "pending_reconciliation": 0})
    out = orch.status()
    if orch.pending_reconciliation:
        out["pending"] = [
            {"at": p["at"], "states": p["states"], "error": p["error"]} for p in orch.pending_reconciliation
        ]
    return _ok(out)
