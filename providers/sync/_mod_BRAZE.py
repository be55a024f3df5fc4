# /providers/sync/_mod_BRAZE.py
# PrefSync Braze module: subscription groups and custom events (the engagement platform)
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

import requests

from _logging import log as _root_log

from ._mod_common import build_session, error_message, request_with_retries, safe_json

__VERSION__ = "1.0.0"
__all__ = ["BrazeConfig", "BrazeClient", "BrazeUser", "BrazeError", "SUBSCRIPTION_PATH", "TRACK_PATH"]

SUBSCRIPTION_PATH = "/v2/subscription/status/set"
TRACK_PATH = "/users/track"

_VALID_STATES = ("subscribed", "unsubscribed")

_log = _root_log.child("BRAZE")


@dataclass
class BrazeConfig:
    rest_endpoint: str = ""
    api_key: str = ""
    timeout: float = 10.0
    max_retries: int = 0

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "BrazeConfig":
        b = dict(cfg.get("braze") or {})
        return cls(
            rest_endpoint=str(b.get("rest_endpoint") or "").strip().rstrip("/"),
            api_key=str(b.get("api_key") or "").strip(),
            timeout=float(b.get("timeout", cls.timeout) or cls.timeout),
            max_retries=int(b.get("max_retries", cls.max_retries) or 0),
        )


class BrazeError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


class BrazeClient:
    def __init__(self, cfg: BrazeConfig, session: requests.Session | None = None):
        self.cfg = cfg
        self.session = session or build_session("BRAZE", {"Content-Type": "application/json"})

    def _post(self, path: str, payload: Mapping[str, Any]) -> Any:
        if not self.cfg.rest_endpoint:
            raise BrazeError("Braze rest_endpoint is not configured")
        if not self.cfg.api_key:
            raise BrazeError("Braze api_key is not configured")
        url = f"{self.cfg.rest_endpoint.rstrip('/')}{path}"
        try:
            resp = request_with_retries(
                self.session,
                "POST",
                url,
                timeout=self.cfg.timeout,
                max_retries=self.cfg.max_retries,
                headers={"Authorization": f"Bearer {self.cfg.api_key}"},
                json=dict(payload),
            )
        except requests.RequestException as e:
            raise BrazeError(f"Braze {path} failed: {e}") from e
        if not resp.ok:
            raise BrazeError(f"Braze {path} {resp.status_code}: {error_message(resp)}", status=resp.status_code)
        body = safe_json(resp)
        # Braze answers 201 with per-item "errors" for partially rejected batches
        if isinstance(body, Mapping) and body.get("errors"):
            raise BrazeError(f"Braze {path} rejected items: {body['errors']}", status=resp.status_code)
        return body

    def set_subscription_group_states(self, external_id: str, states: Mapping[str, str]) -> None:
        if not external_id:
            raise BrazeError("Braze external_id is required")
        groups = []
        for gid, state in states.items():
            if state not in _VALID_STATES:
                raise BrazeError(f"invalid subscription state {state!r} for group {gid}")
            groups.append({
                "subscription_group_id": gid,
                "subscription_state": state,
                "external_ids": [external_id],
            })
        if not groups:
            return
        self._post(SUBSCRIPTION_PATH, {"subscription_groups": groups})
        _log.debug(f"updated {len(groups)} subscription group(s)", extra={"groups": dict(states)})

    def log_custom_event(self, external_id: str, name: str, properties: Mapping[str, Any]) -> None:
        if not external_id:
            raise BrazeError("Braze external_id is required")
        event = {
            "external_id": external_id,
            "name": name,
            "time": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "properties": dict(properties),
        }
        self._post(TRACK_PATH, {"events": [event]})


class BrazeUser:
    """One Braze profile; satisfies the orchestrator's EngagementPlatform protocol."""

    def __init__(self, client: BrazeClient, external_id: str):
        self.client = client
        self.external_id = str(external_id or "").strip()

    def set_subscription_group_states(self, states: Mapping[str, str]) -> None:
        self.client.set_subscription_group_states(self.external_id, states)

    def log_audit_event(self, name: str, properties: Mapping[str, Any]) -> None:
        try:
            self.client.log_custom_event(self.external_id, name, properties)
        except BrazeError as e:
            _log.warn(f"custom event {name!r} dropped: {e}")
