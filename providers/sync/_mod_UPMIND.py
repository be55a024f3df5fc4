# /providers/sync/_mod_UPMIND.py
# PrefSync Upmind module: notification opt-outs (the preference authority)
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import requests

from _logging import log as _root_log

from ._mod_common import build_session, error_message, request_with_retries, safe_json

__VERSION__ = "1.0.0"
__all__ = ["UpmindConfig", "UpmindClient", "UpmindError", "UpmindAuthError", "OPT_OUTS_PATH"]

OPT_OUTS_PATH = "/api/notifications/opt-outs"

_log = _root_log.child("UPMIND")


@dataclass
class UpmindConfig:
    api_base_url: str = "https://api.upmind.io"
    timeout: float = 10.0
    max_retries: int = 2
    origin: str = ""
    referer: str = ""

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "UpmindConfig":
        u = dict(cfg.get("upmind") or {})
        return cls(
            api_base_url=str(u.get("api_base_url") or cls.api_base_url).strip().rstrip("/"),
            timeout=float(u.get("timeout", cls.timeout) or cls.timeout),
            max_retries=int(u.get("max_retries", cls.max_retries) or 0),
            origin=str(u.get("origin") or "").strip(),
            referer=str(u.get("referer") or "").strip(),
        )


class UpmindError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None):
        super().__init__(message)
        self.status = status


class UpmindAuthError(UpmindError):
    pass


class UpmindClient:
    def __init__(self, cfg: UpmindConfig, session: requests.Session | None = None):
        self.cfg = cfg
        headers: dict[str, str] = {}
        if cfg.origin:
            headers["Origin"] = cfg.origin
        if cfg.referer:
            headers["Referer"] = cfg.referer
        self.session = session or build_session("UPMIND", headers)
        if session is not None and headers:
            self.session.headers.update(headers)

    @property
    def url(self) -> str:
        return f"{self.cfg.api_base_url.rstrip('/')}{OPT_OUTS_PATH}"

    def _call(self, method: str, user_token: str, **kw: Any) -> requests.Response:
        if not str(user_token or "").strip():
            raise UpmindAuthError("Missing Upmind access token", status=401)
        try:
            resp = request_with_retries(
                self.session,
                method,
                self.url,
                timeout=self.cfg.timeout,
                max_retries=self.cfg.max_retries,
                headers={"Authorization": f"Bearer {user_token}"},
                **kw,
            )
        except requests.RequestException as e:
            raise UpmindError(f"Upmind {method} failed: {e}") from e
        if resp.status_code in (401, 403):
            raise UpmindAuthError(f"Upmind rejected the token: {error_message(resp)}", status=resp.status_code)
        if not resp.ok:
            raise UpmindError(f"Upmind {method} {resp.status_code}: {error_message(resp)}", status=resp.status_code)
        return resp

    def fetch_opt_outs(self, user_token: str) -> list[tuple[str, str]]:
        resp = self._call("GET", user_token)
        body = safe_json(resp)
        rows = body.get("data") if isinstance(body, Mapping) else None
        if rows is None:
            rows = []
        if not isinstance(rows, list):
            raise UpmindError("Upmind opt-outs response has no data list", status=resp.status_code)
        out: list[tuple[str, str]] = []
        for row in rows:
            if not isinstance(row, Mapping):
                continue
            t, c = str(row.get("topic_id") or ""), str(row.get("channel_id") or "")
            if t and c:
                out.append((t, c))
        _log.debug(f"fetched {len(out)} opt-outs")
        return out

    def replace_opt_outs(self, user_token: str, opt_outs: Iterable[tuple[str, str]]) -> None:
        payload = {"opt_outs": [{"topic_id": t, "channel_id": c} for t, c in opt_outs]}
        self._call("PUT", user_token, json=payload)
        _log.debug(f"replaced opt-outs ({len(payload['opt_outs'])})")
