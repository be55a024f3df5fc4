# /providers/sync/_mod_common.py
# PrefSync shared HTTP helpers for the Upmind and Braze clients
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

import json
import os
import time
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

import requests

from _logging import log as _root_log

__VERSION__ = "1.0.0"
__all__ = [
    "HitSession",
    "build_session",
    "safe_json",
    "error_message",
    "request_with_retries",
]

FeatureLabelFn = Callable[[str, str], str]

_log = _root_log.child("HTTP")


def default_feature_label(method: str, url: str) -> str:
    segs = [s for s in (urlparse(url).path or "/").split("/") if s]
    return f"{method.lower()}:{'/'.join(segs[-3:]) or '/'}"


class HitSession(requests.Session):
    """requests.Session that logs one debug line per call (PS_API_HITS=1)."""

    def __init__(
        self,
        provider: str,
        headers: Mapping[str, str] | None = None,
        feature_label: FeatureLabelFn | None = None,
        emit_hits: bool | None = None,
    ):
        super().__init__()
        self._provider = provider
        self._label = feature_label or default_feature_label
        self._emit_hits = bool(os.getenv("PS_API_HITS")) if emit_hits is None else bool(emit_hits)
        self.headers.update({"Accept": "application/json", "User-Agent": "PrefSync/1.0"})
        if headers:
            self.headers.update(dict(headers))

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:  # type: ignore[override]
        status: int | None = None
        try:
            resp = super().request(method, url, **kwargs)
            status = resp.status_code
            return resp
        finally:
            if self._emit_hits:
                _log.debug(f"{self._provider} {self._label(method.upper(), url)} -> {status}",
                           extra={"provider": self._provider, "status": status})


def build_session(
    provider: str,
    headers: Mapping[str, str] | None = None,
    *,
    feature_label: FeatureLabelFn | None = None,
    emit_hits: bool | None = None,
) -> HitSession:
    return HitSession(provider, headers, feature_label, emit_hits)


def safe_json(resp: requests.Response) -> Any:
    try:
        if not (resp.text or "").strip():
            return {}
        ctype = (resp.headers.get("Content-Type") or "").lower()
        if "json" in ctype:
            return resp.json()
        return json.loads(resp.text)
    except ValueError:
        return {}


def error_message(resp: requests.Response) -> str:
    body = safe_json(resp)
    if isinstance(body, Mapping):
        err = body.get("error")
        if isinstance(err, Mapping) and err.get("message"):
            return str(err["message"])
        if isinstance(err, str) and err:
            return err
        for k in ("message", "errors"):
            v = body.get(k)
            if v:
                return v if isinstance(v, str) else json.dumps(v, default=str)
    text = (resp.text or "").strip()
    return text[:200] if text else f"HTTP {resp.status_code}"


def request_with_retries(
    session: requests.Session,
    method: str,
    url: str,
    *,
    timeout: float = 10.0,
    max_retries: int = 2,
    retry_on: tuple[int, ...] = (429, 500, 502, 503, 504),
    backoff_base: float = 0.5,
    max_wait: float | None = None,
    **kwargs: Any,
) -> requests.Response:
    """
    `max_retries` counts extra attempts; 0 means a single call.
    Backoff and Retry-After waits are capped at `max_wait` (default: `timeout`).
    """
    cap = float(timeout if max_wait is None else max_wait)
    attempts = 1 + max(0, int(max_retries))
    last_exc: requests.RequestException | None = None
    for i in range(attempts):
        final = i == attempts - 1
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as e:
            last_exc = e
            if final:
                break
            time.sleep(min(backoff_base * (2**i), cap))
            continue
        if resp.status_code in retry_on and not final:
            wait = backoff_base * (2**i)
            if resp.status_code == 429:
                try:
                    wait = max(wait, float(resp.headers.get("Retry-After") or 0))
                except ValueError:
                    pass
            wait = min(wait, cap)
            _log.debug(f"{method} {url} -> {resp.status_code}; retry {i + 1}/{attempts - 1} in {wait:.2f}s")
            time.sleep(wait)
            continue
        return resp
    raise requests.RequestException(f"request failed after {attempts} attempt(s): {method} {url}") from last_exc
