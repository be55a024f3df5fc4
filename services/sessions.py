# /services/sessions.py
# PrefSync - one sync orchestrator per signed-in user
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

import hashlib
import threading
import time
from typing import Any, Callable, Mapping

from _logging import log as _root_log
from ps_platform.catalog import Catalog
from ps_platform.mapping_table import MappingTable
from ps_platform.sync import SyncOrchestrator
from providers.sync._mod_BRAZE import BrazeClient, BrazeConfig, BrazeUser
from providers.sync._mod_UPMIND import UpmindClient, UpmindConfig

__all__ = ["SessionRegistry", "OrchestratorFactory", "default_factory"]

# (bearer token, braze external id) -> orchestrator
OrchestratorFactory = Callable[[str, str], SyncOrchestrator]

_log = _root_log.child("SESSIONS")


def _sid(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:16]


class SessionRegistry:
    def __init__(self, factory: OrchestratorFactory, ttl_sec: int = 1800):
        self.factory = factory
        self.ttl_sec = max(0, int(ttl_sec))
        self._lock = threading.Lock()
        self._items: dict[str, SyncOrchestrator] = {}

    def get(self, token: str, external_id: str = "") -> SyncOrchestrator:
        sid = _sid(token)
        self.evict_expired()
        with self._lock:
            orch = self._items.get(sid)
            if orch is None:
                orch = self.factory(token, external_id)
                self._items[sid] = orch
                _log.debug(f"session {sid} opened")
        self._bind_user(sid, orch, external_id)
        orch.touch()
        return orch

    @staticmethod
    def _bind_user(sid: str, orch: SyncOrchestrator, external_id: str) -> None:
        # the first request may arrive without X-User-Id; a later id wins
        eng = orch.engagement
        if external_id and isinstance(eng, BrazeUser) and eng.external_id != external_id:
            _log.debug(f"session {sid} bound to braze user")
            eng.external_id = external_id

    def peek(self, token: str) -> SyncOrchestrator | None:
        with self._lock:
            return self._items.get(_sid(token))

    def drop(self, token: str) -> bool:
        with self._lock:
            return self._items.pop(_sid(token), None) is not None

    def evict_expired(self, now: float | None = None) -> int:
        if not self.ttl_sec:
            return 0
        now = time.time() if now is None else now
        with self._lock:
            stale = [
                sid for sid, o in self._items.items()
                if not o.saving and (now - o.touched_at) > self.ttl_sec
            ]
            for sid in stale:
                del self._items[sid]
        if stale:
            _log.debug(f"evicted {len(stale)} idle session(s)")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def default_factory(cfg: Mapping[str, Any], catalog: Catalog, table: MappingTable) -> OrchestratorFactory:
    upmind = UpmindClient(UpmindConfig.from_config(cfg))
    braze = BrazeClient(BrazeConfig.from_config(cfg))
    b = dict(cfg.get("braze") or {})
    rt = dict(cfg.get("runtime") or {})
    event_name = str(b.get("audit_event_name") or "").strip()

    def _make(token: str, external_id: str) -> SyncOrchestrator:
        orch = SyncOrchestrator(
            user_token=token,
            authority=upmind,
            engagement=BrazeUser(braze, external_id),
            catalog=catalog,
            table=table,
            debug=bool(rt.get("debug")),
        )
        if event_name:
            orch.audit_event_name = event_name
        return orch

    return _make
