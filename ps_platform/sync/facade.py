# /ps_platform/sync/facade.py
# PrefSync - orchestrates one user's save cycle across Upmind and Braze.
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from _logging import log as _root_log

from ..catalog import Catalog, PreferenceKey
from ..errors import (
    AlreadyInProgress,
    AuthorityReadFailed,
    AuthorityWriteFailed,
    EngagementWriteFailed,
    SyncError,
)
from ..mapping_table import MappingTable
from ._audit import AUDIT_EVENT_NAME, build_audit_event
from ._logging import Emitter
from ._matrix import PreferenceMatrix
from ._planner import plan as _plan
from ._snapshots import SnapshotStore
from ._types import (
    EngagementPlatform,
    PreferenceAuthority,
    SyncOutcome,
    SyncPlan,
    SyncResult,
    SyncState,
)

__all__ = ["SyncOrchestrator"]

_log = _root_log.child("SYNC")


@dataclass
class SyncOrchestrator:
    user_token: str
    authority: PreferenceAuthority
    engagement: EngagementPlatform
    catalog: Catalog
    table: MappingTable
    on_progress: Callable[[str], None] | None = None
    audit_event_name: str = AUDIT_EVENT_NAME
    debug: bool = False

    store: SnapshotStore = field(init=False)
    emitter: Emitter = field(init=False)
    pending_reconciliation: list[dict[str, Any]] = field(init=False, default_factory=list)
    last_result: SyncResult | None = field(init=False, default=None)
    touched_at: float = field(init=False, default=0.0)

    # internal fields (set in __post_init__)
    _state: SyncState = field(init=False, default=SyncState.IDLE)
    _busy: bool = field(init=False, default=False)
    _guard: threading.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.store = SnapshotStore()
        self.emitter = Emitter(self.on_progress, debug=self.debug)
        self.emit = self.emitter.emit
        self.dbg = self.emitter.dbg
        self._guard = threading.Lock()
        self.touched_at = time.time()

    # State
    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def saving(self) -> bool:
        return self._busy

    def touch(self) -> None:
        self.touched_at = time.time()

    def status(self) -> dict[str, Any]:
        last = self.last_result
        return {
            "state": self._state.value,
            "loaded": self.store.loaded,
            "loaded_at": self.store.loaded_at,
            "last_outcome": last.outcome.value if last else None,
            "last_reason": last.reason if last else None,
            "pending_reconciliation": len(self.pending_reconciliation),
        }

    def _enter(self, op: str) -> None:
        with self._guard:
            if self._busy:
                self.emit("save:rejected", op=op, reason="in_progress")
                raise AlreadyInProgress(f"{op} rejected: a save is already running")
            self._busy = True

    def _leave(self) -> None:
        with self._guard:
            self._busy = False

    def _set_state(self, state: SyncState) -> None:
        if state is not self._state:
            self.dbg("state", old=self._state.value, new=state.value)
        self._state = state

    # Authority reads
    def _fetch(self) -> PreferenceMatrix:
        try:
            raw = self.authority.fetch_opt_outs(self.user_token)
        except SyncError:
            raise
        except Exception as e:
            self.emit("snapshot:error", error=str(e))
            raise AuthorityReadFailed(str(e), cause=e) from e
        matrix = PreferenceMatrix.from_opt_outs(self.catalog, raw or [])
        self.store.load(matrix)
        self.emit("snapshot:loaded", opted_out=len(matrix.opt_outs()))
        return matrix

    def get_snapshot(self) -> PreferenceMatrix:
        self.touch()
        if self.store.loaded:
            return self.store.current()
        return self._fetch()

    def refresh(self) -> PreferenceMatrix:
        self.touch()
        self._enter("refresh")
        try:
            return self._fetch()
        finally:
            self._leave()

    def revert(self) -> PreferenceMatrix:
        self.touch()
        snap = self.store.current()
        self.emit("revert", opted_out=len(snap.opt_outs()))
        return snap

    def _coerce(self, desired: PreferenceMatrix | Mapping[PreferenceKey, bool]) -> PreferenceMatrix:
        if isinstance(desired, PreferenceMatrix):
            return desired
        return PreferenceMatrix.build(self.catalog, desired)

    # Save
    def save(self, desired: PreferenceMatrix | Mapping[PreferenceKey, bool]) -> SyncResult:
        """
        Write `desired` to Upmind, then mirror the relevant part to Braze.

        Raises NotLoaded / AlreadyInProgress / IncompleteMatrix; every remote
        failure is reported through the returned SyncResult instead.
        """
        self.touch()
        target = self._coerce(desired)

        self._enter("save")
        started = time.time()
        try:
            # plan against the snapshot as it is once the guard is held
            snapshot = self.store.current()
            p = _plan(snapshot, target, self.catalog, self.table,
                      resend_all=bool(self.pending_reconciliation))
            self._set_state(SyncState.SAVING)
            self.emit("save:start", changes=len(p.changes), groups=len(p.engagement_states))
            result = self._run(p, target, started)
        except BaseException:
            if self._state is SyncState.SAVING:
                self._set_state(SyncState.FAILED)
            raise
        finally:
            self._leave()

        self.last_result = result
        self.emit("save:done", outcome=result.outcome.value, reason=result.reason,
                  changes=len(result.changes), duration_ms=result.duration_ms)
        return result

    def _finish(self, outcome: SyncOutcome, p: SyncPlan, started: float, *,
                reason: str | None = None, error: SyncError | None = None) -> SyncResult:
        return SyncResult(
            outcome=outcome, reason=reason, error=error, plan=p,
            snapshot=self.store.current(), started_at=started, finished_at=time.time(),
        )

    def _run(self, p: SyncPlan, target: PreferenceMatrix, started: float) -> SyncResult:
        if not p.has_changes:
            self.store.load(target)
            self._set_state(SyncState.RECONCILED)
            return self._finish(SyncOutcome.RECONCILED, p, started, reason="no changes")

        for gid in p.conflicts:
            _log.warn(f"group {gid} receives conflicting cell states; last cell in catalog order applied",
                      extra={"group_id": gid, "state": p.engagement_states.get(gid)})

        # 1) Authority first; nothing else happens if it fails
        self.emit("authority:write", opt_outs=len(p.authority_opt_outs))
        try:
            self.authority.replace_opt_outs(self.user_token, list(p.authority_opt_outs))
        except Exception as e:
            err = e if isinstance(e, AuthorityWriteFailed) else AuthorityWriteFailed(str(e), cause=e)
            _log.error(f"authority write failed: {e}")
            self.emit("authority:error", error=str(e))
            self._set_state(SyncState.FAILED)
            return self._finish(SyncOutcome.FAILED, p, started, reason="authority write failed", error=err)

        # 2) Authority accepted: it is now the confirmed state
        self.store.load(target)
        self.emit("snapshot:advanced", opted_out=len(target.opt_outs()))

        # 3) Braze subscription groups, single attempt
        if p.engagement_states:
            states = dict(p.engagement_states)
            self.emit("engagement:write", groups=len(states))
            try:
                self.engagement.set_subscription_group_states(states)
            except Exception as e:
                err = e if isinstance(e, EngagementWriteFailed) else EngagementWriteFailed(str(e), cause=e)
                entry = {
                    "at": time.time(),
                    "states": states,
                    "changes": [c.to_dict() for c in p.changes],
                    "error": str(e),
                }
                self.pending_reconciliation.append(entry)
                _log.error("engagement write failed; pending reconciliation", extra=entry)
                self.emit("engagement:error", error=str(e), groups=sorted(states))
                self._set_state(SyncState.FAILED)
                return self._finish(SyncOutcome.PARTIAL_SUCCESS, p, started,
                                    reason="engagement write failed", error=err)
            if self.pending_reconciliation:
                _log.info(f"braze caught up; cleared {len(self.pending_reconciliation)} pending reconciliation(s)")
                self.pending_reconciliation.clear()
        else:
            self.dbg("no mapped groups affected; engagement write skipped")

        # 4) Audit, fire-and-forget
        event = build_audit_event(p.changes, self.catalog, self.audit_event_name)
        if event is not None:
            name, props = event
            try:
                self.engagement.log_audit_event(name, props)
                self.emit("audit:sent", name=name, changes=props["number_of_changes"])
            except Exception as e:
                _log.warn(f"audit event not recorded: {e}")
                self.emit("audit:error", error=str(e))

        self._set_state(SyncState.RECONCILED)
        return self._finish(SyncOutcome.RECONCILED, p, started)
