# /ps_platform/sync/_types.py
# PrefSync - types and collaborator protocols for the sync core
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Protocol

from ..catalog import PreferenceKey
from ..errors import SyncError

SubscriptionState = Literal["subscribed", "unsubscribed"]


class PreferenceAuthority(Protocol):
    def fetch_opt_outs(self, user_token: str) -> Sequence[PreferenceKey]: ...
    def replace_opt_outs(self, user_token: str, opt_outs: Sequence[PreferenceKey]) -> None: ...


class EngagementPlatform(Protocol):
    def set_subscription_group_states(self, states: Mapping[str, SubscriptionState]) -> None: ...
    def log_audit_event(self, name: str, properties: Mapping[str, Any]) -> None: ...


class SyncState(str, Enum):
    IDLE = "idle"
    SAVING = "saving"
    RECONCILED = "reconciled"
    FAILED = "failed"


class SyncOutcome(str, Enum):
    RECONCILED = "reconciled"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


@dataclass(frozen=True)
class ChangeRecord:
    topic_id: str
    channel_id: str
    old_state: bool
    new_state: bool

    @property
    def key(self) -> PreferenceKey:
        return (self.topic_id, self.channel_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic_id": self.topic_id,
            "channel_id": self.channel_id,
            "old_state_opted_in": self.old_state,
            "new_state_opted_in": self.new_state,
        }


@dataclass(frozen=True)
class SyncPlan:
    authority_opt_outs: tuple[PreferenceKey, ...] = ()
    engagement_states: Mapping[str, SubscriptionState] = field(default_factory=dict)
    changes: tuple[ChangeRecord, ...] = ()
    conflicts: tuple[str, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "authority_opt_outs": [{"topic_id": t, "channel_id": c} for t, c in self.authority_opt_outs],
            "engagement_states": dict(self.engagement_states),
            "changes": [c.to_dict() for c in self.changes],
            "conflicts": list(self.conflicts),
        }


@dataclass
class SyncResult:
    outcome: SyncOutcome
    reason: str | None = None
    error: SyncError | None = None
    plan: SyncPlan | None = None
    snapshot: Any | None = None
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is not SyncOutcome.FAILED

    @property
    def changes(self) -> tuple[ChangeRecord, ...]:
        return self.plan.changes if self.plan else ()

    @property
    def duration_ms(self) -> int:
        return int(max(0.0, self.finished_at - self.started_at) * 1000)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "ok": self.ok,
            "outcome": self.outcome.value,
            "reason": self.reason,
            "changes": [c.to_dict() for c in self.changes],
            "duration_ms": self.duration_ms,
        }
        if self.error is not None:
            out["error"] = self.error.to_dict()
        if self.snapshot is not None and hasattr(self.snapshot, "to_rows"):
            out["preferences"] = self.snapshot.to_rows()
        return out
