# Public surface of the sync package.
from ._matrix import PreferenceMatrix
from ._planner import plan, changes_between
from ._snapshots import SnapshotStore
from ._types import (
    ChangeRecord,
    EngagementPlatform,
    PreferenceAuthority,
    SyncOutcome,
    SyncPlan,
    SyncResult,
    SyncState,
)
from .facade import SyncOrchestrator

__all__ = [
    "SyncOrchestrator",
    "PreferenceMatrix",
    "SnapshotStore",
    "plan",
    "changes_between",
    "ChangeRecord",
    "SyncPlan",
    "SyncResult",
    "SyncState",
    "SyncOutcome",
    "PreferenceAuthority",
    "EngagementPlatform",
]
