# /ps_platform/sync/_planner.py
# PrefSync - diff and translation between Upmind opt-outs and Braze groups
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from collections.abc import Iterable
from typing import Dict, List, Tuple

from ..catalog import Catalog, PreferenceKey
from ..errors import IncompleteMatrix
from ..mapping_table import MappingTable
from ._matrix import PreferenceMatrix
from ._types import ChangeRecord, SubscriptionState, SyncPlan

__all__ = ["plan", "authority_payload", "engagement_payload", "changes_between"]


def _check_pair(snapshot: PreferenceMatrix, desired: PreferenceMatrix, catalog: Catalog) -> None:
    expected = catalog.key_set()
    for name, m in (("snapshot", snapshot), ("desired", desired)):
        if set(m.keys()) != expected:
            raise IncompleteMatrix(f"{name} matrix does not cover the catalog", matrix=name)


def changes_between(snapshot: PreferenceMatrix, desired: PreferenceMatrix, catalog: Catalog) -> List[ChangeRecord]:
    out: List[ChangeRecord] = []
    for key in catalog.keys():
        old, new = snapshot[key], desired[key]
        if old != new:
            out.append(ChangeRecord(key[0], key[1], old, new))
    return out


# Full replace set for Upmind (not a delta)
def authority_payload(desired: PreferenceMatrix, catalog: Catalog) -> List[PreferenceKey]:
    out: List[PreferenceKey] = []
    for key in catalog.keys():
        topic = catalog.topic(key[0])
        if topic is None or not topic.can_opt_out:
            continue
        if not desired[key]:
            out.append(key)
    return out


def engagement_payload(
    desired: PreferenceMatrix,
    catalog: Catalog,
    table: MappingTable,
) -> Tuple[Dict[str, SubscriptionState], List[str]]:
    """
    Braze group states for every relevant, mapped cell of `desired`.

    A group shared by several cells takes the desired value of the last of
    those cells in catalog order (topic-major, then channel); disagreeing
    groups are returned as conflicts.
    """
    states: Dict[str, SubscriptionState] = {}
    conflicts: List[str] = []
    for key in catalog.keys():
        topic_id, channel_id = key
        if not table.is_relevant(topic_id):
            continue
        gid = table.lookup(topic_id, channel_id)
        if not gid:
            continue
        state: SubscriptionState = "subscribed" if desired[key] else "unsubscribed"
        prev = states.get(gid)
        if prev is not None and prev != state and gid not in conflicts:
            conflicts.append(gid)
        states[gid] = state
    return states, conflicts


def _touches_braze(changes: Iterable[ChangeRecord], table: MappingTable) -> bool:
    return any(table.is_relevant(c.topic_id) and table.lookup(c.topic_id, c.channel_id) for c in changes)


def plan(
    snapshot: PreferenceMatrix,
    desired: PreferenceMatrix,
    catalog: Catalog,
    table: MappingTable,
    *,
    resend_all: bool = False,
) -> SyncPlan:
    """
    Pure; never raises for "nothing changed", it returns an empty plan.

    The Braze payload is the full relevant map, sent when a changed cell is
    mapped or when `resend_all` asks to repair an earlier failed write.
    Changes to unmapped cells alone leave Braze untouched.
    """
    _check_pair(snapshot, desired, catalog)
    changes = changes_between(snapshot, desired, catalog)
    if not changes:
        return SyncPlan()

    states: Dict[str, SubscriptionState] = {}
    conflicts: List[str] = []
    if resend_all or _touches_braze(changes, table):
        states, conflicts = engagement_payload(desired, catalog, table)
    return SyncPlan(
        authority_opt_outs=tuple(authority_payload(desired, catalog)),
        engagement_states=states,
        changes=tuple(changes),
        conflicts=tuple(conflicts),
    )
