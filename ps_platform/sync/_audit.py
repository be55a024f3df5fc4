# /ps_platform/sync/_audit.py
# PrefSync - audit event describing one reconciled save
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from ..catalog import Catalog
from ._types import ChangeRecord

__all__ = ["AUDIT_EVENT_NAME", "audit_properties", "build_audit_event"]

AUDIT_EVENT_NAME = "Notification Preference Updated"


def _topic_names(changes: Sequence[ChangeRecord], catalog: Catalog) -> str:
    seen: list[str] = []
    for c in changes:
        t = catalog.topic(c.topic_id)
        name = t.name if t else c.topic_id
        if name not in seen:
            seen.append(name)
    return ", ".join(seen)


def audit_properties(changes: Sequence[ChangeRecord], catalog: Catalog) -> dict[str, Any]:
    return {
        "number_of_changes": len(changes),
        "updated_preferences_details_json": json.dumps([c.to_dict() for c in changes], separators=(",", ":")),
        "topic_names": _topic_names(changes, catalog),
    }


def build_audit_event(
    changes: Sequence[ChangeRecord],
    catalog: Catalog,
    name: str = AUDIT_EVENT_NAME,
) -> tuple[str, dict[str, Any]] | None:
    """(name, properties) for the change set, or None when nothing changed."""
    if not changes:
        return None
    return (name or AUDIT_EVENT_NAME), audit_properties(changes, catalog)
