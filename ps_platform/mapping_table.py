# /ps_platform/mapping_table.py
# PrefSync - Upmind (topic, channel) to Braze subscription group table.
# - Static, loaded once at start-up, never mutated.
# - A lookup miss means "leave Braze alone for this cell", not an error.
# - Conflicting duplicate keys are a ConfigurationDefect at load time.
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from _logging import log as _root_log

from .catalog import Catalog, PreferenceKey
from .errors import ConfigurationDefect

__all__ = ["MappingEntry", "MappingTable", "load_mapping_table"]

_log = _root_log.child("MAPPING")


@dataclass(frozen=True)
class MappingEntry:
    topic_id: str
    channel_id: str
    group_id: str

    @property
    def key(self) -> PreferenceKey:
        return (self.topic_id, self.channel_id)


class MappingTable:
    def __init__(self, entries: Iterable[MappingEntry], relevant_topics: Iterable[str]) -> None:
        groups: dict[PreferenceKey, str] = {}
        for e in entries:
            prev = groups.get(e.key)
            if prev is not None and prev != e.group_id:
                raise ConfigurationDefect(
                    f"({e.topic_id}, {e.channel_id}) maps to both {prev} and {e.group_id}",
                    topic_id=e.topic_id, channel_id=e.channel_id, groups=[prev, e.group_id],
                )
            groups[e.key] = e.group_id
        self._groups: Mapping[PreferenceKey, str] = MappingProxyType(groups)
        self._relevant: frozenset[str] = frozenset(str(t) for t in relevant_topics)

    def lookup(self, topic_id: str, channel_id: str) -> str | None:
        return self._groups.get((topic_id, channel_id))

    def is_relevant(self, topic_id: str) -> bool:
        return topic_id in self._relevant

    @property
    def relevant_topics(self) -> frozenset[str]:
        return self._relevant

    def entries(self) -> list[MappingEntry]:
        return [MappingEntry(t, c, g) for (t, c), g in self._groups.items()]

    def shared_groups(self) -> dict[str, list[PreferenceKey]]:
        by_group: dict[str, list[PreferenceKey]] = {}
        for key, gid in self._groups.items():
            by_group.setdefault(gid, []).append(key)
        return {g: keys for g, keys in by_group.items() if len(keys) > 1}

    def as_nested(self) -> dict[str, dict[str, str]]:
        out: dict[str, dict[str, str]] = {}
        for (t, c), g in self._groups.items():
            out.setdefault(t, {})[c] = g
        return out

    def __len__(self) -> int:
        return len(self._groups)


def _field(row: Mapping[str, Any], *names: str) -> str:
    for n in names:
        v = row.get(n)
        if v is not None and str(v).strip():
            return str(v).strip()
    return ""


def load_mapping_table(cfg: Mapping[str, Any], catalog: Catalog | None = None) -> MappingTable:
    block = cfg.get("mapping") if isinstance(cfg.get("mapping"), Mapping) else cfg
    rows = list((block or {}).get("entries") or [])
    relevant = [str(t).strip() for t in ((block or {}).get("relevant_topics") or []) if str(t).strip()]

    entries: list[MappingEntry] = []
    for row in rows:
        if not isinstance(row, Mapping):
            raise ConfigurationDefect(f"mapping entry is not an object: {row!r}")
        topic = _field(row, "topic", "topic_id")
        channel = _field(row, "channel", "channel_id")
        group = _field(row, "group", "group_id")
        if not (topic and channel and group):
            raise ConfigurationDefect(f"mapping entry needs topic, channel and group: {dict(row)!r}")
        entries.append(MappingEntry(topic, channel, group))

    if catalog is not None:
        for e in entries:
            if not catalog.has_key(e.key):
                raise ConfigurationDefect(
                    f"mapping entry references unknown topic/channel ({e.topic_id}, {e.channel_id})",
                    topic_id=e.topic_id, channel_id=e.channel_id,
                )
        for t in relevant:
            if catalog.topic(t) is None:
                raise ConfigurationDefect(f"relevant topic {t} is not in the catalog", topic_id=t)

    table = MappingTable(entries, relevant)

    for gid, keys in table.shared_groups().items():
        _log.warn(f"group {gid} is shared by {len(keys)} preference cells; last cell in catalog order wins",
                  extra={"group_id": gid, "keys": [list(k) for k in keys]})
    for e in table.entries():
        if not table.is_relevant(e.topic_id):
            _log.debug(f"mapping for non-relevant topic {e.topic_id} will never be synced")

    _log.debug(f"mapping table loaded: {len(table)} entries, {len(table.relevant_topics)} relevant topics")
    return table
