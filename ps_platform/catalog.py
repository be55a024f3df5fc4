# /ps_platform/catalog.py
# PrefSync - notification topics and channels
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .errors import ConfigurationDefect

__all__ = ["Topic", "Channel", "Catalog", "PreferenceKey", "load_catalog"]

# (topic_id, channel_id)
PreferenceKey = tuple[str, str]


@dataclass(frozen=True)
class Topic:
    id: str
    name: str
    description: str = ""
    can_opt_out: bool = True


@dataclass(frozen=True)
class Channel:
    id: str
    name: str


class Catalog:
    """Fixed topic/channel sets. Iteration order is declaration order."""

    def __init__(self, topics: Sequence[Topic], channels: Sequence[Channel]) -> None:
        self.topics: tuple[Topic, ...] = tuple(topics)
        self.channels: tuple[Channel, ...] = tuple(channels)
        self._topics = {t.id: t for t in self.topics}
        self._channels = {c.id: c for c in self.channels}

    def keys(self) -> Iterator[PreferenceKey]:
        # canonical order: topic-major, then channel
        for t in self.topics:
            for c in self.channels:
                yield (t.id, c.id)

    def key_set(self) -> frozenset[PreferenceKey]:
        return frozenset(self.keys())

    def topic(self, topic_id: str) -> Topic | None:
        return self._topics.get(topic_id)

    def channel(self, channel_id: str) -> Channel | None:
        return self._channels.get(channel_id)

    def has_key(self, key: PreferenceKey) -> bool:
        return key[0] in self._topics and key[1] in self._channels

    def is_mandatory(self, topic_id: str) -> bool:
        t = self._topics.get(topic_id)
        return bool(t and not t.can_opt_out)

    def label(self, key: PreferenceKey) -> str:
        t = self._topics.get(key[0])
        c = self._channels.get(key[1])
        return f"{t.name if t else key[0]}/{c.name if c else key[1]}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "topics": [
                {"id": t.id, "name": t.name, "description": t.description, "can_opt_out": t.can_opt_out}
                for t in self.topics
            ],
            "channels": [{"id": c.id, "name": c.name} for c in self.channels],
        }

    def __len__(self) -> int:
        return len(self.topics) * len(self.channels)

    def __repr__(self) -> str:
        return f"Catalog(topics={len(self.topics)}, channels={len(self.channels)})"


def _str(v: Any) -> str:
    return str(v if v is not None else "").strip()


def _as_bool(v: Any, default: bool) -> bool:
    if isinstance(v, bool):
        return v
    s = _str(v).lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def load_catalog(cfg: Mapping[str, Any]) -> Catalog:
    block = cfg.get("catalog") if isinstance(cfg.get("catalog"), Mapping) else cfg
    raw_topics = list((block or {}).get("topics") or [])
    raw_channels = list((block or {}).get("channels") or [])

    topics: list[Topic] = []
    for row in raw_topics:
        if not isinstance(row, Mapping) or not _str(row.get("id")):
            raise ConfigurationDefect(f"topic entry without id: {row!r}")
        topics.append(Topic(
            id=_str(row["id"]),
            name=_str(row.get("name")) or _str(row["id"]),
            description=_str(row.get("description")),
            can_opt_out=_as_bool(row.get("can_opt_out"), True),
        ))

    channels: list[Channel] = []
    for row in raw_channels:
        if not isinstance(row, Mapping) or not _str(row.get("id")):
            raise ConfigurationDefect(f"channel entry without id: {row!r}")
        channels.append(Channel(id=_str(row["id"]), name=_str(row.get("name")) or _str(row["id"])))

    if not topics or not channels:
        raise ConfigurationDefect("catalog needs at least one topic and one channel")

    for kind, ids in (("topic", [t.id for t in topics]), ("channel", [c.id for c in channels])):
        seen: set[str] = set()
        for i in ids:
            if i in seen:
                raise ConfigurationDefect(f"duplicate {kind} id {i}", kind=kind, id=i)
            seen.add(i)

    return Catalog(topics, channels)
