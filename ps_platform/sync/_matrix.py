# /ps_platform/sync/_matrix.py
# PrefSync - total opt-in matrix over topics x channels
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from _logging import log as _root_log

from ..catalog import Catalog, PreferenceKey
from ..errors import IncompleteMatrix

__all__ = ["PreferenceMatrix"]

_log = _root_log.child("MATRIX")


class PreferenceMatrix(Mapping[PreferenceKey, bool]):
    """
    Immutable map of (topic_id, channel_id) -> opted in.

    Always total over the catalog it was built for; mandatory topics are
    always True.
    """

    __slots__ = ("catalog", "_values")

    def __init__(self, catalog: Catalog, values: Mapping[PreferenceKey, bool], *, _trusted: bool = False) -> None:
        self.catalog = catalog
        if _trusted:
            self._values: dict[PreferenceKey, bool] = dict(values)
            return

        expected = catalog.key_set()
        given = {(str(k[0]), str(k[1])) for k in values.keys()}
        missing = expected - given
        unknown = given - expected
        if missing or unknown:
            raise IncompleteMatrix(
                f"matrix has {len(missing)} missing and {len(unknown)} unknown keys",
                missing=sorted(missing), unknown=sorted(unknown),
            )
        norm = {(str(k[0]), str(k[1])): bool(v) for k, v in values.items()}
        out: dict[PreferenceKey, bool] = {}
        for key in catalog.keys():
            if catalog.is_mandatory(key[0]):
                if not norm[key]:
                    _log.debug(f"forcing mandatory cell {catalog.label(key)} to opted-in")
                out[key] = True
            else:
                out[key] = norm[key]
        self._values = out

    # constructors
    @classmethod
    def build(cls, catalog: Catalog, values: Mapping[PreferenceKey, bool]) -> "PreferenceMatrix":
        return cls(catalog, values)

    @classmethod
    def all_opted_in(cls, catalog: Catalog) -> "PreferenceMatrix":
        return cls(catalog, {k: True for k in catalog.keys()}, _trusted=True)

    @classmethod
    def from_opt_outs(cls, catalog: Catalog, opt_outs: Iterable[PreferenceKey]) -> "PreferenceMatrix":
        values = {k: True for k in catalog.keys()}
        for raw in opt_outs:
            key = (str(raw[0]), str(raw[1]))
            if key not in values:
                _log.debug(f"ignoring opt-out for unknown cell {key}")
                continue
            if catalog.is_mandatory(key[0]):
                _log.debug(f"ignoring opt-out for mandatory cell {catalog.label(key)}")
                continue
            values[key] = False
        return cls(catalog, values, _trusted=True)

    @classmethod
    def from_rows(cls, catalog: Catalog, rows: Iterable[Mapping[str, Any]]) -> "PreferenceMatrix":
        values: dict[PreferenceKey, bool] = {}
        for row in rows:
            key = (str(row.get("topic_id") or ""), str(row.get("channel_id") or ""))
            values[key] = bool(row.get("opted_in"))
        return cls(catalog, values)

    # Mapping protocol
    def __getitem__(self, key: PreferenceKey) -> bool:
        return self._values[key]

    def __iter__(self) -> Iterator[PreferenceKey]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PreferenceMatrix):
            return self._values == other._values
        if isinstance(other, Mapping):
            return self._values == dict(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._values.items()))

    def __repr__(self) -> str:
        return f"PreferenceMatrix(opted_out={self.opt_outs()!r})"

    # helpers
    def with_value(self, key: PreferenceKey, opted_in: bool) -> "PreferenceMatrix":
        if key not in self._values:
            raise IncompleteMatrix(f"unknown preference cell {key}", key=list(key))
        values = dict(self._values)
        values[key] = True if self.catalog.is_mandatory(key[0]) else bool(opted_in)
        return PreferenceMatrix(self.catalog, values, _trusted=True)

    def opt_outs(self) -> list[PreferenceKey]:
        return [k for k in self.catalog.keys() if not self._values[k]]

    def same_keys(self, other: "PreferenceMatrix") -> bool:
        return self._values.keys() == other._values.keys()

    def to_rows(self) -> list[dict[str, Any]]:
        return [
            {"topic_id": k[0], "channel_id": k[1], "opted_in": self._values[k]}
            for k in self.catalog.keys()
        ]
