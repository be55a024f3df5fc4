# /ps_platform/sync/_snapshots.py
# PrefSync - last confirmed preference state for one user session
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

import threading
import time

from ..errors import NotLoaded
from ._matrix import PreferenceMatrix

__all__ = ["SnapshotStore"]


class SnapshotStore:
    """In-memory only. Last write wins; one save cycle per session keeps it simple."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._snap: PreferenceMatrix | None = None
        self._loaded_at: float | None = None

    def load(self, matrix: PreferenceMatrix) -> None:
        if not isinstance(matrix, PreferenceMatrix):
            raise TypeError(f"expected PreferenceMatrix, got {type(matrix).__name__}")
        with self._lock:
            self._snap = matrix
            self._loaded_at = time.time()

    def current(self) -> PreferenceMatrix:
        with self._lock:
            snap = self._snap
        if snap is None:
            raise NotLoaded("snapshot accessed before the first fetch")
        return snap

    @property
    def loaded(self) -> bool:
        return self._snap is not None

    @property
    def loaded_at(self) -> float | None:
        return self._loaded_at
