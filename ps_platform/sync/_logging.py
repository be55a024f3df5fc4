# /ps_platform/sync/_logging.py
# PrefSync - progress events for one save cycle
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

import json
from typing import Any, Callable

from _logging import log as _root_log

_log = _root_log.child("SYNC")


class Emitter:
    """Forwards JSON progress lines to a callback; mirrors them to the process log."""

    def __init__(self, cb: Callable[[str], None] | None = None, *, debug: bool = False):
        self.cb = cb
        self.debug = debug

    def _send(self, line: str) -> None:
        if not self.cb:
            return
        try:
            self.cb(line)
        except Exception as e:
            # progress sinks are observers; a broken one must not fail a save
            _log.debug(f"progress callback failed: {e!r}")

    def emit(self, event: str, **data: Any) -> None:
        payload: dict[str, Any] = {"event": event}
        payload.update(data)
        _log.debug(event, extra=data or None)
        self._send(json.dumps(payload, separators=(",", ":"), default=str))

    def info(self, line: str) -> None:
        _log.info(line)
        self._send(line)

    def dbg(self, msg: str, **fields: Any) -> None:
        if not (self.debug or _log.debug_enabled):
            return
        if fields:
            self.emit("debug", msg=msg, **fields)
        else:
            self._send(f"[DEBUG] {msg}")
