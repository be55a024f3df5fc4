# _logging.py
# Structured logger: coloured console lines plus an optional JSON-lines sink.
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations
import sys, datetime, json, os, threading
from typing import Any, Optional, TextIO, Mapping, Dict

RESET = "\033[0m"
DIM = "\033[90m"
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[33m"
BLUE = "\033[94m"

LEVELS = {"silent": 60, "error": 40, "warn": 30, "info": 20, "debug": 10}

_TRUTHY = ("1", "true", "yes", "on")


def _env_level(default: str = "info") -> str:
    v = (os.getenv("PS_LOG_LEVEL") or "").strip().lower()
    if v == "off":
        return "silent"
    return v if v in LEVELS else default


def _env_debug() -> bool:
    return (os.getenv("PS_DEBUG") or "").strip().lower() in _TRUTHY


def _use_color(stream: TextIO) -> bool:
    if os.getenv("NO_COLOR") is not None:
        return False
    try:
        return bool(stream.isatty())
    except Exception:
        return False


class Logger:
    def __init__(
        self,
        stream: Optional[TextIO] = None,
        level: str | None = None,
        use_color: bool | None = None,
        show_time: bool = True,
        time_fmt: str = "%Y-%m-%d %H:%M:%S",
        *,
        _context: Optional[Dict[str, Any]] = None,
        _shared: Optional[Dict[str, Any]] = None,
    ):
        self.stream = stream
        # level, debug flag, json sink and lock are shared with every child logger
        self._shared: Dict[str, Any] = _shared if _shared is not None else {
            "level_no": LEVELS.get(level or _env_level(), 20),
            "debug": None,
            "json": None,
            "lock": threading.Lock(),
        }
        self.use_color = _use_color(stream or sys.stdout) if use_color is None else use_color
        self.show_time = show_time
        self.time_fmt = time_fmt
        self.tag_color_map = {
            "DEBUG": YELLOW,
            "INFO": BLUE,
            "WARN": YELLOW,
            "ERROR": RED,
            "SUCCESS": GREEN,
        }
        self._context: Dict[str, Any] = dict(_context or {})

    @property
    def level_no(self) -> int:
        return int(self._shared["level_no"])

    @level_no.setter
    def level_no(self, value: int) -> None:
        self._shared["level_no"] = int(value)

    @property
    def _json_stream(self) -> Optional[TextIO]:
        return self._shared["json"]

    @property
    def _lock(self) -> threading.Lock:
        return self._shared["lock"]

    # Configuration
    def set_level(self, level: str) -> None:
        self.level_no = LEVELS.get(level, self.level_no)

    def set_debug(self, on: bool) -> None:
        self._shared["debug"] = bool(on)

    def enable_json(self, file_path: str) -> None:
        self._shared["json"] = open(file_path, "a", encoding="utf-8")

    def configure(self, cfg: Mapping[str, Any]) -> "Logger":
        """Apply the `runtime` config block; env vars still win."""
        rt = dict(cfg.get("runtime") or {})
        self.set_level(_env_level(str(rt.get("log_level") or "info").lower()))
        self.set_debug(bool(rt.get("debug")) or _env_debug())
        path = str(rt.get("log_json") or "").strip()
        if path and self._json_stream is None:
            self.enable_json(path)
        return self

    # Context
    def get_context(self) -> Dict[str, Any]:
        return dict(self._context)

    def bind(self, **ctx: Any) -> "Logger":
        new_ctx = dict(self._context); new_ctx.update(ctx)
        return Logger(
            stream=self.stream,
            use_color=self.use_color,
            show_time=self.show_time,
            time_fmt=self.time_fmt,
            _context=new_ctx,
            _shared=self._shared,
        )

    def child(self, name: str) -> "Logger":
        return self.bind(module=name)

    @property
    def level_name(self) -> str:
        for k, v in LEVELS.items():
            if v == self.level_no:
                return k
        return "info"

    @property
    def debug_enabled(self) -> bool:
        return bool(self._shared["debug"]) or _env_debug()

    # Formatting
    def _fmt_text(self, display_level: str, msg: str) -> str:
        mod = str(self._context.get("module") or "").strip()
        col = self.tag_color_map.get(display_level) if self.use_color else None
        lvl_disp = f"{col}{display_level}{RESET}" if col else display_level
        head = f"[{mod}]" if mod else ""
        line = f"{head} {lvl_disp} {msg}".strip()

        if self.show_time:
            ts = datetime.datetime.now().strftime(self.time_fmt)
            prefix = f"{DIM}[{ts}]{RESET}" if self.use_color else f"[{ts}]"
            return f"{prefix} {line}"
        return line

    def _write_sinks(self, display_level: str, text: str, *, msg: str, extra: Optional[Mapping[str, Any]]) -> None:
        with self._lock:
            out = self.stream or sys.stdout
            out.write(text + "\n")
            out.flush()
            if self._json_stream:
                payload = {
                    "ts": datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="milliseconds"),
                    "level": display_level,
                    "msg": msg,
                    "ctx": {k: v for k, v in self._context.items() if k != "module"},
                    "module": self._context.get("module"),
                }
                if extra:
                    payload["extra"] = dict(extra)
                self._json_stream.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
                self._json_stream.flush()

    def _emit(self, severity: str, display_level: str, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        if severity == "debug":
            if not self.debug_enabled:
                return
        elif self.level_no > LEVELS.get(severity, LEVELS["info"]):
            return
        msg = " ".join(str(p) for p in parts)
        self._write_sinks(display_level, self._fmt_text(display_level, msg), msg=msg, extra=extra)

    # Public API
    def debug(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("debug", "DEBUG", *parts, extra=extra)

    def info(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", "INFO", *parts, extra=extra)

    def warn(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("warn", "WARN", *parts, extra=extra)

    def warning(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self.warn(*parts, extra=extra)

    def error(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("error", "ERROR", *parts, extra=extra)

    def success(self, *parts: Any, extra: Optional[Mapping[str, Any]] = None) -> None:
        self._emit("info", "SUCCESS", *parts, extra=extra)


# default instance
log = Logger()

__all__ = ["Logger", "log", "LEVELS", "RESET", "DIM", "RED", "GREEN", "YELLOW", "BLUE"]
