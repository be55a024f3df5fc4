# /ps_platform/config_base.py
# PrefSync - configuration defaults, loading and persistence
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

import copy
import json
import os
import secrets
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

# ------------------------------------------------------------
# Base dir resolution
# ------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """
    Determine the base directory for config files.

    Priority:
      1) $CONFIG_BASE if set
      2) /config (when running in container that mounts /config)
      3) Project root (one level up from this file)
    """
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        return Path("/config")

    return Path(__file__).resolve().parents[1]


# Default config structure
DEFAULT_CFG: Dict[str, Any] = {
    # --- Preference Authority (Upmind) --------------------------------------
    "upmind": {
        "api_base_url": "https://api.upmind.io",        # Upmind API root; opt-outs live under /api/notifications/opt-outs
        "origin": "",                                   # Origin header Upmind expects (must match an allowed domain)
        "referer": "",                                  # Referer header Upmind expects
        "timeout": 10.0,                                # HTTP timeout (seconds)
        "max_retries": 2,                               # Retry budget for 429/5xx (opt-out writes are full replace, safe to repeat)
    },

    # --- Engagement Platform (Braze) ----------------------------------------
    "braze": {
        "rest_endpoint": "",                            # e.g. https://rest.iad-01.braze.com
        "api_key": "",                                  # REST API key with subscription.status.set + users.track
        "timeout": 10.0,                                # HTTP timeout (seconds)
        "max_retries": 0,                               # Subscription writes are never retried inline
        "audit_event_name": "Notification Preference Updated",
    },

    # --- Topics x Channels (fixed, mirrors Upmind's notification setup) ------
    "catalog": {
        "channels": [
            {"id": "3d6d5308-7682-51d4-87c1-47e390921e61", "name": "Email"},
            {"id": "d15196e0-2e51-36d4-29b0-429807875d30", "name": "In-App"},
        ],
        "topics": [
            {"id": "3d6d5308-7682-51d4-87c1-47e390921e61", "name": "System",
             "description": "Essential for account operation and security.", "can_opt_out": False},
            {"id": "26e2e071-d931-d5e4-68a6-460287583960", "name": "Billing",
             "description": "Invoices, payments, and billing-related events.", "can_opt_out": True},
            {"id": "d15196e0-2e51-36d4-29b0-429807875d30", "name": "Marketing",
             "description": "Seasonal offers, new products, and promotions.", "can_opt_out": True},
            {"id": "e57052d1-37e0-8d24-13f5-495163789e68", "name": "Support",
             "description": "Updates on support tickets and responses.", "can_opt_out": True},
            {"id": "31261e50-9897-3d24-79ce-45e610832d75", "name": "Service Updates",
             "description": "Changes to service, new features, maintenance.", "can_opt_out": True},
        ],
    },

    # --- Upmind (topic, channel) -> Braze subscription group ----------------
    "mapping": {
        "relevant_topics": [                            # Only these topics ever touch Braze
            "d15196e0-2e51-36d4-29b0-429807875d30",     # Marketing
            "31261e50-9897-3d24-79ce-45e610832d75",     # Service Updates
        ],
        "entries": [
            {"topic": "d15196e0-2e51-36d4-29b0-429807875d30", "channel": "3d6d5308-7682-51d4-87c1-47e390921e61",
             "group": "d220614c-43a5-45de-8672-e69ae5e622f5"},   # Marketing / Email
            {"topic": "d15196e0-2e51-36d4-29b0-429807875d30", "channel": "d15196e0-2e51-36d4-29b0-429807875d30",
             "group": "a33e57e6-b321-4c95-97ac-e56aa59277c8"},   # Marketing / In-App
            {"topic": "31261e50-9897-3d24-79ce-45e610832d75", "channel": "3d6d5308-7682-51d4-87c1-47e390921e61",
             "group": "7e206bbe-0ef4-4430-897d-4bb324006a0e"},   # Service Updates / Email
            {"topic": "31261e50-9897-3d24-79ce-45e610832d75", "channel": "d15196e0-2e51-36d4-29b0-429807875d30",
             "group": "13dab92d-d33a-4a84-ba20-403f357a4bf2"},   # Service Updates / In-App
        ],
    },

    # --- Runtime -------------------------------------------------------------
    "runtime": {
        "debug": False,                                 # Extra verbose logging (debug level)
        "log_level": "info",                            # silent | error | warn | info | debug
        "log_json": "",                                 # Optional path for a JSON-lines log sink
        "session_ttl_sec": 1800,                        # Drop idle per-user sessions after 30 min
    },

    # --- Web server ----------------------------------------------------------
    "server": {
        "host": "0.0.0.0",
        "port": 8787,
    },
}

# (section, key) pairs that never leave the process in clear text
SECRET_PATHS: Tuple[Tuple[str, str], ...] = (
    ("braze", "api_key"),
)

# env var -> (section, key)
ENV_OVERRIDES: Dict[str, Tuple[str, str]] = {
    "UPMIND_API_BASE_URL": ("upmind", "api_base_url"),
    "UPMIND_ORIGIN": ("upmind", "origin"),
    "UPMIND_REFERER": ("upmind", "referer"),
    "BRAZE_REST_ENDPOINT": ("braze", "rest_endpoint"),
    "BRAZE_API_KEY": ("braze", "api_key"),
}


# ------------------------------------------------------------
# Helpers: paths, IO, merging
# ------------------------------------------------------------
def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"

def config_path() -> Path:
    return _cfg_file()


def _read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        return json.load(f)


def _write_json_atomic(p: Path, data: Dict[str, Any]) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{threading.get_ident()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)

    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp.replace(p)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)  # type: ignore[assignment]
        else:
            out[k] = v
    return out


def _apply_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    for env_name, (section, key) in ENV_OVERRIDES.items():
        val = os.getenv(env_name)
        if val is None or not val.strip():
            continue
        block = cfg.get(section)
        if not isinstance(block, dict):
            block = {}
            cfg[section] = block
        block[key] = val.strip()
    return cfg


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        return [value]
    if isinstance(value, Iterable):
        return list(value)
    return []


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config() -> Dict[str, Any]:
    """
    Read config.json over the defaults, then apply environment overrides.

    Lists (catalog topics, mapping entries) replace the defaults wholesale;
    they are never merged item by item.
    """
    p = _cfg_file()
    user_cfg: Dict[str, Any] = {}
    if p.exists():
        try:
            user_cfg = _read_json(p)
        except (OSError, ValueError):
            user_cfg = {}

    cfg = _deep_merge(DEFAULT_CFG, user_cfg if isinstance(user_cfg, dict) else {})
    for section, key in (("catalog", "topics"), ("catalog", "channels"),
                         ("mapping", "entries"), ("mapping", "relevant_topics")):
        block = cfg.get(section)
        if isinstance(block, dict):
            block[key] = _as_list(block.get(key))
    return _apply_env(cfg)


def save_config(cfg: Dict[str, Any]) -> None:
    _write_json_atomic(_cfg_file(), dict(cfg or {}))


def redact_config(cfg: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(dict(cfg or {}))
    for section, key in SECRET_PATHS:
        block = out.get(section)
        if isinstance(block, dict) and block.get(key):
            block[key] = "••••••••"
    return out
