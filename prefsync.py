# prefsync.py
# PrefSync - notification preference sync between Upmind and Braze
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

import time
from typing import Any, Mapping

import uvicorn
from fastapi import FastAPI, Request

from _logging import log
from api import register as register_api
from ps_platform.catalog import load_catalog
from ps_platform.config_base import CONFIG_BASE, load_config, redact_config
from ps_platform.mapping_table import load_mapping_table
from services.sessions import SessionRegistry, default_factory

__VERSION__ = "1.0.0"

_log = log.child("PREFSYNC")


def create_app(cfg: Mapping[str, Any] | None = None, registry: SessionRegistry | None = None) -> FastAPI:
    cfg = dict(cfg) if cfg is not None else load_config()
    log.configure(cfg)

    catalog = load_catalog(cfg)
    table = load_mapping_table(cfg, catalog)
    if registry is None:
        ttl = int((cfg.get("runtime") or {}).get("session_ttl_sec") or 0)
        registry = SessionRegistry(default_factory(cfg, catalog, table), ttl_sec=ttl)

    app = FastAPI(title="PrefSync", version=__VERSION__)
    app.state.cfg = cfg
    app.state.catalog = catalog
    app.state.table = table
    app.state.sessions = registry

    @app.middleware("http")
    async def conditional_access_logger(request: Request, call_next):
        t0 = time.time()
        response = None
        err: Exception | None = None
        status = 0
        try:
            response = await call_next(request)
            status = getattr(response, "status_code", 0) or 0
        except Exception as e:
            err = e
            status = 500
        finally:
            if err is not None or status >= 500 or (log.debug_enabled and status >= 400):
                dt_ms = int((time.time() - t0) * 1000)
                _log.warn(f'"{request.method} {request.url.path}" {status} ({dt_ms} ms)')
        if err is not None:
            raise err
        return response

    register_api(app)
    _log.debug(f"app ready: {len(catalog)} preference cells, {len(table)} mapped to Braze groups")
    return app


# Entry point
def main(host: str | None = None, port: int | None = None) -> None:
    cfg = load_config()
    srv = dict(cfg.get("server") or {})
    host = host or str(srv.get("host") or "0.0.0.0")
    port = int(port or srv.get("port") or 8787)
    debug = bool((cfg.get("runtime") or {}).get("debug"))

    app = create_app(cfg)
    print("\nPrefSync running:")
    print(f"  Local:   http://127.0.0.1:{port}")
    print(f"  Bind:    {host}:{port}")
    print(f"  Config:  {CONFIG_BASE() / 'config.json'} (JSON)")
    _log.debug("effective config", extra=redact_config(cfg))

    uvicorn.run(app, host=host, port=port, log_level=("debug" if debug else "warning"))


if __name__ == "__main__":
    main()
