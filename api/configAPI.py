# /api/configAPI.py
# PrefSync - health, catalog and Braze group mapping routes
# Copyright (c) 2025-2026 PrefSync contributors
from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/api", tags=["config"])


@router.get("/health")
def api_health() -> dict[str, str]:
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds")}


@router.get("/braze-config")
def api_braze_config(request: Request) -> JSONResponse:
    table = getattr(request.app.state, "table", None)
    if table is None:
        return JSONResponse({"success": False, "error": "mapping table not loaded"}, status_code=500)
    return JSONResponse({"success": True, "subscriptionGroups": table.as_nested()})


@router.get("/notifications/catalog")
def api_catalog(request: Request) -> JSONResponse:
    catalog = request.app.state.catalog
    table = request.app.state.table
    out = catalog.to_dict()
    out["relevant_topics"] = [t.id for t in catalog.topics if table.is_relevant(t.id)]
    out["ok"] = True
    return JSONResponse(out)
