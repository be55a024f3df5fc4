from __future__ import annotations

from fastapi import FastAPI

from .configAPI import router as config_router
from .preferencesAPI import router as preferences_router

__all__ = ["config_router", "preferences_router", "register"]


def register(app: FastAPI) -> None:
    app.include_router(config_router)
    app.include_router(preferences_router)
