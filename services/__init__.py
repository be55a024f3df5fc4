# services/__init__.py
from __future__ import annotations

from .sessions import SessionRegistry, default_factory

__all__ = ["SessionRegistry", "default_factory"]
