# PrefSync test scripts
from __future__ import annotations

from conftest import FakeAuthority, FakeEngagement
from providers.sync._mod_BRAZE import BrazeUser
from ps_platform.sync import SyncOrchestrator
from services.sessions import SessionRegistry, default_factory


def _registry(catalog, table, ttl: int = 60) -> tuple[SessionRegistry, list[str]]:
    made: list[str] = []

    def factory(token: str, external_id: str) -> SyncOrchestrator:
        made.append(token)
        return SyncOrchestrator(token, FakeAuthority(), FakeEngagement(), catalog, table)

    return SessionRegistry(factory, ttl_sec=ttl), made


def test_one_orchestrator_per_token(catalog, table) -> None:
    reg, made = _registry(catalog, table)
    a = reg.get("tok-a", "u1")
    assert reg.get("tok-a", "u1") is a
    assert reg.get("tok-b", "u2") is not a
    assert made == ["tok-a", "tok-b"]
    assert len(reg) == 2
    assert reg.drop("tok-a") and reg.peek("tok-a") is None


def test_idle_sessions_are_evicted(catalog, table) -> None:
    reg, _ = _registry(catalog, table, ttl=10)
    orch = reg.get("tok")
    assert reg.evict_expired(now=orch.touched_at + 5) == 0
    assert reg.evict_expired(now=orch.touched_at + 11) == 1
    assert len(reg) == 0


def test_sessions_are_kept_while_saving(catalog, table) -> None:
    reg, _ = _registry(catalog, table, ttl=10)
    orch = reg.get("tok")
    orch._busy = True
    assert reg.evict_expired(now=orch.touched_at + 100) == 0


def test_default_factory_wires_real_clients(cfg, catalog, table) -> None:
    cfg["braze"]["audit_event_name"] = "Prefs Changed"
    orch = default_factory(cfg, catalog, table)("tok", "user-9")
    assert isinstance(orch.engagement, BrazeUser)
    assert orch.engagement.external_id == "user-9"
    assert orch.authority.cfg.api_base_url == "https://upmind.test"
    assert orch.audit_event_name == "Prefs Changed"


def test_later_user_id_rebinds_the_braze_user(cfg, catalog, table) -> None:
    made: list[str] = []
    make = default_factory(cfg, catalog, table)

    def factory(token: str, external_id: str) -> SyncOrchestrator:
        made.append(external_id)
        return make(token, external_id)

    reg = SessionRegistry(factory)
    orch = reg.get("tok", "")
    assert orch.engagement.external_id == ""

    assert reg.get("tok", "user-42") is orch
    assert orch.engagement.external_id == "user-42"

    reg.get("tok", "")
    assert orch.engagement.external_id == "user-42"
    assert made == [""]
