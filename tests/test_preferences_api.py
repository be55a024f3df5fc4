# PrefSync test scripts
from __future__ import annotations

import json
from typing import Any

import pytest
import responses
from fastapi.testclient import TestClient

from conftest import FakeAuthority, FakeEngagement
from prefsync import create_app
from ps_platform.sync import SyncOrchestrator
from services.sessions import SessionRegistry

AUTH = {"Authorization": "Bearer tok", "X-User-Id": "user-1"}


@pytest.fixture()
def fakes() -> dict[str, Any]:
    return {"authority": FakeAuthority(), "engagement": FakeEngagement(), "orch": []}


@pytest.fixture()
def client(cfg, fakes) -> TestClient:
    holder: dict[str, Any] = {}

    def factory(token: str, external_id: str) -> SyncOrchestrator:
        app = holder["app"]
        orch = SyncOrchestrator(
            user_token=token,
            authority=fakes["authority"],
            engagement=fakes["engagement"],
            catalog=app.state.catalog,
            table=app.state.table,
        )
        fakes["orch"].append(orch)
        return orch

    app = create_app(cfg, registry=SessionRegistry(factory, ttl_sec=60))
    holder["app"] = app
    return TestClient(app)


def _rows(client: TestClient) -> list[dict[str, Any]]:
    r = client.get("/api/notifications/preferences", headers=AUTH)
    assert r.status_code == 200
    return r.json()["preferences"]


def _flip(rows: list[dict[str, Any]], topic_id: str, channel_id: str, value: bool) -> list[dict[str, Any]]:
    out = [dict(r) for r in rows]
    for r in out:
        if r["topic_id"] == topic_id and r["channel_id"] == channel_id:
            r["opted_in"] = value
    return out


def test_health_and_braze_config(client, ids) -> None:
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "OK"

    r = client.get("/api/braze-config")
    body = r.json()
    assert body["success"] is True
    assert body["subscriptionGroups"][ids.topic["Marketing"]][ids.channel["Email"]] == ids.group("Marketing", "Email")


def test_catalog_route(client, ids) -> None:
    body = client.get("/api/notifications/catalog").json()
    assert [t["name"] for t in body["topics"]][0] == "System"
    assert body["topics"][0]["can_opt_out"] is False
    assert set(body["relevant_topics"]) == {ids.topic["Marketing"], ids.topic["Service Updates"]}


def test_missing_token_is_401(client) -> None:
    r = client.get("/api/notifications/preferences")
    assert r.status_code == 401
    assert r.json()["ok"] is False


def test_get_then_save(client, fakes, ids) -> None:
    rows = _flip(_rows(client), *ids.key("Marketing", "Email"), False)

    r = client.put("/api/notifications/preferences", headers=AUTH, json={"preferences": rows})

    assert r.status_code == 200
    body = r.json()
    assert body["outcome"] == "reconciled"
    assert body["changes"][0]["new_state_opted_in"] is False
    assert fakes["authority"].writes == [[ids.key("Marketing", "Email")]]
    assert fakes["engagement"].group_calls[0][ids.group("Marketing", "Email")] == "unsubscribed"
    assert len(fakes["orch"]) == 1


def test_partial_success_carries_warning(client, fakes, ids) -> None:
    fakes["engagement"].fail_groups = True
    rows = _flip(_rows(client), *ids.key("Service Updates", "Email"), False)

    r = client.put("/api/notifications/preferences", headers=AUTH, json={"preferences": rows})

    assert r.status_code == 200
    body = r.json()
    assert body["outcome"] == "partial_success"
    assert "warning" in body

    st = client.get("/api/notifications/preferences/status", headers=AUTH).json()
    assert st["state"] == "failed"
    assert st["pending_reconciliation"] == 1


def test_authority_failure_is_502_and_revert_restores(client, fakes, ids) -> None:
    fakes["authority"].fail_write = True
    original = _rows(client)
    rows = _flip(original, *ids.key("Billing", "Email"), False)

    r = client.put("/api/notifications/preferences", headers=AUTH, json={"preferences": rows})
    assert r.status_code == 502
    assert r.json()["outcome"] == "failed"

    r = client.post("/api/notifications/preferences/revert", headers=AUTH)
    assert r.json()["preferences"] == original


def test_incomplete_matrix_is_422(client) -> None:
    _rows(client)
    r = client.put("/api/notifications/preferences", headers=AUTH,
                   json={"preferences": [{"topic_id": "x", "channel_id": "y", "opted_in": True}]})
    assert r.status_code == 422
    assert r.json()["code"] == "IncompleteMatrix"


def test_save_before_load_is_409(client, catalog) -> None:
    rows = [{"topic_id": t, "channel_id": c, "opted_in": True} for t, c in catalog.keys()]
    r = client.put("/api/notifications/preferences", headers=AUTH, json={"preferences": rows})
    assert r.status_code == 409
    assert r.json()["code"] == "NotLoaded"


def test_refresh_refetches(client, fakes, ids) -> None:
    _rows(client)
    fakes["authority"].opt_outs = [ids.key("Support", "Email")]
    body = client.post("/api/notifications/preferences/refresh", headers=AUTH).json()
    off = [(r["topic_id"], r["channel_id"]) for r in body["preferences"] if not r["opted_in"]]
    assert off == [ids.key("Support", "Email")]


def test_real_clients_end_to_end(cfg, ids) -> None:
    client = TestClient(create_app(cfg))
    url = "https://upmind.test/api/notifications/opt-outs"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, url, json={"data": []}, status=200)
        rsps.add(responses.PUT, url, json={}, status=200)
        rsps.add(responses.POST, "https://braze.test/v2/subscription/status/set",
                 json={"message": "success"}, status=201)
        rsps.add(responses.POST, "https://braze.test/users/track", json={"message": "success"}, status=201)

        rows = _flip(_rows(client), *ids.key("Marketing", "In-App"), False)
        r = client.put("/api/notifications/preferences", headers=AUTH, json={"preferences": rows})

        assert r.status_code == 200
        assert r.json()["outcome"] == "reconciled"
        sub = json.loads(rsps.calls[2].request.body)["subscription_groups"]
        assert len(sub) == 4
        assert {
            "subscription_group_id": ids.group("Marketing", "In-App"),
            "subscription_state": "unsubscribed",
            "external_ids": ["user-1"],
        } in sub


def test_status_does_not_open_a_session(client, fakes) -> None:
    r = client.get("/api/notifications/preferences/status", headers=AUTH)
    assert r.status_code == 200
    assert r.json()["state"] == "idle"
    assert fakes["orch"] == []


def test_rejected_token_drops_the_session(cfg) -> None:
    app = create_app(cfg)
    client = TestClient(app)
    url = "https://upmind.test/api/notifications/opt-outs"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, url, json={"message": "Unauthenticated."}, status=401)
        r = client.get("/api/notifications/preferences", headers=AUTH)

    assert r.status_code == 401
    assert r.json()["code"] == "AuthorityReadFailed"
    assert app.state.sessions.peek("tok") is None


def test_user_id_sent_after_the_first_request_reaches_braze(cfg, ids) -> None:
    client = TestClient(create_app(cfg))
    url = "https://upmind.test/api/notifications/opt-outs"
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, url, json={"data": []}, status=200)
        rsps.add(responses.PUT, url, json={}, status=200)
        rsps.add(responses.POST, "https://braze.test/v2/subscription/status/set",
                 json={"message": "success"}, status=201)
        rsps.add(responses.POST, "https://braze.test/users/track", json={"message": "success"}, status=201)

        r = client.get("/api/notifications/preferences", headers={"Authorization": "Bearer tok"})
        rows = _flip(r.json()["preferences"], *ids.key("Marketing", "Email"), False)
        r = client.put("/api/notifications/preferences", headers=AUTH, json={"preferences": rows})

        assert r.json()["outcome"] == "reconciled"
        sub = json.loads(rsps.calls[2].request.body)["subscription_groups"]
        assert {tuple(g["external_ids"]) for g in sub} == {("user-1",)}
