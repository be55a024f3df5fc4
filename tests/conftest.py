# PrefSync test scripts
from __future__ import annotations

import copy
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from ps_platform.catalog import Catalog, load_catalog  # noqa: E402
from ps_platform.config_base import DEFAULT_CFG  # noqa: E402
from ps_platform.mapping_table import MappingTable, load_mapping_table  # noqa: E402


@pytest.fixture()
def config_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
    for name in ("UPMIND_API_BASE_URL", "UPMIND_ORIGIN", "UPMIND_REFERER", "BRAZE_REST_ENDPOINT", "BRAZE_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture()
def cfg() -> dict[str, Any]:
    out = copy.deepcopy(DEFAULT_CFG)
    out["upmind"]["api_base_url"] = "https://upmind.test"
    out["upmind"]["max_retries"] = 0
    out["braze"]["rest_endpoint"] = "https://braze.test"
    out["braze"]["api_key"] = "braze-key"
    return out


@pytest.fixture()
def catalog(cfg: dict[str, Any]) -> Catalog:
    return load_catalog(cfg)


@pytest.fixture()
def table(cfg: dict[str, Any], catalog: Catalog) -> MappingTable:
    return load_mapping_table(cfg, catalog)


class Ids:
    """Default catalog ids by display name."""

    def __init__(self, catalog: Catalog, table: MappingTable):
        self.topic = {t.name: t.id for t in catalog.topics}
        self.channel = {c.name: c.id for c in catalog.channels}
        self.table = table

    def key(self, topic: str, channel: str) -> tuple[str, str]:
        return (self.topic[topic], self.channel[channel])

    def group(self, topic: str, channel: str) -> str | None:
        return self.table.lookup(*self.key(topic, channel))


@pytest.fixture()
def ids(catalog: Catalog, table: MappingTable) -> Ids:
    return Ids(catalog, table)


@dataclass
class FakeAuthority:
    opt_outs: list[tuple[str, str]] = field(default_factory=list)
    fail_read: bool = False
    fail_write: bool = False
    reads: int = 0
    writes: list[list[tuple[str, str]]] = field(default_factory=list)
    on_write: Any = None

    def fetch_opt_outs(self, user_token: str) -> Sequence[tuple[str, str]]:
        self.reads += 1
        if self.fail_read:
            raise RuntimeError("upmind unavailable")
        return list(self.opt_outs)

    def replace_opt_outs(self, user_token: str, opt_outs: Sequence[tuple[str, str]]) -> None:
        self.writes.append(list(opt_outs))
        if self.on_write is not None:
            self.on_write()
        if self.fail_write:
            raise RuntimeError("upmind rejected the write")
        self.opt_outs = list(opt_outs)


@dataclass
class FakeEngagement:
    fail_groups: bool = False
    fail_audit: bool = False
    group_calls: list[dict[str, str]] = field(default_factory=list)
    events: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def set_subscription_group_states(self, states: Mapping[str, str]) -> None:
        self.group_calls.append(dict(states))
        if self.fail_groups:
            raise RuntimeError("braze 503")

    def log_audit_event(self, name: str, properties: Mapping[str, Any]) -> None:
        if self.fail_audit:
            raise RuntimeError("braze 500")
        self.events.append((name, dict(properties)))
