# PrefSync test scripts
from __future__ import annotations

import json

from ps_platform import config_base as cb


def test_defaults_without_config_file(config_base) -> None:
    cfg = cb.load_config()
    assert cfg["server"]["port"] == 8787
    assert len(cfg["catalog"]["topics"]) == 5
    assert len(cfg["mapping"]["entries"]) == 4


def test_file_overrides_and_lists_replace(config_base) -> None:
    (config_base / "config.json").write_text(json.dumps({
        "braze": {"api_key": "k"},
        "mapping": {"relevant_topics": ["only"], "entries": []},
    }), encoding="utf-8")
    cfg = cb.load_config()
    assert cfg["braze"]["api_key"] == "k"
    assert cfg["braze"]["max_retries"] == 0
    assert cfg["mapping"]["relevant_topics"] == ["only"]
    assert cfg["mapping"]["entries"] == []


def test_env_overrides(config_base, monkeypatch) -> None:
    monkeypatch.setenv("BRAZE_REST_ENDPOINT", "https://rest.example")
    monkeypatch.setenv("UPMIND_ORIGIN", "https://portal.example")
    cfg = cb.load_config()
    assert cfg["braze"]["rest_endpoint"] == "https://rest.example"
    assert cfg["upmind"]["origin"] == "https://portal.example"


def test_save_and_redact(config_base) -> None:
    cfg = cb.load_config()
    cfg["braze"]["api_key"] = "secret"
    cb.save_config(cfg)
    assert json.loads((config_base / "config.json").read_text(encoding="utf-8"))["braze"]["api_key"] == "secret"
    assert cb.redact_config(cfg)["braze"]["api_key"] != "secret"
    assert cfg["braze"]["api_key"] == "secret"
