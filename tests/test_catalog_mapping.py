# PrefSync test scripts
from __future__ import annotations

import pytest

from ps_platform.catalog import load_catalog
from ps_platform.errors import ConfigurationDefect
from ps_platform.mapping_table import MappingEntry, MappingTable, load_mapping_table


def test_default_catalog_order_is_topic_major(catalog) -> None:
    keys = list(catalog.keys())
    assert len(keys) == len(catalog) == 10
    assert keys[0] == (catalog.topics[0].id, catalog.channels[0].id)
    assert keys[1] == (catalog.topics[0].id, catalog.channels[1].id)
    assert keys[2] == (catalog.topics[1].id, catalog.channels[0].id)


def test_system_topic_is_mandatory(catalog, ids) -> None:
    assert catalog.is_mandatory(ids.topic["System"])
    assert not catalog.is_mandatory(ids.topic["Marketing"])
    assert catalog.label(ids.key("Marketing", "Email")) == "Marketing/Email"


def test_catalog_rejects_duplicates_and_empty_sets() -> None:
    with pytest.raises(ConfigurationDefect):
        load_catalog({"catalog": {"topics": [{"id": "t"}, {"id": "t"}], "channels": [{"id": "c"}]}})
    with pytest.raises(ConfigurationDefect):
        load_catalog({"catalog": {"topics": [], "channels": [{"id": "c"}]}})
    with pytest.raises(ConfigurationDefect):
        load_catalog({"catalog": {"topics": [{"name": "no id"}], "channels": [{"id": "c"}]}})


def test_lookup_hit_and_miss(table, ids) -> None:
    assert table.lookup(*ids.key("Marketing", "Email")) == "d220614c-43a5-45de-8672-e69ae5e622f5"
    assert table.lookup(*ids.key("Billing", "Email")) is None
    assert table.lookup("nope", "nope") is None


def test_relevance(table, ids) -> None:
    assert table.is_relevant(ids.topic["Marketing"])
    assert table.is_relevant(ids.topic["Service Updates"])
    assert not table.is_relevant(ids.topic["Billing"])


def test_conflicting_duplicate_is_configuration_defect() -> None:
    with pytest.raises(ConfigurationDefect):
        MappingTable([MappingEntry("t", "c", "g1"), MappingEntry("t", "c", "g2")], ["t"])


def test_exact_duplicates_collapse() -> None:
    table = MappingTable([MappingEntry("t", "c", "g1"), MappingEntry("t", "c", "g1")], ["t"])
    assert len(table) == 1


def test_loader_validates_against_catalog(catalog) -> None:
    bad_entry = {"mapping": {"relevant_topics": [], "entries": [{"topic": "x", "channel": "y", "group": "g"}]}}
    with pytest.raises(ConfigurationDefect):
        load_mapping_table(bad_entry, catalog)

    missing_field = {"mapping": {"relevant_topics": [], "entries": [{"topic": "x", "channel": "y"}]}}
    with pytest.raises(ConfigurationDefect):
        load_mapping_table(missing_field)

    bad_topic = {"mapping": {"relevant_topics": ["ghost"], "entries": []}}
    with pytest.raises(ConfigurationDefect):
        load_mapping_table(bad_topic, catalog)


def test_shared_groups_and_nested_view() -> None:
    table = MappingTable(
        [MappingEntry("a", "e", "G"), MappingEntry("b", "e", "G"), MappingEntry("a", "i", "H")],
        ["a", "b"],
    )
    assert table.shared_groups() == {"G": [("a", "e"), ("b", "e")]}
    assert table.as_nested() == {"a": {"e": "G", "i": "H"}, "b": {"e": "G"}}
