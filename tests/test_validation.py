"""Tests for world authoring warnings."""

from world_engine.models import WorldDefinition
from world_engine.validation import validate_world


def _types(warnings):
    return [(w.type, w.entity_id) for w in warnings]


def test_clean_world_only_reports_unused_variables(world):
    warnings = validate_world(world)
    assert all(w.severity == "info" for w in warnings)
    assert sorted(w.entity_id for w in warnings) == ["gold", "hasKey", "inventory"]


def test_rule_referencing_deleted_variable(world_doc):
    world_doc["rules"][0]["effects"].append({"variableId": "mana", "operation": "set", "value": 0})
    warnings = validate_world(WorldDefinition.model_validate(world_doc))
    [warning] = [w for w in warnings if w.type == "rule-refs-deleted-var"]
    assert warning.entity_id == "death"
    assert '"mana"' in warning.message
    assert warning.severity == "warning"


def test_component_orphaned_reference(world_doc):
    world_doc["components"][0]["config"]["secondaryVariableId"] = "maxHp"
    warnings = validate_world(WorldDefinition.model_validate(world_doc))
    assert ("orphaned-var-ref", "hp-bar") in _types(warnings)


def test_entry_condition_orphaned_reference(world_doc):
    world_doc["entries"][0]["conditions"] = [{"variableId": "ghost", "operator": "eq", "value": 1}]
    warnings = validate_world(WorldDefinition.model_validate(world_doc))
    assert ("orphaned-var-ref", "dragon") in _types(warnings)


def test_entry_condition_counts_as_reference(world_doc):
    world_doc["entries"][0]["conditions"] = [{"variableId": "gold", "operator": "gt", "value": 1}]
    warnings = validate_world(WorldDefinition.model_validate(world_doc))
    assert ("unused-variable", "gold") not in _types(warnings)


def test_keywords_on_always_send(world_doc):
    world_doc["entries"][2]["keywords"] = ["law"]
    warnings = validate_world(WorldDefinition.model_validate(world_doc))
    [warning] = [w for w in warnings if w.type == "keywords-on-always-send"]
    assert warning.entity_id == "laws"
    assert warning.severity == "info"


def test_empty_content(world_doc):
    world_doc["entries"][3]["content"] = "   "
    warnings = validate_world(WorldDefinition.model_validate(world_doc))
    assert ("empty-content", "history") in _types(warnings)


def test_disabled_entries_not_flagged_for_empty_content(world_doc):
    world_doc["entries"][3].update(content="", enabled=False)
    warnings = validate_world(WorldDefinition.model_validate(world_doc))
    assert ("empty-content", "history") not in _types(warnings)


def test_invalid_regex_keyword(world_doc):
    world_doc["entries"][0]["keywords"].append("/drag(on/i")
    warnings = validate_world(WorldDefinition.model_validate(world_doc))
    assert ("invalid-regex-keyword", "dragon") in _types(warnings)
