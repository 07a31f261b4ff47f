"""Authoring checks for world definitions.

`validate_world` never rejects a world (pydantic already did the hard
checks at import). It reports things an author probably didn't mean:
references to deleted variables, keywords that can never matter, empty
entries, variables nothing uses, and regex keywords that don't compile.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from world_engine.lorebook.matcher import REGEX_LITERAL_RE, compile_keyword_regex
from world_engine.models import StatBarComponent, WorldDefinition

WarningType = Literal[
    "orphaned-var-ref",
    "keywords-on-always-send",
    "empty-content",
    "rule-refs-deleted-var",
    "unused-variable",
    "invalid-regex-keyword",
]


@dataclass
class WorldWarning:
    type: WarningType
    severity: Literal["warning", "info"]
    message: str
    entity_id: str | None = None
    entity_name: str | None = None


def validate_world(world: WorldDefinition) -> list[WorldWarning]:
    warnings: list[WorldWarning] = []
    variable_ids = {v.id for v in world.variables}
    referenced: set[str] = set()

    for rule in world.rules:
        label = rule.name or rule.id
        refs = [("condition", c.variable_id) for c in rule.conditions]
        refs += [("effect", e.variable_id) for e in rule.effects]
        for kind, vid in refs:
            if vid in variable_ids:
                referenced.add(vid)
                continue
            warnings.append(WorldWarning(
                "rule-refs-deleted-var", "warning",
                f'Rule "{label}" {kind} references non-existent variable "{vid}"',
                rule.id, rule.name,
            ))

    for component in world.components:
        vids = [component.config.variable_id]
        if isinstance(component, StatBarComponent) and component.config.secondary_variable_id:
            vids.append(component.config.secondary_variable_id)
        for vid in vids:
            if vid in variable_ids:
                referenced.add(vid)
            else:
                warnings.append(WorldWarning(
                    "orphaned-var-ref", "warning",
                    f'Component "{component.name}" references non-existent variable "{vid}"',
                    component.id, component.name,
                ))

    for entry in world.entries:
        label = entry.name or entry.id
        if entry.enabled and entry.always_send and entry.keywords:
            warnings.append(WorldWarning(
                "keywords-on-always-send", "info",
                f'Entry "{label}" has keywords but alwaysSend is enabled, so keywords are ignored',
                entry.id, entry.name,
            ))
        if entry.enabled and not entry.content.strip():
            warnings.append(WorldWarning(
                "empty-content", "warning",
                f'Entry "{label}" is enabled but has empty content',
                entry.id, entry.name,
            ))
        for condition in entry.conditions:
            if condition.variable_id in variable_ids:
                referenced.add(condition.variable_id)
            else:
                warnings.append(WorldWarning(
                    "orphaned-var-ref", "warning",
                    f'Entry "{label}" condition references non-existent variable "{condition.variable_id}"',
                    entry.id, entry.name,
                ))
        for keyword in entry.keywords + entry.secondary_keywords:
            if REGEX_LITERAL_RE.fullmatch(keyword) and compile_keyword_regex(keyword) is None:
                warnings.append(WorldWarning(
                    "invalid-regex-keyword", "warning",
                    f'Entry "{label}" keyword {keyword} is not a valid regular expression',
                    entry.id, entry.name,
                ))

    for variable in world.variables:
        if variable.id not in referenced:
            warnings.append(WorldWarning(
                "unused-variable", "info",
                f'Variable "{variable.name}" is not referenced by any rule, component, or entry condition',
                variable.id, variable.name,
            ))

    return warnings
