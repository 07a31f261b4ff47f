"""Rules engine — conditions, effects, and the per-turn rule sweep.

Conditions are pure predicates over a variable mapping; effects are pure
transformers producing a new value. Neither ever raises on bad data: a
condition that cannot be evaluated is false, and an effect that cannot be
applied is skipped with a diagnostic string.

`RulesEngine.evaluate` runs one sweep. Rules are ordered by priority
(highest first, declaration order for ties) and each is tested against
the state as left by the rules before it. A rule whose effects enable
another already-visited rule does not re-trigger it within the same turn.
"""

from __future__ import annotations

import logging
import operator
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from world_engine.models import (
    AudioEffect,
    Condition,
    ConditionLogic,
    Effect,
    GameState,
    Rule,
    Variable,
)

logger = logging.getLogger(__name__)

_COMPARISONS = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def values_equal(a: Any, b: Any) -> bool:
    """Structural equality where booleans never equal numbers."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    return a == b


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------

def evaluate_condition(variables: Mapping[str, Any], condition: Condition) -> bool:
    if condition.variable_id not in variables:
        return False
    current = variables[condition.variable_id]
    target = condition.value
    op = condition.operator

    if op == "eq":
        return values_equal(current, target)
    if op == "neq":
        return not values_equal(current, target)
    if op in _COMPARISONS:
        if not (is_number(current) and is_number(target)):
            return False
        return _COMPARISONS[op](current, target)
    if op == "contains":
        if isinstance(current, str):
            return isinstance(target, str) and target in current
        if isinstance(current, (list, tuple)):
            return any(values_equal(item, target) for item in current)
    return False


def check_conditions(
    variables: Mapping[str, Any],
    conditions: Sequence[Condition],
    logic: ConditionLogic = "all",
) -> bool:
    """Combine conditions with all/any. An empty list is vacuously true."""
    if not conditions:
        return True
    results = (evaluate_condition(variables, c) for c in conditions)
    return any(results) if logic == "any" else all(results)


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------

@dataclass
class StateChange:
    variable_id: str
    old_value: Any
    new_value: Any


@dataclass
class EffectResult:
    state: GameState
    changes: list[StateChange] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)


def compute_effect(current: Any, effect: Effect) -> tuple[Any, str | None]:
    """Return (new_value, diagnostic). On a type mismatch the value is unchanged."""
    op = effect.operation
    value = effect.value
    vid = effect.variable_id

    if op == "set":
        return value, None

    if op in ("add", "subtract", "multiply"):
        if not (is_number(current) and is_number(value)):
            return current, f"{op} on {vid!r} needs numbers, got {current!r} and {value!r}"
        if op == "add":
            return current + value, None
        if op == "subtract":
            return current - value, None
        return current * value, None

    if op == "toggle":
        if not isinstance(current, bool):
            return current, f"toggle on {vid!r} needs a boolean, got {current!r}"
        return not current, None

    if op == "append":
        if not (isinstance(current, str) and isinstance(value, str)):
            return current, f"append on {vid!r} needs strings, got {current!r} and {value!r}"
        return current + value, None

    return current, f"unknown operation {op!r} on {vid!r}"


def _bound(value: int | float, bound: float) -> int | float:
    # keep integer variables integral when the bound allows it
    if isinstance(value, int) and float(bound).is_integer():
        return int(bound)
    return bound


def clamp(value: Any, variable: Variable | None) -> Any:
    """Clamp a numeric value into the variable's [min, max] range."""
    if variable is None or not is_number(value):
        return value
    if variable.min is not None and value < variable.min:
        return _bound(value, variable.min)
    if variable.max is not None and value > variable.max:
        return _bound(value, variable.max)
    return value


def apply_effects(
    state: GameState,
    effects: Iterable[Effect],
    variables: Mapping[str, Variable] | None = None,
) -> EffectResult:
    """Apply effects in order to a copy of `state`. The input is never mutated."""
    variables = variables or {}
    values = dict(state.variables)
    changes: list[StateChange] = []
    diagnostics: list[str] = []

    for effect in effects:
        vid = effect.variable_id
        if vid not in values:
            msg = f"{effect.operation} on unknown variable {vid!r}"
            logger.debug("effect skipped: %s", msg)
            diagnostics.append(msg)
            continue

        old = values[vid]
        new, problem = compute_effect(old, effect)
        if problem is not None:
            logger.debug("effect skipped: %s", problem)
            diagnostics.append(problem)
            continue

        new = clamp(new, variables.get(vid))
        values[vid] = new
        if not values_equal(old, new):
            changes.append(StateChange(vid, old, new))

    new_state = state.model_copy(deep=True)
    new_state.variables = values
    return EffectResult(state=new_state, changes=changes, diagnostics=diagnostics)


# ---------------------------------------------------------------------------
# Rule sweep
# ---------------------------------------------------------------------------

@dataclass
class EvaluationResult:
    new_state: GameState
    fired_rule_ids: list[str] = field(default_factory=list)
    audio_effects: list[AudioEffect] = field(default_factory=list)
    changes: list[StateChange] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)


def order_rules(rules: Iterable[Rule]) -> list[Rule]:
    """Highest priority first; sorted() is stable so ties keep declaration order."""
    return sorted(rules, key=lambda r: -r.priority)


class RulesEngine:
    """Evaluates world rules against a game state.

    Args:
        variables: Variable definitions, used for min/max clamping.
    """

    def __init__(self, variables: Iterable[Variable] = ()) -> None:
        self._variables = {v.id: v for v in variables}

    def evaluate(self, state: GameState, rules: Iterable[Rule]) -> EvaluationResult:
        current = state.model_copy(deep=True)
        result = EvaluationResult(new_state=current)

        for rule in order_rules(rules):
            if not check_conditions(current.variables, rule.conditions, rule.condition_logic):
                continue
            outcome = apply_effects(current, rule.effects, self._variables)
            current = outcome.state
            result.fired_rule_ids.append(rule.id)
            result.audio_effects.extend(rule.audio_effects)
            result.changes.extend(outcome.changes)
            result.diagnostics.extend(outcome.diagnostics)
            logger.debug("rule fired id=%s changes=%d", rule.id, len(outcome.changes))

        result.new_state = current
        return result
