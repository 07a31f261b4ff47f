"""Game state manager — session creation, effect application, migration.

All variable mutation goes through `apply` / `apply_effects`, which
delegate to the rules engine's effect primitive and never touch the input
state. Listeners registered with `on_change` receive the change records of
every application that changed something.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from world_engine.models import Effect, GameState, WorldDefinition
from world_engine.rules import EffectResult, StateChange, apply_effects

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = 2

ChangeListener = Callable[[list[StateChange]], None]

_STATE_FIELDS = {
    "worldId": "world_id",
    "world_id": "world_id",
    "variables": "variables",
    "activeCharacterId": "active_character_id",
    "active_character_id": "active_character_id",
    "turnCount": "turn_count",
    "turn_count": "turn_count",
    "metadata": "metadata",
}


class GameStateManager:
    def __init__(self, world: WorldDefinition) -> None:
        self.world = world
        self._variables = world.variable_map()
        self._listeners: list[ChangeListener] = []

    def create(self) -> GameState:
        """Fresh state seeded from variable defaults."""
        return GameState(
            world_id=self.world.id,
            variables={v.id: v.default_value for v in self.world.variables},
            active_character_id=self.world.characters[0].id if self.world.characters else None,
            turn_count=0,
            metadata={"schemaVersion": CURRENT_SCHEMA_VERSION},
        )

    # ── effects ──────────────────────────────────────────────

    def apply(self, state: GameState, effects: Iterable[Effect]) -> EffectResult:
        """Apply effects and return the full result (state, changes, diagnostics)."""
        result = apply_effects(state, effects, self._variables)
        if result.changes:
            self._notify(result.changes)
        return result

    def apply_effects(self, state: GameState, effects: Iterable[Effect]) -> GameState:
        return self.apply(state, effects).state

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self, changes: list[StateChange]) -> None:
        for listener in list(self._listeners):
            listener(changes)

    # ── lifecycle ────────────────────────────────────────────

    def advance_turn(self, state: GameState) -> GameState:
        return state.model_copy(update={"turn_count": state.turn_count + 1}, deep=True)

    def snapshot(self, state: GameState) -> GameState:
        return state.model_copy(deep=True)

    def migrate(
        self,
        raw: GameState | Mapping[str, Any],
        target_schema_version: int = CURRENT_SCHEMA_VERSION,
    ) -> GameState:
        """Bring a stored state up to the current world and schema.

        Additive only: unknown top-level fields move into metadata, missing
        variables are filled from current defaults, and nothing present is
        dropped or overwritten. Running it twice gives the same result.
        """
        data = raw.model_dump(by_alias=True) if isinstance(raw, GameState) else dict(raw)

        fields: dict[str, Any] = {}
        extras: dict[str, Any] = {}
        for key, value in data.items():
            if key in _STATE_FIELDS:
                fields.setdefault(_STATE_FIELDS[key], value)
            else:
                extras[key] = value

        metadata = dict(fields.get("metadata") or {})
        for key, value in extras.items():
            metadata.setdefault(key, value)

        variables = dict(fields.get("variables") or {})
        for var in self.world.variables:
            if var.id not in variables:
                logger.debug("migrate: back-filling variable %s", var.id)
                variables[var.id] = var.default_value

        stored_version = metadata.get("schemaVersion", 1)
        if not isinstance(stored_version, int) or stored_version < target_schema_version:
            metadata["schemaVersion"] = target_schema_version

        return GameState(
            world_id=fields.get("world_id") or self.world.id,
            variables=variables,
            active_character_id=fields.get("active_character_id"),
            turn_count=fields.get("turn_count") or 0,
            metadata=metadata,
        )
