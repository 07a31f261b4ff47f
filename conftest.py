import copy

import pytest

from world_engine.models import WorldDefinition
from world_engine.state import GameStateManager

WORLD_DOC = {
    "id": "ember-keep",
    "name": "Ember Keep",
    "description": "A frontier fortress under a dragon's shadow.",
    "variables": [
        {"id": "hp", "name": "Health", "type": "number", "defaultValue": 100, "min": 0, "max": 100},
        {"id": "gold", "name": "Gold", "type": "number", "defaultValue": 10, "min": 0},
        {"id": "location", "name": "Location", "type": "string", "defaultValue": "tavern"},
        {"id": "hasKey", "name": "Has Key", "type": "boolean", "defaultValue": False},
        {"id": "inventory", "name": "Inventory", "type": "string", "defaultValue": '["sword", "torch"]'},
        {"id": "status", "name": "Status", "type": "string", "defaultValue": "alive"},
    ],
    "rules": [
        {
            "id": "death",
            "name": "Death",
            "conditions": [{"variableId": "hp", "operator": "lte", "value": 0}],
            "effects": [{"variableId": "status", "operation": "set", "value": "dead"}],
            "audioEffects": [{"trackId": "dirge", "action": "play"}],
            "priority": 10,
        },
    ],
    "characters": [
        {"id": "mira", "name": "Mira", "description": "A weary innkeeper.", "systemPrompt": "Speak plainly."},
    ],
    "entries": [
        {
            "id": "dragon",
            "name": "The Dragon",
            "content": "Vharok the red dragon nests on the mountain above the keep.",
            "keywords": ["dragon", "vharok"],
            "priority": 50,
        },
        {
            "id": "tavern",
            "name": "The Broken Tankard",
            "content": "The tavern is warm, crowded and smells of smoke.",
            "keywords": ["tavern"],
            "priority": 20,
            "position": "before",
        },
        {
            "id": "laws",
            "name": "Keep Laws",
            "content": "Weapons must be peace-bound inside the keep walls.",
            "alwaysSend": True,
            "priority": 5,
        },
        {
            "id": "history",
            "name": "Founding",
            "content": "The keep was founded by exiled knights of the old kingdom.",
            "priority": 1,
        },
    ],
    "components": [
        {"id": "hp-bar", "name": "Health", "type": "stat-bar", "order": 1, "config": {"variableId": "hp"}},
        {"id": "where", "name": "Where", "type": "text-display", "order": 0,
         "config": {"variableId": "location", "format": "Location: {{value}}"}},
    ],
    "audioTracks": [
        {"id": "dirge", "name": "Funeral Dirge", "type": "bgm"},
    ],
    "settings": {"playerName": "Ash", "tokenBudget": 2048, "lorebookScanDepth": 2},
}


@pytest.fixture
def world_doc() -> dict:
    return copy.deepcopy(WORLD_DOC)


@pytest.fixture
def world(world_doc) -> WorldDefinition:
    return WorldDefinition.model_validate(world_doc)


@pytest.fixture
def manager(world) -> GameStateManager:
    return GameStateManager(world)


@pytest.fixture
def state(manager):
    return manager.create()
