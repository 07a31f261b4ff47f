"""FastMCP server exposing world retrieval and rules as MCP tools.

Tools:
  - retrieve_lore(messages, variables)  — ranked lorebook entries for a conversation
  - score_lore(query)                   — raw BM25 scores per entry
  - evaluate_rules(variables)           — one rule sweep over the given variables
  - match_keyword(text, keyword, ...)   — the lexical matcher on its own

The active world is module state replaced via set_world() (tests), or loaded
from the path given on the command line when run as __main__.

Usage:
    python -m world_engine.mcp_server path/to/world.json
"""

import sys
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from world_engine.importer import load_world
from world_engine.lorebook.bm25 import bm25_score
from world_engine.lorebook.embeddings import entry_text
from world_engine.lorebook.matcher import keyword_matches
from world_engine.lorebook.retriever import rank_entries
from world_engine.models import GameState, WorldDefinition
from world_engine.rules import RulesEngine
from world_engine.state import GameStateManager

mcp = FastMCP("world-engine")

_world: WorldDefinition | None = None


def set_world(world: WorldDefinition | None) -> None:
    """Replace the active world (used in tests)."""
    global _world
    _world = world


def get_world() -> WorldDefinition:
    if _world is None:
        raise RuntimeError("No world loaded")
    return _world


def _state_for(world: WorldDefinition, variables: dict[str, Any] | None) -> GameState:
    manager = GameStateManager(world)
    state = manager.create()
    if variables:
        state.variables.update(variables)
    return state


@mcp.tool()
def retrieve_lore(messages: list[str], variables: dict[str, Any] | None = None) -> dict:
    """Return lorebook entries triggered or ranked for the recent messages, best first."""
    world = get_world()
    state = _state_for(world, variables)
    ranked = rank_entries(
        world.entries, messages, state,
        scan_depth=world.settings.lorebook_scan_depth,
        recursion_depth=world.settings.lorebook_recursion_depth,
    )
    return {
        "entries": [
            {
                "id": r.entry.id,
                "name": r.entry.name,
                "content": r.entry.content,
                "score": round(r.score, 4),
                "reason": r.reason,
            }
            for r in ranked
        ]
    }


@mcp.tool()
def score_lore(query: str) -> dict:
    """BM25 score of every enabled lorebook entry against `query` (zero scores omitted)."""
    world = get_world()
    docs = [{"id": e.id, "text": entry_text(e)} for e in world.entries if e.enabled]
    return {"scores": bm25_score(query, docs)}


@mcp.tool()
def evaluate_rules(variables: dict[str, Any] | None = None) -> dict:
    """Run one rule sweep from the world defaults overlaid with `variables`."""
    world = get_world()
    state = _state_for(world, variables)
    result = RulesEngine(world.variables).evaluate(state, world.rules)
    return {
        "variables": result.new_state.variables,
        "firedRuleIds": result.fired_rule_ids,
        "audioEffects": [a.model_dump(by_alias=True, exclude_none=True) for a in result.audio_effects],
        "diagnostics": result.diagnostics,
    }


@mcp.tool()
def match_keyword(text: str, keyword: str, whole_word: bool = False, use_fuzzy: bool = False) -> dict:
    """Test one keyword against a text with the lorebook matcher."""
    return {"matched": keyword_matches(text, keyword, whole_word, use_fuzzy)}


if __name__ == "__main__":
    if len(sys.argv) < 2:
        sys.exit("usage: python -m world_engine.mcp_server WORLD_JSON")
    set_world(load_world(Path(sys.argv[1]).read_text()))
    mcp.run()
