"""Turn orchestrator — runs one player turn end-to-end.

Turn flow:
  1. Retrieve lorebook entries for the recent conversation (keyword
     triggers, BM25, and semantic scores when a ranker is supplied).
  2. Build the prompt: system message, budgeted lore and history, player message.
  3. Stream the completion from the LLM.
  4. Parse it: tags, or JSON when the world asks for structured output.
  5. Apply the parsed effects to the state.
  6. Run one sweep of the world rules over the result.
  7. Advance the turn counter and record the exchange in metadata.

State is only touched after the stream completes. A cancelled turn
(`cancel` event set, or the surrounding task cancelled) and an LLM error
both leave the caller's state exactly as it was.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field

from world_engine.llm import LLM, GenerateParams, LLMError, StreamChunk
from world_engine.lorebook.embeddings import SemanticRanker
from world_engine.lorebook.retriever import retrieve_entries_async
from world_engine.models import AudioEffect, ChatMessage, GameState, WorldDefinition
from world_engine.parser import ParseResult, ResponseParser, StructuredResponseParser
from world_engine.prompts import PromptBuilder
from world_engine.rules import RulesEngine, StateChange
from world_engine.state import GameStateManager

logger = logging.getLogger(__name__)


class TurnCancelled(Exception):
    """Raised when a turn is cancelled before its effects were applied."""


@dataclass
class TurnResult:
    state: GameState
    display_text: str
    choices: list[str] = field(default_factory=list)
    audio_effects: list[AudioEffect] = field(default_factory=list)
    changes: list[StateChange] = field(default_factory=list)
    fired_rule_ids: list[str] = field(default_factory=list)
    diagnostics: list[str] = field(default_factory=list)
    messages: list[ChatMessage] = field(default_factory=list)
    raw_text: str = ""

    @property
    def no_op(self) -> bool:
        """True when neither the model's directives nor the rules changed a variable."""
        return not self.changes


async def _collect(stream: AsyncIterator[StreamChunk], cancel: asyncio.Event | None) -> str:
    parts: list[str] = []
    try:
        async for chunk in stream:
            if cancel is not None and cancel.is_set():
                raise TurnCancelled("Turn cancelled while streaming")
            if chunk.type == "error":
                raise LLMError(f"LLM stream error: {chunk.content}")
            if chunk.type == "done":
                break
            parts.append(chunk.content)
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
    return "".join(parts)


def _parse(world: WorldDefinition, text: str) -> ParseResult:
    variable_ids = [v.id for v in world.variables]
    if world.settings.structured_output:
        return StructuredResponseParser(variable_ids).parse(text)
    return ResponseParser(variable_ids).parse(text)


async def run_turn(
    world: WorldDefinition,
    state: GameState,
    history: Sequence[ChatMessage],
    user_message: str,
    llm: LLM,
    *,
    builder: PromptBuilder | None = None,
    semantic: SemanticRanker | None = None,
    cancel: asyncio.Event | None = None,
    manager: GameStateManager | None = None,
    token_budget: int | None = None,
) -> TurnResult:
    """Execute one player turn and return the new state and display output.

    `token_budget` overrides the world's own lore + history allowance.
    """
    builder = builder or PromptBuilder()
    manager = manager or GameStateManager(world)

    # 1. Retrieval
    recent = [m.content for m in history] + [user_message]
    entries = await retrieve_entries_async(
        world.entries, recent, state,
        config=builder.config,
        semantic=semantic,
        scan_depth=world.settings.lorebook_scan_depth,
        recursion_depth=world.settings.lorebook_recursion_depth,
    )

    # 2. Prompt
    messages = builder.build(world, state, history, entries, token_budget, user_message=user_message)
    params = GenerateParams(
        max_tokens=world.settings.max_tokens,
        temperature=world.settings.temperature,
        response_format="json_object" if world.settings.structured_output else None,
    )

    # 3. Stream
    text = await _collect(llm.generate(messages, params), cancel)
    if cancel is not None and cancel.is_set():
        raise TurnCancelled("Turn cancelled before effects were applied")
    logger.debug("turn %d: completion len=%d entries=%d", state.turn_count + 1, len(text), len(entries))

    # 4. Parse
    parsed = _parse(world, text)

    # 5. Directive effects
    applied = manager.apply(state, parsed.effects)

    # 6. Rules
    evaluation = RulesEngine(world.variables).evaluate(applied.state, world.rules)

    # 7. Turn bookkeeping
    final = manager.advance_turn(evaluation.new_state)
    final.metadata["lastUserMessage"] = user_message
    final.metadata["lastMessage"] = parsed.display_text

    result = TurnResult(
        state=final,
        display_text=parsed.display_text,
        choices=parsed.choices,
        audio_effects=parsed.audio_effects + evaluation.audio_effects,
        changes=applied.changes + evaluation.changes,
        fired_rule_ids=evaluation.fired_rule_ids,
        diagnostics=applied.diagnostics + evaluation.diagnostics,
        messages=[
            ChatMessage(role="user", content=user_message),
            ChatMessage(role="assistant", content=parsed.display_text),
        ],
        raw_text=text,
    )
    if result.diagnostics:
        logger.debug("turn %d diagnostics: %s", final.turn_count, result.diagnostics)
    return result
