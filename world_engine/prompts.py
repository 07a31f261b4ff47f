"""Handlebars prompt rendering and LLM message assembly.

Author-facing text (world system prompt, character prompts, greetings,
lorebook entry content) is a Handlebars template rendered against the game
state. Besides every variable by id, templates see:

    {{char}}        active character name
    {{user}}        player name
    {{turnCount}}   completed turns
    {{vars.<id>}}   the variable map, for ids that clash with the names above

and the helpers {{roll "2d6+1"}}, {{random "a" "b"}}, {{pick "a" "b"}}
(stable within a turn) and {{isodate}}.

`PromptBuilder.build` produces the message list for one generation:
a system message (world prompt, lore, character, state summary, directive
instructions, audio tracks), the history slice that fits the token budget,
and the player's new message.
"""

from __future__ import annotations

import datetime
import logging
import math
import random
import re
import zlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import pybars

from world_engine.models import (
    Character,
    ChatMessage,
    GameState,
    LorebookEntry,
    Variable,
    WorldDefinition,
)

logger = logging.getLogger(__name__)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────

_DICE_RE = re.compile(r"(\d*)d(\d+)(?:([+-])(\d+))?", re.IGNORECASE)


def roll_dice(expr: str, rng: random.Random | None = None) -> int | None:
    """Roll an ``NdS±M`` expression. Returns None if it doesn't parse."""
    m = _DICE_RE.fullmatch(expr.replace(" ", ""))
    if m is None:
        return None
    count = int(m.group(1) or 1)
    sides = int(m.group(2))
    if count < 1 or sides < 1 or count > 100:
        return None
    source = rng if rng is not None else random
    total = sum(source.randint(1, sides) for _ in range(count))
    if m.group(3):
        modifier = int(m.group(4))
        total += modifier if m.group(3) == "+" else -modifier
    return total


def _helper_roll(this, expr):
    """{{roll "2d6+1"}}"""
    result = roll_dice(str(expr))
    return "" if result is None else str(result)


def _helper_random(this, *options):
    """{{random "a" "b" "c"}} — a fresh choice on every render."""
    return str(random.choice(options)) if options else ""


def _helper_pick(this, *options):
    """{{pick "a" "b" "c"}} — same choice for the whole turn."""
    if not options:
        return ""
    turn = this.get("turnCount", 0) if hasattr(this, "get") else 0
    seed = "|".join([str(turn), *map(str, options)])
    return str(options[zlib.crc32(seed.encode("utf-8")) % len(options)])


def _helper_isodate(this, *args):
    return datetime.date.today().isoformat()


_HELPERS: dict[str, Callable] = {
    "roll": _helper_roll,
    "random": _helper_random,
    "pick": _helper_pick,
    "isodate": _helper_isodate,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def render_or_raw(template_str: str, context: dict[str, Any]) -> str:
    """Render, falling back to the unrendered text when the template is broken."""
    if "{{" not in template_str:
        return template_str
    try:
        return render_prompt(template_str, context)
    except PromptError as e:
        logger.warning("Rendering failed, using raw text: %s", e)
        return template_str


def active_character(world: WorldDefinition, state: GameState) -> Character | None:
    for character in world.characters:
        if character.id == state.active_character_id:
            return character
    return world.characters[0] if world.characters else None


def build_template_context(world: WorldDefinition, state: GameState) -> dict[str, Any]:
    """Assemble template variables from world and state.

    Variables are exposed flat by id and nested under ``vars``. The
    reserved names (char, user, turnCount, ...) win over clashing ids.
    """
    character = active_character(world, state)
    variables = dict(state.variables)
    ctx: dict[str, Any] = dict(variables)
    ctx.update({
        "vars": variables,
        "char": character.name if character else "",
        "user": world.settings.player_name,
        "turnCount": state.turn_count,
        "world": {"name": world.name, "description": world.description},
        "lastMessage": state.metadata.get("lastMessage", ""),
        "lastUserMessage": state.metadata.get("lastUserMessage", ""),
    })
    return ctx


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""
    return math.ceil(len(text) / 4)


# ── Prompt builder ────────────────────────────────────────

TAG_INSTRUCTIONS = (
    "When you want to change game variables, use this format in your response: "
    "[variableId: operation value]\n"
    'Examples: [health: -10], [gold: +50], [location: set "forest"], [hasKey: toggle]\n'
    "To offer the player choices, add one tag per option: [choice: Open the door]"
)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class PromptConfig:
    """Retrieval and assembly knobs.

    The combined retrieval score of a ranked-only entry is
    ``bm25_weight * bm25 + semantic_weight * cosine`` (each normalised to
    [0, 1]); entries below ``min_score`` are not admitted.
    """

    bm25_weight: float = 0.5
    semantic_weight: float = 0.5
    min_score: float = 0.2
    max_entries: int | None = None
    include_state_summary: bool = True


class PromptBuilder:
    def __init__(self, config: PromptConfig | None = None) -> None:
        self.config = config or PromptConfig()

    # -- budgeted slices --

    def select_entries(
        self,
        entries: Sequence[LorebookEntry],
        budget: int,
        context: dict[str, Any],
    ) -> tuple[list[tuple[LorebookEntry, str]], int]:
        """Admit entries in rank order until the next one would exceed `budget`.

        Returns (entry, rendered_text) pairs and the tokens used.
        """
        admitted: list[tuple[LorebookEntry, str]] = []
        used = 0
        for entry in entries:
            text = render_or_raw(entry.content, context)
            cost = estimate_tokens(text)
            if used + cost > budget:
                logger.debug("lore budget exhausted at entry %s (%d + %d > %d)", entry.id, used, cost, budget)
                break
            admitted.append((entry, text))
            used += cost
        return admitted, used

    def select_history(self, history: Sequence[ChatMessage], budget: int) -> list[ChatMessage]:
        """Most recent messages that fit `budget`, in chronological order."""
        kept: list[ChatMessage] = []
        used = 0
        for message in reversed(history):
            cost = estimate_tokens(message.content)
            if used + cost > budget:
                break
            kept.append(message)
            used += cost
        kept.reverse()
        return kept

    # -- system prompt --

    def state_summary(self, variables: Sequence[Variable], state: GameState) -> str:
        lines = [
            f"- {var.name}: {_format_value(state.variables[var.id])}"
            for var in variables
            if var.id in state.variables
        ]
        return "Current game state:\n" + "\n".join(lines) if lines else ""

    def structured_instructions(self, variables: Sequence[Variable]) -> str:
        lines = [
            "Respond with a single JSON object of this shape:",
            '{"narrative": "story text shown to the player",'
            ' "stateChanges": [{"variableId": "...", "operation": "set|add|subtract|multiply|toggle|append", "value": ...}],'
            ' "choices": ["..."],'
            ' "audioTriggers": [{"trackId": "...", "action": "play|stop|volume|crossfade"}]}',
        ]
        if variables:
            lines.append("Available variables:")
            lines.extend(f"- {v.id} ({v.type}): {v.name}" for v in variables)
        return "\n".join(lines)

    def audio_section(self, world: WorldDefinition, structured: bool) -> str:
        if not world.audio_tracks:
            return ""
        lines = ["Available audio tracks:"]
        lines.extend(f"  - {t.id} ({t.type}): {t.name}" for t in world.audio_tracks)
        if structured:
            lines.append('To trigger audio, add to "audioTriggers": {"trackId": "...", "action": "play"}')
        else:
            lines.append("To trigger audio, use: [audio: trackId action]")
        return "\n".join(lines)

    def build_system_prompt(
        self,
        world: WorldDefinition,
        state: GameState,
        entries: Sequence[tuple[LorebookEntry, str]],
        structured: bool,
        context: dict[str, Any],
    ) -> str:
        parts: list[str] = []
        if world.settings.system_prompt:
            parts.append(render_or_raw(world.settings.system_prompt, context))

        parts.extend(text for entry, text in entries if entry.position == "before")

        character = active_character(world, state)
        if character is not None:
            parts.append(f"You are {character.name}. {character.description}".strip())
            if character.system_prompt:
                parts.append(render_or_raw(character.system_prompt, context))

        parts.extend(text for entry, text in entries if entry.position == "after")

        if self.config.include_state_summary:
            parts.append(self.state_summary(world.variables, state))

        if structured:
            parts.append(self.structured_instructions(world.variables))
        elif world.variables:
            parts.append(TAG_INSTRUCTIONS)

        parts.append(self.audio_section(world, structured))
        return "\n\n".join(p for p in parts if p)

    # -- entry point --

    def build(
        self,
        world: WorldDefinition,
        state: GameState,
        history: Sequence[ChatMessage],
        retrieved_entries: Sequence[LorebookEntry],
        token_budget: int | None = None,
        user_message: str | None = None,
        structured: bool | None = None,
    ) -> list[ChatMessage]:
        """Assemble the message list for one generation.

        Lore and history share `token_budget` (defaults to the world
        setting): lore is admitted first, history gets what is left. The
        system scaffolding and the new user message are not counted.
        """
        budget = world.settings.token_budget if token_budget is None else token_budget
        if structured is None:
            structured = world.settings.structured_output

        context = build_template_context(world, state)
        entries, used = self.select_entries(retrieved_entries, budget, context)
        recent = self.select_history(history, budget - used)
        logger.debug(
            "prompt build: %d/%d entries, %d/%d history messages, %d tokens of lore",
            len(entries), len(retrieved_entries), len(recent), len(history), used,
        )

        messages = [ChatMessage(role="system", content=self.build_system_prompt(world, state, entries, structured, context))]
        messages.extend(recent)
        if user_message is not None:
            messages.append(ChatMessage(role="user", content=user_message))
        return messages

    def build_greeting(self, world: WorldDefinition, state: GameState) -> str:
        if not world.settings.greeting:
            return ""
        return render_or_raw(world.settings.greeting, build_template_context(world, state))
