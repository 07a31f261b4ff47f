"""LLM response parsing into display text, effects, choices and audio cues.

Two formats are understood:

Inline tags (default)
  [hp: -10]  [gold: +50]  [hp: 50]  [location: set "forest"]  [hasKey: toggle]
  [audio: battle_theme play]
  [choice: Open the door]

  Recognised tags are stripped from the display text. Anything that looks
  like a tag but does not parse, or names a variable the world does not
  define, is left in the text untouched.

Structured JSON (worlds with structuredOutput)
  {"narrative": "...", "stateChanges": [...], "choices": [...], "audioTriggers": [...]}

  Optionally wrapped in a ``` fence. Invalid JSON or a missing narrative
  falls back to the tag parser. Neither parser raises on model output.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from world_engine.models import AudioEffect, Effect, Variable, Value

logger = logging.getLogger(__name__)

VALID_OPERATIONS = ("set", "add", "subtract", "multiply", "toggle", "append")
_SHORTHAND = {"+": "add", "-": "subtract", "*": "multiply"}
_RESERVED_TAGS = {"audio", "choice"}  # malformed forms of these stay literal

DIRECTIVE_RE = re.compile(
    r'\[(\w+):\s*((?:set|add|subtract|multiply|toggle|append)(?=[\s\]])|[+*-])?\s*'
    r'("(?:[^"\\]|\\.)*"|[\w.-]+)?\]'
)
AUDIO_RE = re.compile(
    r"\[audio:\s*([\w.-]+)\s+(play|stop|volume|crossfade)(?:\s+(\d+(?:\.\d+)?))?\s*\]",
    re.IGNORECASE,
)
CHOICE_RE = re.compile(r"\[choice:\s*([^\]\n]+?)\s*\]", re.IGNORECASE)
_NUMBER_RE = re.compile(r"-?\d+(\.\d+)?")


@dataclass
class ParseResult:
    display_text: str
    effects: list[Effect] = field(default_factory=list)
    choices: list[str] = field(default_factory=list)
    audio_effects: list[AudioEffect] = field(default_factory=list)
    structured: bool = False


def parse_value(raw: str) -> Value:
    """Interpret a tag value: quoted string, boolean, number, or bare word."""
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw[1:-1]
    if raw == "true":
        return True
    if raw == "false":
        return False
    if _NUMBER_RE.fullmatch(raw):
        return float(raw) if "." in raw else int(raw)
    return raw


def directive_to_effect(variable_id: str, op: str | None, raw_value: str | None) -> Effect | None:
    if op == "toggle":
        return Effect(variable_id=variable_id, operation="toggle", value=True)
    if raw_value is None:
        return None
    value = parse_value(raw_value)
    if op is None:
        return Effect(variable_id=variable_id, operation="set", value=value)
    return Effect(variable_id=variable_id, operation=_SHORTHAND.get(op, op), value=value)


def clean_text(text: str) -> str:
    """Tidy whitespace left behind by removed tags, keeping paragraph breaks."""
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class ResponseParser:
    """Parses inline tags.

    Args:
        variable_ids: When given, variable tags naming other ids are left
                      as literal text so bracketed prose survives.
    """

    def __init__(self, variable_ids: Iterable[str] | None = None) -> None:
        self.variable_ids = set(variable_ids) if variable_ids is not None else None

    def parse(self, raw: str) -> ParseResult:
        result = ParseResult(display_text="")

        def _audio(m: re.Match[str]) -> str:
            volume = float(m.group(3)) if m.group(3) else None
            result.audio_effects.append(
                AudioEffect(track_id=m.group(1), action=m.group(2).lower(), volume=volume)
            )
            return ""

        def _choice(m: re.Match[str]) -> str:
            result.choices.append(m.group(1))
            return ""

        def _directive(m: re.Match[str]) -> str:
            variable_id, op, raw_value = m.group(1), m.group(2), m.group(3)
            if variable_id.lower() in _RESERVED_TAGS:
                return m.group(0)
            if self.variable_ids is not None and variable_id not in self.variable_ids:
                return m.group(0)
            effect = directive_to_effect(variable_id, op, raw_value)
            if effect is None:
                logger.debug("Unparseable directive kept as text: %s", m.group(0))
                return m.group(0)
            result.effects.append(effect)
            return ""

        text = AUDIO_RE.sub(_audio, raw)
        text = CHOICE_RE.sub(_choice, text)
        text = DIRECTIVE_RE.sub(_directive, text)
        result.display_text = clean_text(text)
        return result


# ---------------------------------------------------------------------------
# Structured (JSON) responses
# ---------------------------------------------------------------------------

def _strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [line for line in lines[1:] if not line.strip().startswith("```")]
        cleaned = "\n".join(lines)
    return cleaned


class StructuredResponseParser:
    def __init__(self, variable_ids: Iterable[str] | None = None) -> None:
        self.variable_ids = set(variable_ids) if variable_ids is not None else None
        self._fallback = ResponseParser(variable_ids)

    def parse(self, raw: str) -> ParseResult:
        try:
            data = json.loads(_strip_fences(raw))
        except json.JSONDecodeError as e:
            logger.warning("Structured response is not valid JSON, parsing as tags: %s", e)
            return self._fallback.parse(raw)
        if not isinstance(data, dict) or not isinstance(data.get("narrative"), str):
            logger.warning("Structured response has no narrative, parsing as tags")
            return self._fallback.parse(raw)

        result = ParseResult(display_text=data["narrative"].strip(), structured=True)

        for change in _as_list(data.get("stateChanges")):
            effect = self._to_effect(change)
            if effect is not None:
                result.effects.append(effect)

        result.choices = [str(c) for c in _as_list(data.get("choices")) if str(c).strip()]

        for trigger in _as_list(data.get("audioTriggers")):
            try:
                result.audio_effects.append(AudioEffect.model_validate(trigger))
            except ValidationError:
                logger.debug("Skipping invalid audio trigger: %r", trigger)

        return result

    def _to_effect(self, change: Any) -> Effect | None:
        if not isinstance(change, dict):
            return None
        if change.get("operation") not in VALID_OPERATIONS:
            logger.debug("Skipping state change with bad operation: %r", change)
            return None
        if change.get("operation") != "toggle" and "value" not in change:
            return None
        if self.variable_ids is not None and change.get("variableId") not in self.variable_ids:
            logger.debug("Skipping state change for unknown variable: %r", change)
            return None
        try:
            return Effect.model_validate(change)
        except ValidationError:
            logger.debug("Skipping invalid state change: %r", change)
            return None


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def build_response_schema(variables: Iterable[Variable]) -> dict[str, Any]:
    """JSON schema for structured responses, restricting variableId to known ids."""
    ids = [v.id for v in variables]
    variable_id: dict[str, Any] = {"type": "string"}
    if ids:
        variable_id["enum"] = ids
    return {
        "type": "object",
        "properties": {
            "narrative": {"type": "string"},
            "stateChanges": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "variableId": variable_id,
                        "operation": {"type": "string", "enum": list(VALID_OPERATIONS)},
                        "value": {"type": ["number", "string", "boolean"]},
                    },
                    "required": ["variableId", "operation"],
                },
            },
            "choices": {"type": "array", "items": {"type": "string"}},
            "audioTriggers": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "trackId": {"type": "string"},
                        "action": {"type": "string", "enum": ["play", "stop", "volume", "crossfade"]},
                        "volume": {"type": "number"},
                        "fadeDuration": {"type": "number"},
                    },
                    "required": ["trackId", "action"],
                },
            },
        },
        "required": ["narrative"],
    }
