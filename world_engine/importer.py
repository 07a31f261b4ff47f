"""World import — native world documents and third-party character cards.

`load_world` is the single entry point. It accepts a parsed JSON object or
raw JSON text and returns a validated `WorldDefinition`:

    native world   {"id", "name", "version", "entries", ...}
                   Legacy 1.x documents (``lorebookEntries``) are migrated
                   in place first; see `migrate_world_document`.
    character card SillyTavern-style V1 (top-level fields) or V2/V3
                   (``spec: chara_card_v2`` with fields under ``data``).

Card mapping:
  name/description/personality/system_prompt  -> Character
  first_mes                                    -> settings.greeting
  scenario, mes_example, post_history_...      -> always-send lore entries
  character_book entries                       -> lorebook entries
  character_book.recursive_scanning            -> settings.lorebook_recursion_depth (1)
  InitVar / MVU book entries                   -> variables (YAML-ish key: value)

Anything that fails validation raises `WorldImportError`; nothing is
partially imported.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from world_engine.models import Character, LorebookEntry, Variable, WorldDefinition, WorldSettings

logger = logging.getLogger(__name__)

CARD_SPECS = ("chara_card_v2", "chara_card_v3")
_CARD_KEYS = ("first_mes", "character_book", "mes_example")

SKIP_PATTERNS = [
    re.compile(r"initvar", re.IGNORECASE),
    re.compile(r"初始"),
    re.compile(r"变量初始"),
    re.compile(r"mvu_update", re.IGNORECASE),
    re.compile(r"mvu_初始"),
]

# selectiveLogic: 0=AND_ANY, 1=NOT_ANY, 2=NOT_ALL, 3=AND_ALL
_SELECTIVE_LOGIC = {0: "AND_ANY", 1: "NOT_ANY", 2: "NOT_ALL", 3: "AND_ALL"}

_VAR_LINE_RE = re.compile(r"^\s*([^:#\n：]+?)\s*[:：]\s*(.+?)\s*$")
_VAR_ID_STRIP_RE = re.compile(r"[^a-zA-Z0-9_\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff]")
_NUMBER_RE = re.compile(r"-?\d+(\.\d+)?")


class WorldImportError(ValueError):
    """Raised when a document is neither a valid world nor a usable character card."""


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Native documents
# ---------------------------------------------------------------------------

def migrate_world_document(doc: Mapping[str, Any]) -> dict[str, Any]:
    """Upgrade a legacy 1.x world document to the current shape. Idempotent."""
    data = dict(doc)
    legacy = data.pop("lorebookEntries", None)
    if legacy is not None:
        entries = list(data.get("entries") or [])
        known = {e.get("id") for e in entries if isinstance(e, dict)}
        entries.extend(e for e in legacy if not (isinstance(e, dict) and e.get("id") in known))
        data["entries"] = entries
        logger.info("Migrated %d legacy lorebook entries", len(legacy))

    migrated = []
    for entry in data.get("entries") or []:
        if isinstance(entry, dict):
            entry = dict(entry)
            if entry.get("position") not in ("before", "after"):
                entry["position"] = "before" if entry.get("position") == "before_char" else "after"
        migrated.append(entry)
    data["entries"] = migrated

    if str(data.get("version", "")).startswith("1"):
        data["version"] = "2.0.0"
    return data


# ---------------------------------------------------------------------------
# Character cards
# ---------------------------------------------------------------------------

def is_character_card(doc: Mapping[str, Any]) -> bool:
    if doc.get("spec") in CARD_SPECS and isinstance(doc.get("data"), dict):
        return True
    if "entries" in doc or "lorebookEntries" in doc:
        return False
    return any(key in doc for key in _CARD_KEYS)


def should_extract_variables(name: str) -> bool:
    return any(p.search(name) for p in SKIP_PATTERNS)


def extract_variables(content: str) -> list[Variable]:
    """Parse InitVar-style ``key: value`` lines into variable definitions.

    Dotted keys are flattened (``shelter.power`` -> ``shelter_power``).
    """
    variables: list[Variable] = []
    for line in content.split("\n"):
        m = _VAR_LINE_RE.match(line)
        if m is None:
            continue
        raw_key, raw_value = m.group(1).strip(), m.group(2).strip()
        if raw_key.startswith(("#", "-", "//")) or len(raw_key) > 60:
            continue
        var_id = _VAR_ID_STRIP_RE.sub("", re.sub(r"[.\s]+", "_", raw_key)).lower()
        if not var_id:
            continue
        name = re.sub(r"[._]", " ", raw_key)

        if _NUMBER_RE.fullmatch(raw_value):
            value: Any = float(raw_value) if "." in raw_value else int(raw_value)
            variables.append(Variable(id=var_id, name=name, type="number", default_value=value))
        elif raw_value in ("true", "false"):
            variables.append(Variable(id=var_id, name=name, type="boolean", default_value=raw_value == "true"))
        else:
            text = re.sub(r"""^["'「]|["'」]$""", "", raw_value).strip()
            if 0 < len(text) < 200:
                variables.append(Variable(id=var_id, name=name, type="string", default_value=text))
    return variables


def _book_entries(book: Mapping[str, Any] | None) -> list[dict[str, Any]]:
    if not book:
        return []
    raw = book.get("entries") or []
    if isinstance(raw, dict):
        raw = list(raw.values())
    return [e for e in raw if isinstance(e, dict)]


def _card_entry(st: Mapping[str, Any], name: str) -> LorebookEntry:
    extensions = st.get("extensions") or {}
    position = extensions.get("position", st.get("position"))
    priority = st.get("priority")
    if priority is None:
        order = st.get("insertion_order")
        priority = 1000 - (500 if order is None else order)
    keywords = [k for k in st.get("key") or [] if isinstance(k, str) and k.strip()]
    secondary = [k for k in st.get("keysecondary") or [] if isinstance(k, str) and k.strip()]
    return LorebookEntry(
        id=_new_id(),
        name=name,
        content=st.get("content") or "",
        keywords=keywords,
        secondary_keywords=secondary,
        secondary_keyword_logic=_SELECTIVE_LOGIC.get(st.get("selectiveLogic"), "AND_ANY"),
        whole_word=bool(extensions.get("match_whole_words")),
        always_send=bool(st.get("constant", False)),
        position="before" if position == 0 else "after",
        priority=int(priority),
        enabled=st.get("enabled", True) is not False,
    )


def _always_entry(name: str, content: str, priority: int) -> LorebookEntry:
    return LorebookEntry(id=_new_id(), name=name, content=content, always_send=True, priority=priority)


def import_character_card(doc: Mapping[str, Any]) -> WorldDefinition:
    """Map a V1/V2/V3 character card onto a world definition."""
    data = doc.get("data") if isinstance(doc.get("data"), dict) else doc
    book = data.get("character_book") or doc.get("character_book")

    character_name = data.get("name") or "Character"
    description = data.get("description") or ""
    if data.get("personality"):
        description = f"{description}\n\nPersonality: {data['personality']}".strip()
    character = Character(
        id=_new_id(),
        name=character_name,
        description=description,
        system_prompt=data.get("system_prompt") or "",
    )

    entries: list[LorebookEntry] = []
    if data.get("scenario"):
        entries.append(_always_entry("Scenario", data["scenario"], 80))
    if data.get("mes_example"):
        entries.append(_always_entry("Example Messages", data["mes_example"], 40))
    if data.get("post_history_instructions"):
        entries.append(_always_entry("Post-History Instructions", data["post_history_instructions"], 95))

    variables: list[Variable] = []
    seen_vars: set[str] = set()
    for st in _book_entries(book):
        keys = st.get("key") or []
        name = st.get("comment") or (keys[0] if keys else "") or f"Entry {st.get('uid', '?')}"
        if should_extract_variables(name):
            for var in extract_variables(st.get("content") or ""):
                if var.id not in seen_vars:
                    seen_vars.add(var.id)
                    variables.append(var)
            continue
        entries.append(_card_entry(st, name))

    settings = WorldSettings(
        greeting=data.get("first_mes") or "",
        system_prompt="" if data.get("system_prompt") else
        "Write {{char}}'s next reply in a fictional chat between {{char}} and {{user}}.",
        player_name="User",
        lorebook_scan_depth=2,
        lorebook_recursion_depth=1 if (book or {}).get("recursive_scanning") else 0,
    )
    logger.info(
        "Imported character card %r: %d entries, %d variables",
        character_name, len(entries), len(variables),
    )
    return WorldDefinition(
        id=_new_id(),
        name=data.get("name") or (book or {}).get("name") or "Imported World",
        description=(book or {}).get("description") or data.get("scenario") or "",
        author=data.get("creator") or "",
        variables=variables,
        characters=[character],
        entries=entries,
        settings=settings,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def load_world(document: Mapping[str, Any] | str | bytes) -> WorldDefinition:
    """Parse and validate a world document or character card."""
    if isinstance(document, (str, bytes)):
        try:
            document = json.loads(document)
        except json.JSONDecodeError as e:
            raise WorldImportError(f"World document is not valid JSON: {e}") from e
    if not isinstance(document, Mapping):
        raise WorldImportError("World document must be a JSON object")

    try:
        if is_character_card(document):
            return import_character_card(document)
        return WorldDefinition.model_validate(migrate_world_document(document))
    except ValidationError as e:
        raise WorldImportError(f"Invalid world document: {e}") from e
