"""Core domain models.

Every engine stage operates on these types. Pydantic validates world and
state documents at the boundary so malformed input is rejected before it
reaches the rules engine or the prompt builder.

World documents use camelCase keys on the wire ("variableId",
"defaultValue"); Python code uses the snake_case attribute names. Models
accept either spelling and dump camelCase with ``by_alias=True``.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# bool first so True/False are never coerced into numbers
Value = Union[bool, int, float, str]

VariableType = Literal["number", "string", "boolean"]
Operator = Literal["eq", "neq", "gt", "gte", "lt", "lte", "contains"]
Operation = Literal["set", "add", "subtract", "multiply", "toggle", "append"]
ConditionLogic = Literal["all", "any"]
SecondaryLogic = Literal["AND_ANY", "NOT_ANY", "NOT_ALL", "AND_ALL"]
AudioAction = Literal["play", "stop", "volume", "crossfade"]
Role = Literal["system", "user", "assistant"]


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Variables, conditions, effects, rules
# ---------------------------------------------------------------------------

class Variable(_Model):
    """A game variable definition (health, gold, location...)."""

    id: str
    name: str = Field(min_length=1)
    type: VariableType
    default_value: Value
    description: str = ""
    min: float | None = None
    max: float | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> Variable:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"Variable {self.id!r}: min {self.min} exceeds max {self.max}")
        return self


class Condition(_Model):
    variable_id: str
    operator: Operator
    value: Value


class Effect(_Model):
    variable_id: str
    operation: Operation
    value: Value | None = None  # toggle needs no value


class AudioEffect(_Model):
    track_id: str
    action: AudioAction
    volume: float | None = None
    fade_duration: float | None = None


class AudioTrack(_Model):
    id: str
    name: str
    type: Literal["bgm", "sfx", "ambient"] = "bgm"
    url: str = ""
    loop: bool = False
    volume: float = 1.0


class Rule(_Model):
    id: str
    name: str = ""
    description: str = ""
    conditions: list[Condition] = Field(default_factory=list)
    condition_logic: ConditionLogic = "all"
    effects: list[Effect] = Field(default_factory=list)
    audio_effects: list[AudioEffect] = Field(default_factory=list)
    priority: int = 0


# ---------------------------------------------------------------------------
# Characters and lorebook
# ---------------------------------------------------------------------------

class Character(_Model):
    id: str
    name: str = Field(min_length=1)
    description: str = ""
    system_prompt: str = ""


class LorebookEntry(_Model):
    """A keyed piece of world knowledge injected into the prompt when triggered."""

    id: str
    name: str = ""
    content: str
    keywords: list[str] = Field(default_factory=list)
    secondary_keywords: list[str] = Field(default_factory=list)
    secondary_keyword_logic: SecondaryLogic = "AND_ANY"
    whole_word: bool = False
    use_fuzzy: bool = False
    use_semantic: bool = False
    embedding: list[float] | None = None
    embedding_hash: str | None = None  # content_hash() of the text the embedding was built from
    always_send: bool = False
    conditions: list[Condition] = Field(default_factory=list)
    condition_logic: ConditionLogic = "all"
    position: Literal["before", "after"] = "after"
    priority: int = 0
    enabled: bool = True


# ---------------------------------------------------------------------------
# UI components (closed tagged union over component kinds)
# ---------------------------------------------------------------------------

class StatBarConfig(_Model):
    variable_id: str
    color: str | None = None
    show_value: bool = True
    show_label: bool = True
    secondary_variable_id: str | None = None


class TextDisplayConfig(_Model):
    variable_id: str
    format: str | None = None  # e.g. "Location: {{value}}"
    font_size: Literal["sm", "md", "lg"] = "md"
    icon: str | None = None


class ChoiceListConfig(_Model):
    variable_id: str
    max_choices: int = Field(default=4, gt=0)
    style: Literal["buttons", "list"] = "buttons"


class ImagePanelConfig(_Model):
    variable_id: str
    aspect_ratio: Literal["square", "portrait", "landscape", "wide"] = "landscape"
    fallback_url: str | None = None


class InventoryGridConfig(_Model):
    variable_id: str
    columns: int = Field(default=4, gt=0)
    max_slots: int = Field(default=16, gt=0)


class ToggleSwitchConfig(_Model):
    variable_id: str
    on_label: str = "On"
    off_label: str = "Off"
    color: str | None = None


class _ComponentBase(_Model):
    id: str
    name: str = Field(min_length=1)
    order: int = 0
    visible: bool = True


class StatBarComponent(_ComponentBase):
    type: Literal["stat-bar"] = "stat-bar"
    config: StatBarConfig


class TextDisplayComponent(_ComponentBase):
    type: Literal["text-display"] = "text-display"
    config: TextDisplayConfig


class ChoiceListComponent(_ComponentBase):
    type: Literal["choice-list"] = "choice-list"
    config: ChoiceListConfig


class ImagePanelComponent(_ComponentBase):
    type: Literal["image-panel"] = "image-panel"
    config: ImagePanelConfig


class InventoryGridComponent(_ComponentBase):
    type: Literal["inventory-grid"] = "inventory-grid"
    config: InventoryGridConfig


class ToggleSwitchComponent(_ComponentBase):
    type: Literal["toggle-switch"] = "toggle-switch"
    config: ToggleSwitchConfig


GameComponent = Annotated[
    Union[
        StatBarComponent,
        TextDisplayComponent,
        ChoiceListComponent,
        ImagePanelComponent,
        InventoryGridComponent,
        ToggleSwitchComponent,
    ],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# World definition (aggregate root) and runtime state
# ---------------------------------------------------------------------------

class WorldSettings(_Model):
    max_tokens: int = Field(default=2048, gt=0)
    temperature: float = Field(default=0.8, ge=0, le=2)
    system_prompt: str = ""
    greeting: str = ""
    player_name: str = "User"
    structured_output: bool = False
    token_budget: int = Field(default=2048, ge=0)  # lorebook + history allowance, estimated tokens
    lorebook_scan_depth: int = Field(default=2, ge=0)  # 0 scans the whole history
    lorebook_recursion_depth: int = Field(default=0, ge=0)  # extra passes over admitted entry text


class WorldDefinition(_Model):
    """The complete declarative world package."""

    id: str
    version: str = "2.0.0"
    name: str = Field(min_length=1)
    description: str = ""
    author: str = ""
    variables: list[Variable] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    entries: list[LorebookEntry] = Field(default_factory=list)
    components: list[GameComponent] = Field(default_factory=list)
    audio_tracks: list[AudioTrack] = Field(default_factory=list)
    settings: WorldSettings = Field(default_factory=WorldSettings)

    @model_validator(mode="after")
    def _check_unique_ids(self) -> WorldDefinition:
        for label, items in (
            ("variable", self.variables),
            ("rule", self.rules),
            ("character", self.characters),
            ("entry", self.entries),
        ):
            seen: set[str] = set()
            for item in items:
                if item.id in seen:
                    raise ValueError(f"Duplicate {label} id {item.id!r}")
                seen.add(item.id)
        return self

    def variable_map(self) -> dict[str, Variable]:
        return {v.id: v for v in self.variables}


class GameState(_Model):
    """Runtime state of one play session. Single writer: the caller serialises turns."""

    world_id: str
    variables: dict[str, Any] = Field(default_factory=dict)
    active_character_id: str | None = None
    turn_count: int = Field(default=0, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(_Model):
    role: Role
    content: str
