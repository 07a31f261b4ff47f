"""Resolve UI component definitions against the current game state.

The resolver turns each visible component into a flat descriptor a client
can render without knowing about variables: stat bars get a percentage,
text displays get their formatted string, inventories get a parsed and
capped item list. A component bound to a variable that is missing from
the state resolves to `ResolvedError`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Literal, Union

from pydantic import BaseModel

from world_engine.models import (
    ChoiceListComponent,
    GameComponent,
    GameState,
    ImagePanelComponent,
    InventoryGridComponent,
    StatBarComponent,
    TextDisplayComponent,
    ToggleSwitchComponent,
    Variable,
)
from world_engine.rules import is_number

logger = logging.getLogger(__name__)


class _Resolved(BaseModel):
    id: str
    name: str


class ResolvedStatBar(_Resolved):
    type: Literal["stat-bar"] = "stat-bar"
    value: float
    min: float
    max: float
    percentage: float
    color: str | None = None
    show_value: bool = True
    show_label: bool = True


class ResolvedTextDisplay(_Resolved):
    type: Literal["text-display"] = "text-display"
    text: str
    font_size: str = "md"
    icon: str | None = None


class ResolvedChoiceList(_Resolved):
    type: Literal["choice-list"] = "choice-list"
    current_value: str
    max_choices: int
    style: str


class ResolvedImagePanel(_Resolved):
    type: Literal["image-panel"] = "image-panel"
    url: str
    aspect_ratio: str


class ResolvedInventoryGrid(_Resolved):
    type: Literal["inventory-grid"] = "inventory-grid"
    items: list[Any]
    columns: int
    max_slots: int


class ResolvedToggleSwitch(_Resolved):
    type: Literal["toggle-switch"] = "toggle-switch"
    value: bool
    label: str
    color: str | None = None


class ResolvedError(_Resolved):
    type: Literal["error"] = "error"
    message: str


ResolvedComponent = Union[
    ResolvedStatBar,
    ResolvedTextDisplay,
    ResolvedChoiceList,
    ResolvedImagePanel,
    ResolvedInventoryGrid,
    ResolvedToggleSwitch,
    ResolvedError,
]


def _missing(component: GameComponent, variable_id: str) -> ResolvedError:
    return ResolvedError(id=component.id, name=component.name, message=f'Variable "{variable_id}" not found')


def _stat_bar(c: StatBarComponent, values: Mapping[str, Any], defs: Mapping[str, Variable]) -> ResolvedComponent:
    vid = c.config.variable_id
    if vid not in values:
        return _missing(c, vid)
    raw = values[vid]
    value = float(raw) if is_number(raw) else 0.0
    definition = defs.get(vid)
    low = definition.min if definition and definition.min is not None else 0.0
    high = definition.max if definition and definition.max is not None else 100.0
    secondary = c.config.secondary_variable_id
    if secondary and is_number(values.get(secondary)):
        high = float(values[secondary])
    span = high - low
    percentage = min(100.0, max(0.0, (value - low) / span * 100)) if span > 0 else 0.0
    return ResolvedStatBar(
        id=c.id, name=c.name, value=value, min=low, max=high, percentage=percentage,
        color=c.config.color, show_value=c.config.show_value, show_label=c.config.show_label,
    )


def _text_display(c: TextDisplayComponent, values: Mapping[str, Any]) -> ResolvedComponent:
    vid = c.config.variable_id
    if vid not in values:
        return _missing(c, vid)
    value = values[vid]
    shown = ("true" if value else "false") if isinstance(value, bool) else str(value)
    text = c.config.format.replace("{{value}}", shown) if c.config.format else shown
    return ResolvedTextDisplay(id=c.id, name=c.name, text=text, font_size=c.config.font_size, icon=c.config.icon)


def _choice_list(c: ChoiceListComponent, values: Mapping[str, Any]) -> ResolvedComponent:
    vid = c.config.variable_id
    if vid not in values:
        return _missing(c, vid)
    return ResolvedChoiceList(
        id=c.id, name=c.name, current_value=str(values[vid]),
        max_choices=c.config.max_choices, style=c.config.style,
    )


def _image_panel(c: ImagePanelComponent, values: Mapping[str, Any]) -> ResolvedComponent:
    vid = c.config.variable_id
    if vid not in values:
        return _missing(c, vid)
    value = values[vid]
    url = value if isinstance(value, str) and value else (c.config.fallback_url or "")
    return ResolvedImagePanel(id=c.id, name=c.name, url=url, aspect_ratio=c.config.aspect_ratio)


def _inventory_grid(c: InventoryGridComponent, values: Mapping[str, Any]) -> ResolvedComponent:
    vid = c.config.variable_id
    if vid not in values:
        return _missing(c, vid)
    raw = values[vid]
    items: Any = raw
    if isinstance(raw, str):
        try:
            items = json.loads(raw or "[]")
        except json.JSONDecodeError:
            logger.debug("Inventory %s is not a JSON array: %r", vid, raw)
            items = []
    if not isinstance(items, list):
        items = []
    return ResolvedInventoryGrid(
        id=c.id, name=c.name, items=items[: c.config.max_slots],
        columns=c.config.columns, max_slots=c.config.max_slots,
    )


def _toggle_switch(c: ToggleSwitchComponent, values: Mapping[str, Any]) -> ResolvedComponent:
    vid = c.config.variable_id
    if vid not in values:
        return _missing(c, vid)
    on = bool(values[vid])
    return ResolvedToggleSwitch(
        id=c.id, name=c.name, value=on,
        label=c.config.on_label if on else c.config.off_label, color=c.config.color,
    )


def resolve_component(
    component: GameComponent,
    state: GameState,
    variables: Mapping[str, Variable],
) -> ResolvedComponent:
    values = state.variables
    match component:
        case StatBarComponent():
            return _stat_bar(component, values, variables)
        case TextDisplayComponent():
            return _text_display(component, values)
        case ChoiceListComponent():
            return _choice_list(component, values)
        case ImagePanelComponent():
            return _image_panel(component, values)
        case InventoryGridComponent():
            return _inventory_grid(component, values)
        case ToggleSwitchComponent():
            return _toggle_switch(component, values)
    raise TypeError(f"Unknown component type: {type(component).__name__}")


def resolve_components(
    components: Iterable[GameComponent],
    state: GameState,
    variables: Iterable[Variable] | Mapping[str, Variable] = (),
) -> list[ResolvedComponent]:
    """Resolve visible components in display order."""
    defs = variables if isinstance(variables, Mapping) else {v.id: v for v in variables}
    visible = sorted((c for c in components if c.visible), key=lambda c: c.order)
    return [resolve_component(c, state, defs) for c in visible]
