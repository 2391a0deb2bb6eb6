"""GM annotation parsing and application.

The GM is told (via GAME_RULES) to close its adjudication with bracketed
markers for every mechanical effect:

    [HP变动: 艾拉 -5]        HP delta, signed integer
    [状态: 艾拉 +中毒]        add condition
    [状态: 艾拉 -中毒]        remove condition

Parsing is tolerant: anything that does not match is prose and is skipped.
A marker never spans a closing bracket, so one broken marker cannot swallow
the next. The text itself is left untouched; hiding markers is up to whatever
renders the log.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, ConfigDict

from rpg_arena.models import Character

logger = logging.getLogger(__name__)

HP_PATTERN = re.compile(r"\[HP变动:\s*([^\]]+?)\s+([+-]\d+)\]")
CONDITION_PATTERN = re.compile(r"\[状态:\s*([^\]]+?)\s+([+-])([^\]]+?)\]")


class HpChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    delta: int


class ConditionChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    condition: str
    add: bool


def parse_hp_changes(text: str) -> list[HpChange]:
    """Every HP marker in scan order. Repeats for one name are separate deltas."""
    return [
        HpChange(name=m.group(1), delta=int(m.group(2)))
        for m in HP_PATTERN.finditer(text)
    ]


def parse_condition_changes(text: str) -> list[ConditionChange]:
    return [
        ConditionChange(name=m.group(1), condition=m.group(3), add=m.group(2) == "+")
        for m in CONDITION_PATTERN.finditer(text)
    ]


def apply_hp_change(character: Character, delta: int) -> None:
    """Clamp HP into [0, max_hp] and re-evaluate elimination from the result."""
    character.hp = max(0, min(character.max_hp, character.hp + delta))
    character.eliminated = character.hp == 0


def apply_condition_change(character: Character, condition: str, add: bool) -> None:
    if add:
        if condition not in character.conditions:
            character.conditions.append(condition)
    elif condition in character.conditions:
        character.conditions.remove(condition)


def _named(characters: list[Character], name: str) -> list[Character]:
    return [c for c in characters if c.name == name]


def apply_annotations(characters: list[Character], text: str) -> list[Character]:
    """Apply every marker in `text` to the matching characters, in place.

    HP deltas go first, then condition changes. Markers naming nobody in the
    roster are dropped. Returns the characters that went from standing to
    eliminated, in roster order.
    """
    was_eliminated = {c.id: c.eliminated for c in characters}

    for change in parse_hp_changes(text):
        targets = _named(characters, change.name)
        if not targets:
            logger.debug("HP marker for unknown character %r dropped", change.name)
        for target in targets:
            apply_hp_change(target, change.delta)

    for change in parse_condition_changes(text):
        targets = _named(characters, change.name)
        if not targets:
            logger.debug("Condition marker for unknown character %r dropped", change.name)
        for target in targets:
            apply_condition_change(target, change.condition, change.add)

    return [c for c in characters if c.eliminated and not was_eliminated[c.id]]
