"""Stat and dice rules — traits, hit points, modifiers, d20 rolls, action typing.

Stats start at 10 and are shifted by qualitative traits:

    derive_stats(["剑道至上", "冷静分析"])  →  str 12, agi 12, int 12, cha 10, wil 10

Hit points are fixed at creation from willpower (20 + 2×wil). Rolls are a
single d20 plus the ability modifier of the stat the action relies on, checked
against a fixed difficulty (DC) per action type:

    attack  STR  DC12       skill  INT  DC14
    defend  AGI  DC10       talk   CHA  DC13
    custom  STR  DC12       (anything unknown behaves like custom)

AI-declared actions are typed by keyword cues (classify_action); the human
player picks the type explicitly.
"""

from __future__ import annotations

import random
from collections.abc import Iterable

from rpg_arena.models import Character, DiceRoll, StatName, Stats

BASE_STAT = 10

TRAIT_STAT_MAP: dict[str, dict[StatName, int]] = {
    "剑道至上": {"strength": 2, "agility": 1},
    "极端克制": {"willpower": 2, "charisma": -1},
    "寡言直率": {"charisma": -1, "willpower": 1},
    "感情极端": {"willpower": -1, "strength": 1},
    "洒脱自在": {"charisma": 2, "willpower": 1},
    "古道热肠": {"charisma": 1, "willpower": 1},
    "冷静分析": {"intellect": 2, "agility": 1},
    "机敏灵活": {"agility": 2, "intellect": 1},
    "神秘莫测": {"intellect": 1, "charisma": 1},
    "狡诈多变": {"intellect": 2, "charisma": 1},
    "温柔体贴": {"charisma": 2, "willpower": 1},
    "暴力倾向": {"strength": 2, "willpower": -1},
    "坚韧不拔": {"willpower": 2, "strength": 1},
    "领袖气质": {"charisma": 2, "strength": 1},
}

# (stat, dc, label) per action type
ACTION_TYPES: dict[str, tuple[StatName, int, str]] = {
    "attack": ("strength", 12, "攻击"),
    "defend": ("agility", 10, "防御"),
    "skill": ("intellect", 14, "技能"),
    "talk": ("charisma", 13, "交涉"),
    "custom": ("strength", 12, "自定义"),
}

# Checked in order; the first type with a matching cue wins.
ACTION_CUES: list[tuple[str, tuple[str, ...]]] = [
    ("attack", ("攻击", "斩", "劈")),
    ("defend", ("躲", "闪", "防")),
    ("talk", ("说服", "交涉", "谈")),
    ("skill", ("分析", "观察", "思考")),
]


def derive_stats(traits: Iterable[str]) -> Stats:
    """Sum the trait deltas onto the baseline. Unknown traits are ignored."""
    values = {name: BASE_STAT for name in Stats.model_fields}
    for trait in traits:
        for stat, delta in TRAIT_STAT_MAP.get(trait, {}).items():
            values[stat] += delta
    return Stats(**values)


def compute_max_hp(willpower: int) -> int:
    return 20 + willpower * 2


def get_stat_modifier(stat_value: int) -> int:
    """Standard ability modifier, floored toward negative infinity (7 → -2)."""
    return (stat_value - BASE_STAT) // 2


def format_modifier(modifier: int) -> str:
    return f"+{modifier}" if modifier >= 0 else str(modifier)


def roll_dice(sides: int, rng: random.Random | None = None) -> int:
    return (rng or random).randint(1, sides)


def roll_d20_with_mod(
    modifier: int, dc: int | None = None, rng: random.Random | None = None
) -> DiceRoll:
    """Roll a d20 and add the modifier.

    `success` is only set when a DC is supplied; a roll without a DC is a
    flavour roll with no pass/fail outcome.
    """
    value = roll_dice(20, rng)
    total = value + modifier
    return DiceRoll(
        dice="d20",
        value=value,
        modifier=modifier,
        total=total,
        dc=dc,
        success=None if dc is None else total >= dc,
    )


def format_roll(roll: DiceRoll) -> str:
    """Canonical roll text, shown in the log and sent to the GM verbatim.

    "d20(14)+2=16 vs DC12 成功"
    """
    text = f"{roll.dice}({roll.value}){format_modifier(roll.modifier)}={roll.total}"
    if roll.dc is not None:
        text += f" vs DC{roll.dc} {'成功' if roll.success else '失败'}"
    return text


def resolve_action_type(action_type: str) -> tuple[StatName, int]:
    """Return (stat, dc) for an action type; unknown types act like "custom"."""
    stat, dc, _ = ACTION_TYPES.get(action_type, ACTION_TYPES["custom"])
    return stat, dc


def classify_action(text: str) -> str:
    """Guess the action type of a freeform action from vocabulary cues.

    No confidence signal: an action with both attack and persuasion cues is
    typed as an attack because attack cues are checked first.
    """
    for action_type, cues in ACTION_CUES:
        if any(cue in text for cue in cues):
            return action_type
    return "attack"


def roll_for_action(
    character: Character, action_type: str, rng: random.Random | None = None
) -> DiceRoll:
    stat, dc = resolve_action_type(action_type)
    modifier = get_stat_modifier(character.stats.get(stat))
    return roll_d20_with_mod(modifier, dc, rng)


def build_turn_queue(characters: Iterable[Character]) -> list[str]:
    """Ids of characters still in the game, in roster order."""
    return [c.id for c in characters if not c.eliminated]
