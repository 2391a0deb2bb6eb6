"""Game setup — turning profile data into a starting roster.

Profiles come from outside the engine (a content collection, an HTTP body).
Each picked profile becomes a Character with stats derived from its traits and
full hit points. The player either watches, takes over one of the picked
characters, or joins as a custom character with baseline stats.
"""

from __future__ import annotations

from collections.abc import Sequence

from pydantic import BaseModel, Field

from rpg_arena.models import Character, Stats
from rpg_arena.rules import compute_max_hp, derive_stats

CUSTOM_CHARACTER_ID = "__custom__"
CUSTOM_DEFAULT_PERSONA = "你是一个冒险者。"

SCENARIO_PRESETS: list[dict[str, str]] = [
    {"id": "dungeon", "label": "地下城探索", "description": "一行人深入危险的地下迷宫，面对怪物和陷阱。"},
    {"id": "social", "label": "社交谋略", "description": "在一场盛大的宴会上，各方势力暗中角力，真相隐藏在华丽的面具之下。"},
    {"id": "survival", "label": "荒野求生", "description": "被困在荒无人烟的绝境中，必须团结合作才能生还。"},
    {"id": "custom", "label": "自定义", "description": ""},
]


class CharacterProfile(BaseModel):
    """Setup-time description of a playable character."""

    id: str
    name: str
    traits: list[str] = Field(default_factory=list)
    system_prompt: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.8
    max_tokens: int = 512


def _with_full_hp(stats: Stats) -> dict:
    max_hp = compute_max_hp(stats.willpower)
    return {"stats": stats, "hp": max_hp, "max_hp": max_hp}


def build_character(profile: CharacterProfile, user_controlled: bool = False) -> Character:
    return Character(
        id=profile.id,
        name=profile.name,
        is_user_controlled=user_controlled,
        system_prompt=profile.system_prompt,
        model=profile.model,
        temperature=profile.temperature,
        max_tokens=profile.max_tokens,
        **_with_full_hp(derive_stats(profile.traits)),
    )


def build_custom_character(name: str, description: str = "") -> Character:
    """The player's own character: no traits, always human-controlled."""
    return Character(
        id=CUSTOM_CHARACTER_ID,
        name=name.strip(),
        is_user_controlled=True,
        system_prompt=description.strip() or CUSTOM_DEFAULT_PERSONA,
        model="gpt-4o-mini",
        temperature=0.8,
        max_tokens=512,
        **_with_full_hp(Stats()),
    )


def build_roster(
    profiles: Sequence[CharacterProfile],
    selected_ids: Sequence[str],
    user_character_id: str | None = None,
    custom: tuple[str, str] | None = None,
) -> list[Character]:
    """Characters for the picked ids, in first-pick order, custom character last.

    Unknown and repeated ids are skipped. `custom` is (name, description).
    The player controls at most one character, so taking over a picked
    character and joining as a custom one are exclusive.
    """
    if user_character_id is not None and custom is not None:
        raise ValueError("Choose either a selected character or a custom character, not both")
    by_id = {p.id: p for p in profiles}
    roster = [
        build_character(by_id[cid], user_controlled=cid == user_character_id)
        for cid in dict.fromkeys(selected_ids)
        if cid in by_id
    ]
    if custom is not None:
        roster.append(build_custom_character(*custom))
    return roster


def scenario_background(scenario_id: str, custom_background: str = "") -> str:
    """Scene text for a preset; the custom preset uses the caller's text."""
    if scenario_id == "custom":
        return custom_background.strip()
    for preset in SCENARIO_PRESETS:
        if preset["id"] == scenario_id:
            return preset["description"]
    raise KeyError(f"Unknown scenario: {scenario_id}")
