import random

import pytest

from rpg_arena.roster import CharacterProfile

PROFILES = [
    CharacterProfile(
        id="ayla", name="艾拉", traits=["剑道至上", "坚韧不拔"],
        system_prompt="你是艾拉，一名沉默寡言的剑士。", model="gpt-4o-mini", temperature=0.7,
    ),
    CharacterProfile(
        id="bram", name="布拉姆", traits=["暴力倾向"],
        system_prompt="你是布拉姆，一个脾气暴躁的佣兵。", model="gpt-4o", temperature=0.9,
    ),
    CharacterProfile(
        id="cyra", name="希拉", traits=["冷静分析", "神秘莫测"],
        system_prompt="你是希拉，一位冷静的学者。", model="claude-sonnet-4-5-20250929",
        temperature=0.5, max_tokens=256,
    ),
]


@pytest.fixture
def profiles() -> list[CharacterProfile]:
    """Three playable profiles; fresh copies per test."""
    return [p.model_copy(deep=True) for p in PROFILES]


@pytest.fixture
def rng() -> random.Random:
    """Seeded random source so dice are reproducible within a test."""
    return random.Random(1234)
