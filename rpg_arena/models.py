"""Core domain models.

The orchestrator, prompt builder and annotation parser all operate on these
types. Pydantic is used for validation and serialisation at every boundary
(HTTP bodies, snapshots handed to presentation code).
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Phase = Literal["gm-narration", "player-actions", "resolution"]

EventKind = Literal[
    "narration",
    "action",
    "roll",
    "result",
    "system",
    "user",
]

Role = Literal["system", "user", "assistant"]

StatName = Literal["strength", "agility", "intellect", "charisma", "willpower"]


class Stats(BaseModel):
    """The five character stats. Unclamped; 10 is the baseline."""

    strength: int = 10
    agility: int = 10
    intellect: int = 10
    charisma: int = 10
    willpower: int = 10

    def get(self, name: StatName) -> int:
        return getattr(self, name)


class DiceRoll(BaseModel):
    model_config = ConfigDict(frozen=True)

    dice: str = "d20"
    value: int
    modifier: int
    total: int
    dc: int | None = None
    success: bool | None = None  # None when rolled without a DC


class GameEvent(BaseModel):
    """One entry in the append-only game log. Never edited once appended."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    speaker: str
    content: str
    roll: DiceRoll | None = None


class Character(BaseModel):
    """A participant in the game, AI-driven or human-driven."""

    id: str
    name: str
    hp: int
    max_hp: int
    stats: Stats = Field(default_factory=Stats)
    conditions: list[str] = Field(default_factory=list)
    eliminated: bool = False
    is_user_controlled: bool = False
    # generation parameters for this character's own model calls
    system_prompt: str = ""
    model: str = "gpt-4o-mini"
    temperature: float = 0.8
    max_tokens: int = 512


class RoundAction(BaseModel):
    """An action declared this round, waiting for GM resolution."""

    char_name: str
    action: str
    roll: DiceRoll


class GameState(BaseModel):
    """Authoritative state of one running game.

    `turn_queue` holds the ids still owed a turn this round and doubles as the
    resume cursor: a suspended game continues from its head. `version` is
    bumped on every commit so late completions can detect they are stale.
    """

    phase: Phase = "gm-narration"
    round: int = 1
    scene: str
    characters: list[Character]
    log: list[GameEvent] = Field(default_factory=list)
    turn_queue: list[str] = Field(default_factory=list)
    round_actions: list[RoundAction] = Field(default_factory=list)
    game_over: bool = False
    version: int = 0

    def find(self, char_id: str) -> Character | None:
        for c in self.characters:
            if c.id == char_id:
                return c
        return None

    def alive(self) -> list[Character]:
        return [c for c in self.characters if not c.eliminated]


class ChatMessage(BaseModel):
    """A role-tagged message sent to the language model."""

    role: Role
    content: str
