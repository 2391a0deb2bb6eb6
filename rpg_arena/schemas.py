"""Pydantic request models for API endpoints."""

from pydantic import BaseModel, Field

from rpg_arena.roster import CharacterProfile


class CustomCharacter(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""


class NewGame(BaseModel):
    characters: list[CharacterProfile]
    selected_ids: list[str]
    user_character_id: str | None = None
    custom_character: CustomCharacter | None = None
    scenario_id: str = "dungeon"
    background: str = ""


class PlayerAction(BaseModel):
    action_type: str = "custom"
    description: str = Field(min_length=1)
