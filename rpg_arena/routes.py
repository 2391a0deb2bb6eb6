"""FastAPI endpoints under /api.

  GET    /presets                 scenario presets, action types, trait table
  POST   /games                   start a game; it advances in the background
  GET    /games/{id}              current view (state, status, streaming text)
  POST   /games/{id}/pause        stop before the next narration / AI turn
  POST   /games/{id}/resume       continue from where the game stopped
  POST   /games/{id}/retry        re-issue the step whose model call failed
  POST   /games/{id}/action       submit the human player's action
  POST   /games/{id}/reset        restart with the initial roster and scene
  DELETE /games/{id}              drop the game

Games live in app.state.games for the lifetime of the process only.
"""

import logging
import uuid

from fastapi import APIRouter, BackgroundTasks, HTTPException, Request

from rpg_arena.llm import HttpLLM
from rpg_arena.orchestrator import GenerationParams, Orchestrator, OrchestratorError
from rpg_arena.roster import SCENARIO_PRESETS, build_roster, scenario_background
from rpg_arena.rules import ACTION_TYPES, TRAIT_STAT_MAP

from .schemas import NewGame, PlayerAction

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_game(request: Request, game_id: str) -> Orchestrator:
    game = request.app.state.games.get(game_id)
    if game is None:
        raise HTTPException(404, "Game not found")
    return game


def _view(game_id: str, game: Orchestrator) -> dict:
    return {"id": game_id, **game.snapshot().model_dump()}


@router.get("/presets")
async def get_presets():
    """Scenario presets, player action types and the trait table."""
    return {
        "scenarios": SCENARIO_PRESETS,
        "action_types": [
            {"id": action_id, "label": label, "stat": stat, "dc": dc}
            for action_id, (stat, dc, label) in ACTION_TYPES.items()
        ],
        "traits": TRAIT_STAT_MAP,
    }


@router.post("/games")
async def create_game(body: NewGame, request: Request, background: BackgroundTasks):
    """Build the roster, create the game and start the first round."""
    settings = request.app.state.settings
    llm = request.app.state.llm
    if llm is None:
        if not settings.has_credentials:
            raise HTTPException(400, "LLM API key is not configured")
        llm = HttpLLM(
            settings.llm_provider,
            settings.llm_api_key,
            base_url=settings.llm_base_url,
            proxy_url=settings.llm_proxy_url,
            timeout=settings.llm_timeout,
        )

    try:
        scene = scenario_background(body.scenario_id, body.background)
    except KeyError as e:
        raise HTTPException(400, str(e))
    if not scene:
        raise HTTPException(400, "Scene description is empty")

    if body.user_character_id and body.user_character_id not in body.selected_ids:
        raise HTTPException(400, "Player character must be one of the selected characters")

    custom = None
    if body.custom_character is not None:
        custom = (body.custom_character.name, body.custom_character.description)
    try:
        roster = build_roster(
            body.characters, body.selected_ids, body.user_character_id or None, custom
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not any(c.id in body.selected_ids for c in roster):
        raise HTTPException(400, "Select at least one character")

    game = Orchestrator.new_game(
        roster,
        scene,
        llm,
        gm=GenerationParams(
            model=settings.gm_model,
            temperature=settings.gm_temperature,
            max_tokens=settings.gm_max_tokens,
        ),
        turn_delay=settings.turn_delay,
        round_delay=settings.round_delay,
    )
    game_id = uuid.uuid4().hex[:12]
    request.app.state.games[game_id] = game
    logger.info("Game %s created with %d characters", game_id, len(roster))

    background.add_task(game.run)
    return _view(game_id, game)


@router.get("/games/{game_id}")
async def get_game(game_id: str, request: Request):
    """Current game view, including partial text of the call in flight."""
    return _view(game_id, _get_game(request, game_id))


@router.post("/games/{game_id}/pause")
async def pause_game(game_id: str, request: Request):
    game = _get_game(request, game_id)
    game.pause()
    return _view(game_id, game)


@router.post("/games/{game_id}/resume")
async def resume_game(game_id: str, request: Request, background: BackgroundTasks):
    game = _get_game(request, game_id)
    background.add_task(game.resume)
    return _view(game_id, game)


@router.post("/games/{game_id}/retry")
async def retry_game(game_id: str, request: Request, background: BackgroundTasks):
    game = _get_game(request, game_id)
    if game.status != "error":
        raise HTTPException(409, "There is no failed step to retry")
    background.add_task(game.retry)
    return _view(game_id, game)


@router.post("/games/{game_id}/action")
async def submit_action(
    game_id: str, body: PlayerAction, request: Request, background: BackgroundTasks
):
    """Record the human player's action; the round continues in the background."""
    game = _get_game(request, game_id)
    try:
        game.record_player_action(body.action_type, body.description)
    except OrchestratorError as e:
        raise HTTPException(409, str(e))
    background.add_task(game.run)
    return _view(game_id, game)


@router.post("/games/{game_id}/reset")
async def reset_game(game_id: str, request: Request, background: BackgroundTasks):
    game = _get_game(request, game_id)
    game.reset()
    background.add_task(game.run)
    return _view(game_id, game)


@router.delete("/games/{game_id}")
async def delete_game(game_id: str, request: Request):
    game = _get_game(request, game_id)
    game.pause()
    del request.app.state.games[game_id]
    return {"ok": True}
