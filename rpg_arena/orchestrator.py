"""Game orchestrator — runs rounds of GM narration, character turns and resolution.

Round flow:
  1. gm-narration    GM describes the scene (opening request on an empty log).
  2. player-actions  Characters at the head of turn_queue act one at a time:
                       AI    → model declares an action; it is typed by keyword
                               cues and rolled against the DC table.
                       human → the game suspends until submit_action().
  3. resolution      GM adjudicates every action of the round. Annotations in
                     its reply update HP and conditions; each new elimination
                     is announced; round+1 and the queue is rebuilt.
  The game ends once at most one character is left standing.

Suspension points: a model call in flight, a pause (checked before each
narration call and before each AI character's call), a human turn, and a
failed call (waiting for retry()). run() advances until one of them is hit.

Every step works on a deep copy of the committed GameState and commits it back
only if nothing else committed in the meantime (GameState.version). reset()
moves to a new epoch, so completions of calls issued before it are dropped.
A failed step commits nothing, which is what lets retry() re-issue exactly
that step.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Sequence
from typing import Literal

from pydantic import BaseModel, ConfigDict

from rpg_arena.annotations import apply_annotations
from rpg_arena.llm import LLM
from rpg_arena.models import (
    Character,
    ChatMessage,
    DiceRoll,
    GameEvent,
    GameState,
    RoundAction,
)
from rpg_arena.prompts import (
    GAME_RULES,
    build_character_action_messages,
    build_gm_narration_messages,
    build_gm_resolution_messages,
    build_gm_system_prompt,
)
from rpg_arena.rules import build_turn_queue, classify_action, format_roll, roll_for_action

logger = logging.getLogger(__name__)

Status = Literal["idle", "running", "paused", "awaiting-user", "error", "game-over"]

GM_SPEAKER = "GM"
SYSTEM_SPEAKER = "系统"

STEP_FAILURE_MESSAGES: dict[str, str] = {
    "gm-narration": "GM叙述失败",
    "player-actions": "角色行动失败",
    "resolution": "GM结算失败",
}


class GenerationParams(BaseModel):
    """Model parameters for one kind of request."""

    model_config = ConfigDict(frozen=True)

    model: str = "gpt-4o-mini"
    temperature: float = 0.9
    max_tokens: int = 2048


class OrchestratorError(RuntimeError):
    """Raised when an operation does not fit the current game status."""


class GameView(BaseModel):
    """Read-only snapshot for presentation code."""

    state: GameState
    status: Status
    error: str | None = None
    paused: bool = False
    thinking: str | None = None  # who is generating right now
    streaming_text: str | None = None  # partial text of the call in flight
    current_turn: str | None = None  # character id at the head of the queue
    last_roll: DiceRoll | None = None


class Orchestrator:
    """Drives one game. The only writer of its GameState.

    Args:
        state:        Initial game state (see new_game()).
        llm:          Language model client.
        gm:           Model parameters for GM narration and resolution.
        rules:        Rules text leading the GM system prompt.
        turn_delay:   Seconds to wait between AI character turns.
        round_delay:  Seconds to wait before narrating the next round.
        listener:     Called with the orchestrator after every visible change.
        rng:          Random source for dice; module random when omitted.
    """

    def __init__(
        self,
        state: GameState,
        llm: LLM,
        *,
        gm: GenerationParams = GenerationParams(),
        rules: str = GAME_RULES,
        turn_delay: float = 0.0,
        round_delay: float = 0.0,
        listener: Callable[[Orchestrator], None] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._initial = state.model_copy(deep=True)
        self._state = state
        self._llm = llm
        self._gm = gm
        self._rules = rules
        self._turn_delay = turn_delay
        self._round_delay = round_delay
        self._listener = listener
        self._rng = rng

        self._epoch = 0
        self._active_epoch: int | None = None
        self._pause_requested = False

        self.status: Status = "game-over" if state.game_over else "idle"
        self.error: str | None = None
        self.thinking: str | None = None
        self.streaming_text: str | None = None
        self.last_roll: DiceRoll | None = None

    @classmethod
    def new_game(
        cls, characters: Sequence[Character], scene: str, llm: LLM, **kwargs
    ) -> Orchestrator:
        roster = [c.model_copy(deep=True) for c in characters]
        state = GameState(
            scene=scene,
            characters=roster,
            turn_queue=build_turn_queue(roster),
        )
        return cls(state, llm, **kwargs)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> GameState:
        """The committed state. Callers must not mutate it; see snapshot()."""
        return self._state

    @property
    def paused(self) -> bool:
        return self._pause_requested

    @property
    def current_turn(self) -> str | None:
        if self._state.phase == "player-actions" and self._state.turn_queue:
            return self._state.turn_queue[0]
        return None

    def snapshot(self) -> GameView:
        return GameView(
            state=self._state.model_copy(deep=True),
            status=self.status,
            error=self.error,
            paused=self._pause_requested,
            thinking=self.thinking,
            streaming_text=self.streaming_text,
            current_turn=self.current_turn,
            last_roll=self.last_roll,
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Advance the game until the next suspension point.

        A no-op while another run() of the same epoch is already advancing.
        """
        epoch = self._epoch
        if self._active_epoch == epoch or self.status == "game-over":
            return
        self._active_epoch = epoch
        self._set_status("running")
        try:
            while await self._step(epoch):
                pass
        except Exception as e:
            # A step that fails outside its model call commits nothing either.
            if epoch == self._epoch:
                logger.exception("%s step failed (round %d)", self._state.phase, self._state.round)
                self._fail(str(e) or STEP_FAILURE_MESSAGES[self._state.phase])
        finally:
            if self._active_epoch == epoch:
                self._active_epoch = None

    def pause(self) -> None:
        """Stop before the next narration or AI turn. An in-flight call finishes."""
        self._pause_requested = True
        logger.info("Pause requested (round %d, %s)", self._state.round, self._state.phase)
        self._notify()

    async def resume(self) -> None:
        """Clear a pause and, if suspended by it, continue where the game stopped."""
        self._pause_requested = False
        if self.status == "paused":
            logger.info("Resuming (round %d, %s)", self._state.round, self._state.phase)
            await self.run()
        else:
            self._notify()

    async def retry(self) -> None:
        """Re-issue the step whose model call failed."""
        if self.status != "error":
            raise OrchestratorError("There is no failed step to retry")
        logger.info("Retrying %s step (round %d)", self._state.phase, self._state.round)
        self.error = None
        await self.run()

    def record_player_action(self, action_type: str, description: str) -> None:
        """Roll and log the human player's action without advancing the game.

        The explicit action type bypasses keyword classification. Follow with
        run() to continue the round.
        """
        if self.status != "awaiting-user" or self.current_turn is None:
            raise OrchestratorError("No player action is pending")
        description = description.strip()
        if not description:
            raise OrchestratorError("Action description is empty")

        working = self._working_copy()
        character = working.find(working.turn_queue[0])
        self._record_action(working, character, action_type, description)
        self.status = "idle"
        self._commit(working)

    async def submit_action(self, action_type: str, description: str) -> None:
        """Record the human player's action and continue the round."""
        self.record_player_action(action_type, description)
        await self.run()

    def reset(self) -> None:
        """Start over from the initial roster and scene.

        Calls still in flight complete into the previous epoch and are dropped.
        """
        self._epoch += 1
        version = self._state.version + 1
        self._state = self._initial.model_copy(deep=True)
        self._state.version = version
        self._pause_requested = False
        self.error = None
        self.thinking = None
        self.streaming_text = None
        self.last_roll = None
        logger.info("Game reset")
        self._set_status("idle")

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    async def _step(self, epoch: int) -> bool:
        """Perform the next step. Returns False at a suspension point."""
        if epoch != self._epoch:
            return False
        state = self._state

        if state.game_over:
            self._set_status("game-over")
            return False

        if state.phase == "gm-narration":
            if self._suspend_if_paused():
                return False
            return await self._narrate(epoch)

        if state.phase == "player-actions":
            if not state.turn_queue:
                working = self._working_copy()
                working.phase = "resolution"
                return self._commit(working)

            character = state.find(state.turn_queue[0])
            if character is None or character.eliminated:
                working = self._working_copy()
                working.turn_queue.pop(0)
                return self._commit(working)
            if character.is_user_controlled:
                logger.info("Waiting for player action from %s", character.name)
                self._set_status("awaiting-user")
                return False
            if self._suspend_if_paused():
                return False
            return await self._character_turn(epoch, character.id)

        return await self._resolve(epoch)

    async def _narrate(self, epoch: int) -> bool:
        working = self._working_copy()
        messages = build_gm_narration_messages(self._gm_system_prompt(working), working.log)

        text = await self._call(epoch, GM_SPEAKER, messages, self._gm, "GM叙述请求失败")
        if text is None:
            return False

        working.log.append(GameEvent(kind="narration", speaker=GM_SPEAKER, content=text))
        working.phase = "player-actions"
        working.round_actions = []
        logger.info("Round %d narrated; %d characters to act", working.round, len(working.turn_queue))
        return self._commit(working)

    async def _character_turn(self, epoch: int, char_id: str) -> bool:
        working = self._working_copy()
        character = working.find(char_id)
        messages = build_character_action_messages(character, working.scene, working.log)
        params = GenerationParams(
            model=character.model,
            temperature=character.temperature,
            max_tokens=character.max_tokens,
        )

        text = await self._call(
            epoch, character.name, messages, params, f"{character.name}行动请求失败"
        )
        if text is None:
            return False

        action = text.strip()
        self._record_action(working, character, classify_action(action), action)
        if not self._commit(working):
            return False
        if self._turn_delay and working.turn_queue:
            await asyncio.sleep(self._turn_delay)
        return epoch == self._epoch

    async def _resolve(self, epoch: int) -> bool:
        working = self._working_copy()
        messages = build_gm_resolution_messages(
            self._gm_system_prompt(working), working.round_actions, working.log
        )

        text = await self._call(epoch, GM_SPEAKER, messages, self._gm, "GM结算请求失败")
        if text is None:
            return False

        working.log.append(GameEvent(kind="result", speaker=GM_SPEAKER, content=text))
        for character in apply_annotations(working.characters, text):
            logger.info("%s eliminated in round %d", character.name, working.round)
            working.log.append(GameEvent(
                kind="system", speaker=SYSTEM_SPEAKER, content=f"{character.name} 已被淘汰！",
            ))

        working.round += 1
        working.phase = "gm-narration"
        working.turn_queue = build_turn_queue(working.characters)
        working.round_actions = []
        self.last_roll = None

        alive = working.alive()
        if len(alive) <= 1:
            working.game_over = True
            if alive:
                content = f"游戏结束！{alive[0].name} 是最后的幸存者！"
            else:
                content = "游戏结束！所有角色均已淘汰。"
            working.log.append(GameEvent(kind="system", speaker=SYSTEM_SPEAKER, content=content))
            logger.info("Game over after round %d", working.round - 1)

        if not self._commit(working):
            return False
        if not working.game_over and self._round_delay:
            await asyncio.sleep(self._round_delay)
        return epoch == self._epoch

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _gm_system_prompt(self, state: GameState) -> str:
        return build_gm_system_prompt(self._rules, state.scene, state.characters, state.round)

    async def _call(
        self,
        epoch: int,
        speaker: str,
        messages: list[ChatMessage],
        params: GenerationParams,
        failure_message: str,
    ) -> str | None:
        """Issue one model call. Returns None if it failed or went stale.

        Partial text only feeds `streaming_text`; the caller commits the final
        text.
        """
        self.thinking = speaker
        self.streaming_text = ""
        self._set_status("running")

        def on_chunk(partial: str) -> None:
            if epoch == self._epoch:
                self.streaming_text = partial
                self._notify()

        try:
            text = await self._llm(
                messages,
                model=params.model,
                temperature=params.temperature,
                max_tokens=params.max_tokens,
                on_chunk=on_chunk,
            )
        except Exception as e:
            # Every client failure stops forward progress until retry().
            if epoch != self._epoch:
                return None
            logger.warning("Model call for %s failed: %s", speaker, e)
            self._fail(str(e) or failure_message)
            return None

        if epoch != self._epoch:
            logger.debug("Dropping stale completion for %s", speaker)
            return None
        self.thinking = None
        self.streaming_text = None
        return text

    def _record_action(
        self, state: GameState, character: Character, action_type: str, text: str
    ) -> None:
        """Roll for the character at the head of the queue and log the action."""
        roll = roll_for_action(character, action_type, self._rng)
        self.last_roll = roll
        state.log.append(GameEvent(kind="action", speaker=character.name, content=text))
        state.log.append(GameEvent(
            kind="roll",
            speaker=character.name,
            content=f"{character.name} {format_roll(roll)}",
            roll=roll,
        ))
        state.round_actions.append(RoundAction(char_name=character.name, action=text, roll=roll))
        state.turn_queue.pop(0)
        logger.debug("%s acted (%s): %s", character.name, action_type, format_roll(roll))

    def _working_copy(self) -> GameState:
        return self._state.model_copy(deep=True)

    def _commit(self, working: GameState) -> bool:
        if working.version != self._state.version:
            logger.debug("Discarding stale state (v%d, current v%d)",
                         working.version, self._state.version)
            return False
        working.version += 1
        self._state = working
        self._notify()
        return True

    def _suspend_if_paused(self) -> bool:
        if not self._pause_requested:
            return False
        logger.info("Paused (round %d, %s)", self._state.round, self._state.phase)
        self._set_status("paused")
        return True

    def _fail(self, message: str) -> None:
        """Stop forward progress until retry(); committed state is untouched."""
        self.thinking = None
        self.streaming_text = None
        self.error = message
        self._set_status("error")

    def _set_status(self, status: Status) -> None:
        self.status = status
        self._notify()

    def _notify(self) -> None:
        if self._listener is None:
            return
        try:
            self._listener(self)
        except Exception:
            # Presentation failures never stall the game.
            logger.exception("Game listener failed")
