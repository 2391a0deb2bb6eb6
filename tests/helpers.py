"""Shared test helpers: a scripted LLM and a character builder."""

import asyncio
from collections.abc import Sequence

from rpg_arena.models import Character, ChatMessage, Stats
from rpg_arena.rules import compute_max_hp


class StubLLM:
    """Scripted LLM: returns canned responses in order and records every call.

    Each scripted response is one of:
      str                 — returned as the final text
      Exception instance  — raised
      callable(messages)  — called, its (awaited, if async) result is returned

    With `stream=True` the text is also fed to on_chunk in two halves first.
    """

    def __init__(self, responses: Sequence = (), *, stream: bool = False) -> None:
        self.responses = list(responses)
        self.stream = stream
        self.calls: list[dict] = []

    async def __call__(
        self,
        messages: Sequence[ChatMessage],
        *,
        model: str,
        temperature: float,
        max_tokens: int,
        on_chunk=None,
    ) -> str:
        self.calls.append({
            "messages": list(messages),
            "model": model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        })
        if not self.responses:
            raise AssertionError("StubLLM ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = response(messages)
            if asyncio.iscoroutine(response):
                response = await response
        if self.stream and on_chunk is not None:
            on_chunk(response[: len(response) // 2])
            on_chunk(response)
        return response

    def system_prompt(self, index: int) -> str:
        return self.calls[index]["messages"][0].content

    def user_prompt(self, index: int) -> str:
        return self.calls[index]["messages"][-1].content


def make_character(
    char_id: str,
    name: str | None = None,
    *,
    willpower: int = 10,
    user: bool = False,
    persona: str | None = None,
    **stats: int,
) -> Character:
    """A character at full HP; stats default to 10."""
    max_hp = compute_max_hp(willpower)
    return Character(
        id=char_id,
        name=name or char_id,
        hp=max_hp,
        max_hp=max_hp,
        stats=Stats(willpower=willpower, **stats),
        is_user_controlled=user,
        system_prompt=persona if persona is not None else f"你是{name or char_id}。",
        model=f"model-{char_id}",
        temperature=0.5,
        max_tokens=300,
    )
