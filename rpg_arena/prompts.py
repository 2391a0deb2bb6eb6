"""Prompt construction for the three model requests of a round.

  GM narration    system(rules + scene + round + roster) / user(opening or recent log)
  GM resolution   system(same) / user(this round's actions + rolls + recent log)
  Character turn  system(persona + scene + recent log) / user(fixed "your turn")

Templates are Handlebars, rendered with pybars. Values are inserted with
triple-stash ({{{...}}}) so scene text and narration reach the model as-is.
The log digest is built once by format_log() and shared by every request.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

import pybars

from rpg_arena.models import Character, ChatMessage, GameEvent, RoundAction
from rpg_arena.rules import format_modifier, format_roll, get_stat_modifier

NARRATION_LOG_WINDOW = 15
RESOLUTION_LOG_WINDOW = 10
ACTION_LOG_WINDOW = 8

OPENING_REQUEST = "游戏开始。请描述开场场景，为角色们设定初始情境。"
TURN_REQUEST = "现在轮到你行动了。请宣布你的行动。"

GAME_RULES = """你是这场桌游RPG的主持人（GM）。
你负责描述场景、扮演非玩家角色，并根据角色的行动和骰子结果裁定发生了什么。

【规则】
- 每轮先由你叙述局势，然后每位角色宣布一个行动并掷一次d20。
- 骰子总值大于等于难度（DC）即为成功，否则失败。请尊重骰子结果。
- HP降到0的角色被淘汰，不能再行动。
- 叙述要生动简洁，每次不超过三段。

【标注格式】
裁定结束时，用以下格式在末尾标注每一项数值变化（每项单独一个标注）：
[HP变动: 角色名 -5]  或  [HP变动: 角色名 +3]
[状态: 角色名 +状态名]  或  [状态: 角色名 -状态名]
角色名必须与角色状态中的名字完全一致。没有变化时不要标注。"""

GM_SYSTEM_TEMPLATE = """{{{rules}}}

【当前场景】
{{{scene}}}

【第{{round}}轮】

【角色状态】
{{{roster}}}"""

ROSTER_LINE_TEMPLATE = (
    "- {{{name}}}: "
    "{{#if eliminated}}【已淘汰】{{else}}HP: {{hp}}/{{max_hp}}{{/if}}"
    "{{#if conditions}} 状态: {{{conditions}}}{{/if}}"
    " | {{{stats}}}"
)

# Context keys must not reuse a pybars built-in helper name such as log or lookup.
NARRATION_TEMPLATE = "以下是最近发生的事件：\n{{{recent_events}}}\n\n请描述当前场景的最新发展。"

RESOLUTION_TEMPLATE = (
    "本轮所有角色的行动和骰子结果如下：\n{{{actions}}}"
    "{{#if recent_events}}\n\n最近事件：\n{{{recent_events}}}{{/if}}"
    "\n\n请裁定结果并叙述发生了什么。如有HP变动或状态变化，请在末尾标注。"
)

CHARACTER_ACTION_TEMPLATE = """{{{persona}}}

【游戏模式】
你正在参与一个桌游RPG。当前场景：{{{scene}}}{{#if recent_events}}

【最近发生的事】
{{{recent_events}}}{{/if}}

根据当前局势和你的性格，宣布你想要采取的行动。
回复格式：简短描述你的行动（1-2句话），以动作开头。例如："举剑向敌人发起攻击。" 或 "尝试说服对方放下武器。\""""


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return "".join(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Log digest ───────────────────────────────────────────


_EVENT_FORMATS: dict[str, str] = {
    "narration": "[GM]: {content}",
    "action": "[{speaker}的行动]: {content}",
    "roll": "[骰子] {content}",
    "result": "[结果]: {content}",
    "system": "[系统]: {content}",
    "user": "[玩家]: {content}",
}


def format_event(event: GameEvent) -> str:
    fmt = _EVENT_FORMATS.get(event.kind, "{content}")
    return fmt.format(speaker=event.speaker, content=event.content)


def format_log(events: Sequence[GameEvent]) -> str:
    """One tagged line per event, oldest first."""
    return "\n".join(format_event(e) for e in events)


def recent(log: Sequence[GameEvent], window: int) -> list[GameEvent]:
    return list(log[-window:]) if window > 0 else []


# ── GM ───────────────────────────────────────────────────


def format_stats(character: Character) -> str:
    s = character.stats
    parts = [
        ("STR", s.strength),
        ("AGI", s.agility),
        ("INT", s.intellect),
        ("CHA", s.charisma),
        ("WIL", s.willpower),
    ]
    return " ".join(
        f"{label}:{value}({format_modifier(get_stat_modifier(value))})"
        for label, value in parts
    )


def format_roster_line(character: Character) -> str:
    return render_prompt(ROSTER_LINE_TEMPLATE, {
        "name": character.name,
        "eliminated": character.eliminated,
        "hp": str(character.hp),
        "max_hp": str(character.max_hp),
        "conditions": ", ".join(character.conditions),
        "stats": format_stats(character),
    })


def build_gm_system_prompt(
    rules: str, scene: str, characters: Sequence[Character], round_num: int
) -> str:
    return render_prompt(GM_SYSTEM_TEMPLATE, {
        "rules": rules,
        "scene": scene,
        "round": str(round_num),
        "roster": "\n".join(format_roster_line(c) for c in characters),
    })


def build_gm_narration_messages(
    system_prompt: str, log: Sequence[GameEvent]
) -> list[ChatMessage]:
    """Opening request on an empty log, otherwise the last 15 events."""
    if not log:
        user = OPENING_REQUEST
    else:
        user = render_prompt(NARRATION_TEMPLATE, {
            "recent_events": format_log(recent(log, NARRATION_LOG_WINDOW)),
        })
    return [
        ChatMessage(role="system", content=system_prompt),
        ChatMessage(role="user", content=user),
    ]


def format_actions(actions: Sequence[RoundAction]) -> str:
    return "\n".join(
        f"{a.char_name}: {a.action} | 骰子: {format_roll(a.roll)}" for a in actions
    )


def build_gm_resolution_messages(
    system_prompt: str, actions: Sequence[RoundAction], log: Sequence[GameEvent]
) -> list[ChatMessage]:
    user = render_prompt(RESOLUTION_TEMPLATE, {
        "actions": format_actions(actions),
        "recent_events": format_log(recent(log, RESOLUTION_LOG_WINDOW)),
    })
    return [
        ChatMessage(role="system", content=system_prompt),
        ChatMessage(role="user", content=user),
    ]


# ── Characters ───────────────────────────────────────────


def build_character_action_prompt(
    persona: str, scene: str, log: Sequence[GameEvent]
) -> str:
    return render_prompt(CHARACTER_ACTION_TEMPLATE, {
        "persona": persona,
        "scene": scene,
        "recent_events": format_log(recent(log, ACTION_LOG_WINDOW)),
    })


def build_character_action_messages(
    character: Character, scene: str, log: Sequence[GameEvent]
) -> list[ChatMessage]:
    return [
        ChatMessage(
            role="system",
            content=build_character_action_prompt(character.system_prompt, scene, log),
        ),
        ChatMessage(role="user", content=TURN_REQUEST),
    ]
