"""Tests for rpg_arena.prompts — template rendering and message assembly."""

import pytest

from helpers import make_character
from rpg_arena.models import DiceRoll, GameEvent, RoundAction
from rpg_arena.prompts import (
    GAME_RULES,
    OPENING_REQUEST,
    TURN_REQUEST,
    PromptError,
    build_character_action_messages,
    build_gm_narration_messages,
    build_gm_resolution_messages,
    build_gm_system_prompt,
    format_event,
    format_log,
    format_roster_line,
    format_stats,
    recent,
    render_prompt,
)

BASELINE_STATS = "STR:10(+0) AGI:10(+0) INT:10(+0) CHA:10(+0) WIL:10(+0)"


def _events(n: int) -> list[GameEvent]:
    return [GameEvent(kind="narration", speaker="GM", content=f"e{i:02d}") for i in range(n)]


# ---------------------------------------------------------------------------
# render_prompt
# ---------------------------------------------------------------------------

class TestRenderPrompt:
    def test_simple_substitution(self) -> None:
        assert render_prompt("Hello {{name}}!", {"name": "艾拉"}) == "Hello 艾拉!"

    def test_triple_stash_is_not_escaped(self) -> None:
        assert render_prompt("{{{text}}}", {"text": "<b>&</b>"}) == "<b>&</b>"

    def test_if_block(self) -> None:
        tpl = "{{#if flag}}yes{{else}}no{{/if}}"
        assert render_prompt(tpl, {"flag": True}) == "yes"
        assert render_prompt(tpl, {"flag": False}) == "no"

    def test_missing_variable_renders_empty(self) -> None:
        assert render_prompt("[{{missing}}]", {}) == "[]"

    def test_cache_returns_same_result(self) -> None:
        tpl = "{{a}}-{{b}}"
        assert render_prompt(tpl, {"a": "1", "b": "2"}) == render_prompt(tpl, {"a": "1", "b": "2"})

    def test_missing_partial_raises_prompt_error(self) -> None:
        with pytest.raises(PromptError):
            render_prompt("{{> missing_partial}}", {})


# ---------------------------------------------------------------------------
# Log digest
# ---------------------------------------------------------------------------

class TestLogDigest:
    @pytest.mark.parametrize("kind,speaker,expected", [
        ("narration", "GM", "[GM]: 内容"),
        ("action", "艾拉", "[艾拉的行动]: 内容"),
        ("roll", "艾拉", "[骰子] 内容"),
        ("result", "GM", "[结果]: 内容"),
        ("system", "系统", "[系统]: 内容"),
        ("user", "玩家", "[玩家]: 内容"),
    ])
    def test_per_kind_tag(self, kind: str, speaker: str, expected: str) -> None:
        assert format_event(GameEvent(kind=kind, speaker=speaker, content="内容")) == expected

    def test_format_log_joins_oldest_first(self) -> None:
        assert format_log(_events(3)) == "[GM]: e00\n[GM]: e01\n[GM]: e02"

    def test_recent_window(self) -> None:
        log = _events(20)
        assert [e.content for e in recent(log, 3)] == ["e17", "e18", "e19"]
        assert len(recent(log[:2], 8)) == 2
        assert recent(log, 0) == []


# ---------------------------------------------------------------------------
# GM system prompt
# ---------------------------------------------------------------------------

class TestGmSystemPrompt:
    def test_format_stats(self) -> None:
        c = make_character("a", strength=14, agility=7)
        assert format_stats(c) == "STR:14(+2) AGI:7(-2) INT:10(+0) CHA:10(+0) WIL:10(+0)"

    def test_roster_line_standing(self) -> None:
        c = make_character("a", "艾拉")
        assert format_roster_line(c) == f"- 艾拉: HP: 40/40 | {BASELINE_STATS}"

    def test_roster_line_with_conditions(self) -> None:
        c = make_character("a", "艾拉")
        c.hp = 31
        c.conditions = ["中毒", "眩晕"]
        assert format_roster_line(c) == f"- 艾拉: HP: 31/40 状态: 中毒, 眩晕 | {BASELINE_STATS}"

    def test_roster_line_eliminated(self) -> None:
        c = make_character("a", "艾拉")
        c.hp = 0
        c.eliminated = True
        assert format_roster_line(c) == f"- 艾拉: 【已淘汰】 | {BASELINE_STATS}"

    def test_full_system_prompt(self) -> None:
        chars = [make_character("a", "艾拉"), make_character("b", "布拉姆", willpower=8)]
        prompt = build_gm_system_prompt(GAME_RULES, "地牢深处。", chars, 3)
        expected = (
            f"{GAME_RULES}\n\n"
            "【当前场景】\n地牢深处。\n\n"
            "【第3轮】\n\n"
            "【角色状态】\n"
            f"- 艾拉: HP: 40/40 | {BASELINE_STATS}\n"
            "- 布拉姆: HP: 36/36 | STR:10(+0) AGI:10(+0) INT:10(+0) CHA:10(+0) WIL:8(-1)"
        )
        assert prompt == expected

    def test_rules_describe_annotation_format(self) -> None:
        assert "[HP变动: 角色名 -5]" in GAME_RULES
        assert "[状态: 角色名 +状态名]" in GAME_RULES

    def test_scene_passes_through_unescaped(self) -> None:
        prompt = build_gm_system_prompt("R", "门上刻着 <符文> & 记号", [], 1)
        assert "门上刻着 <符文> & 记号" in prompt


# ---------------------------------------------------------------------------
# GM narration / resolution
# ---------------------------------------------------------------------------

class TestGmNarrationMessages:
    def test_empty_log_sends_opening_request(self) -> None:
        messages = build_gm_narration_messages("SYS", [])
        assert [m.role for m in messages] == ["system", "user"]
        assert messages[0].content == "SYS"
        assert messages[1].content == OPENING_REQUEST

    def test_uses_last_15_events(self) -> None:
        user = build_gm_narration_messages("SYS", _events(20))[1].content
        assert "[GM]: e04" not in user
        assert "[GM]: e05" in user
        assert "[GM]: e19" in user
        assert user.startswith("以下是最近发生的事件：\n[GM]: e05\n")
        assert user.endswith("请描述当前场景的最新发展。")

    def test_single_event_renders_digest(self) -> None:
        log = [GameEvent(kind="narration", speaker="GM", content="石门打开。")]
        user = build_gm_narration_messages("SYS", log)[1].content
        assert user == "以下是最近发生的事件：\n[GM]: 石门打开。\n\n请描述当前场景的最新发展。"


class TestGmResolutionMessages:
    def _actions(self) -> list[RoundAction]:
        return [
            RoundAction(
                char_name="艾拉", action="举剑攻击。",
                roll=DiceRoll(value=14, modifier=2, total=16, dc=12, success=True),
            ),
            RoundAction(
                char_name="布拉姆", action="躲到柱子后面。",
                roll=DiceRoll(value=3, modifier=0, total=3, dc=10, success=False),
            ),
        ]

    def test_action_lines(self) -> None:
        user = build_gm_resolution_messages("SYS", self._actions(), [])[1].content
        assert "艾拉: 举剑攻击。 | 骰子: d20(14)+2=16 vs DC12 成功" in user
        assert "布拉姆: 躲到柱子后面。 | 骰子: d20(3)+0=3 vs DC10 失败" in user
        assert "最近事件" not in user

    def test_uses_last_10_events(self) -> None:
        user = build_gm_resolution_messages("SYS", self._actions(), _events(20))[1].content
        assert "[GM]: e09" not in user
        assert "[GM]: e10" in user
        assert "[GM]: e19" in user
        assert user.endswith("如有HP变动或状态变化，请在末尾标注。")

    def test_recent_events_section_renders_digest(self) -> None:
        log = [GameEvent(kind="result", speaker="GM", content="骷髅倒下。")]
        user = build_gm_resolution_messages("SYS", self._actions(), log)[1].content
        assert "最近事件：\n[结果]: 骷髅倒下。" in user

    def test_system_prompt_is_shared(self) -> None:
        messages = build_gm_resolution_messages("SYS", self._actions(), [])
        assert messages[0].role == "system"
        assert messages[0].content == "SYS"


# ---------------------------------------------------------------------------
# Character action
# ---------------------------------------------------------------------------

class TestCharacterActionMessages:
    def test_persona_scene_and_turn_request(self) -> None:
        c = make_character("a", "艾拉", persona="你是艾拉，一名剑士。")
        messages = build_character_action_messages(c, "古老的神殿。", [])
        system, user = messages
        assert system.role == "system"
        assert system.content.startswith("你是艾拉，一名剑士。\n\n【游戏模式】")
        assert "当前场景：古老的神殿。" in system.content
        assert "【最近发生的事】" not in system.content
        assert user.role == "user"
        assert user.content == TURN_REQUEST

    def test_uses_last_8_events(self) -> None:
        c = make_character("a")
        system = build_character_action_messages(c, "S", _events(20))[0].content
        assert "【最近发生的事】" in system
        assert "[GM]: e11" not in system
        assert "[GM]: e12" in system
        assert "[GM]: e19" in system

    def test_response_format_hint(self) -> None:
        system = build_character_action_messages(make_character("a"), "S", [])[0].content
        assert "以动作开头" in system
