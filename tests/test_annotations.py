"""Tests for rpg_arena.annotations — GM marker parsing and application."""

import pytest
from pydantic import ValidationError

from helpers import make_character
from rpg_arena.annotations import (
    ConditionChange,
    HpChange,
    apply_annotations,
    apply_condition_change,
    apply_hp_change,
    parse_condition_changes,
    parse_hp_changes,
)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestParseHpChanges:
    def test_single_marker(self) -> None:
        text = "剑光一闪，艾拉踉跄后退。[HP变动: 艾拉 -5] 众人屏住呼吸。"
        assert parse_hp_changes(text) == [HpChange(name="艾拉", delta=-5)]

    def test_positive_delta(self) -> None:
        assert parse_hp_changes("[HP变动: 布拉姆 +3]") == [HpChange(name="布拉姆", delta=3)]

    def test_no_markers(self) -> None:
        assert parse_hp_changes("夜色深沉，一切归于平静。") == []

    def test_same_name_twice_yields_two_entries_in_order(self) -> None:
        text = "[HP变动: 艾拉 -5]……[HP变动: 艾拉 +2]"
        assert parse_hp_changes(text) == [
            HpChange(name="艾拉", delta=-5),
            HpChange(name="艾拉", delta=2),
        ]

    def test_name_with_spaces(self) -> None:
        assert parse_hp_changes("[HP变动: Old Tom -4]") == [HpChange(name="Old Tom", delta=-4)]

    def test_unsigned_number_is_ignored(self) -> None:
        assert parse_hp_changes("[HP变动: 艾拉 5]") == []

    def test_malformed_marker_does_not_swallow_next(self) -> None:
        text = "[HP变动: 艾拉 很多] 然后 [HP变动: 布拉姆 -2]"
        assert parse_hp_changes(text) == [HpChange(name="布拉姆", delta=-2)]

    def test_unclosed_marker_is_ignored(self) -> None:
        assert parse_hp_changes("[HP变动: 艾拉 -5") == []


class TestParseConditionChanges:
    def test_add_and_remove(self) -> None:
        text = "[状态: 艾拉 +中毒] [状态: 布拉姆 -眩晕]"
        assert parse_condition_changes(text) == [
            ConditionChange(name="艾拉", condition="中毒", add=True),
            ConditionChange(name="布拉姆", condition="眩晕", add=False),
        ]

    def test_missing_sign_is_ignored(self) -> None:
        assert parse_condition_changes("[状态: 艾拉 中毒]") == []

    def test_no_markers(self) -> None:
        assert parse_condition_changes("[HP变动: 艾拉 -5]") == []

    def test_parsed_changes_are_immutable(self) -> None:
        hp = parse_hp_changes("[HP变动: 艾拉 -5]")[0]
        condition = parse_condition_changes("[状态: 艾拉 +中毒]")[0]
        with pytest.raises(ValidationError):
            hp.delta = 5
        with pytest.raises(ValidationError):
            condition.add = False


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

class TestApplyHpChange:
    def test_damage(self) -> None:
        c = make_character("a")
        apply_hp_change(c, -5)
        assert c.hp == 35
        assert not c.eliminated

    def test_clamps_to_zero_and_eliminates(self) -> None:
        c = make_character("b", willpower=8)
        apply_hp_change(c, -40)
        assert c.hp == 0
        assert c.eliminated

    def test_healing_clamps_to_max(self) -> None:
        c = make_character("a")
        c.hp = 30
        apply_hp_change(c, 50)
        assert c.hp == c.max_hp

    def test_further_damage_on_eliminated_stays_at_zero(self) -> None:
        c = make_character("a")
        apply_hp_change(c, -100)
        apply_hp_change(c, -10)
        assert c.hp == 0
        assert c.eliminated

    def test_elimination_reevaluated_after_healing(self) -> None:
        c = make_character("a")
        apply_hp_change(c, -100)
        apply_hp_change(c, 3)
        assert c.hp == 3
        assert not c.eliminated


class TestApplyConditionChange:
    def test_add_is_idempotent(self) -> None:
        c = make_character("a")
        apply_condition_change(c, "中毒", True)
        apply_condition_change(c, "中毒", True)
        assert c.conditions == ["中毒"]

    def test_remove_absent_is_noop(self) -> None:
        c = make_character("a")
        apply_condition_change(c, "中毒", False)
        assert c.conditions == []

    def test_remove_present(self) -> None:
        c = make_character("a")
        c.conditions = ["中毒", "眩晕"]
        apply_condition_change(c, "中毒", False)
        assert c.conditions == ["眩晕"]


class TestApplyAnnotations:
    def test_both_deltas_for_same_name_apply(self) -> None:
        chars = [make_character("a", "艾拉")]
        apply_annotations(chars, "[HP变动: 艾拉 -5] [HP变动: 艾拉 -3]")
        assert chars[0].hp == 32

    def test_unknown_name_dropped(self) -> None:
        chars = [make_character("a", "艾拉")]
        out = apply_annotations(chars, "[HP变动: 路人 -50] [状态: 路人 +中毒]")
        assert out == []
        assert chars[0].hp == 40
        assert chars[0].conditions == []

    def test_returns_newly_eliminated_in_roster_order(self) -> None:
        chars = [make_character("a", "A"), make_character("b", "B"), make_character("c", "C")]
        out = apply_annotations(chars, "[HP变动: C -99] [HP变动: A -99]")
        assert [c.id for c in out] == ["a", "c"]

    def test_already_eliminated_not_reported_again(self) -> None:
        chars = [make_character("a", "A")]
        chars[0].hp = 0
        chars[0].eliminated = True
        assert apply_annotations(chars, "[HP变动: A -5]") == []

    def test_eliminated_then_healed_in_same_text_not_reported(self) -> None:
        chars = [make_character("a", "A")]
        out = apply_annotations(chars, "[HP变动: A -99] [HP变动: A +10]")
        assert out == []
        assert chars[0].hp == 10

    def test_conditions_applied(self) -> None:
        chars = [make_character("a", "艾拉")]
        chars[0].conditions = ["眩晕"]
        apply_annotations(chars, "[状态: 艾拉 +中毒][状态: 艾拉 -眩晕]")
        assert chars[0].conditions == ["中毒"]

    def test_text_without_markers_changes_nothing(self) -> None:
        chars = [make_character("a", "艾拉")]
        before = chars[0].model_copy(deep=True)
        apply_annotations(chars, "艾拉拔出了剑。")
        assert chars[0] == before
