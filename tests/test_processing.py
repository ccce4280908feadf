import pytest

from terminus.affinity import calculate_resonant_trust_change, dominant_pattern, pattern_unlocks, round_half_up
from terminus.echoes import ORB_MILESTONE_ECHOES, trust_echo
from terminus.graph import Choice, StateChange
from terminus.processing import (
    apply_state_change,
    apply_state_update,
    compute_state_update,
    process_choice,
    trust_feedback_message,
)
from terminus.state import CharacterState, GameState, default_patterns, new_game_state


def patterns(**levels: int) -> dict:
    values = default_patterns()
    values.update(levels)
    return values


def choice_from(data: dict) -> Choice:
    payload = {"choiceId": "pick", "text": "Pick me", "nextNodeId": "next"}
    payload.update(data)
    return Choice.from_dict(payload, "test choice")


@pytest.mark.parametrize(
    ("value", "expected"),
    [(0.5, 1), (1.5, 2), (2.5, 3), (-0.25, 0), (-0.5, 0), (-1.5, -1), (0.49, 0)],
)
def test_round_half_up_rounds_halves_upward(value: float, expected: int) -> None:
    assert round_half_up(value) == expected


@pytest.mark.parametrize(
    ("base", "character", "levels", "choice_pattern", "expected", "triggered"),
    [
        # Dominant primary pattern, choice matches it.
        (2, "maya", {"building": 3}, "building", 3, True),
        # Dominant friction pattern.
        (2, "maya", {"helping": 3}, None, 2, True),
        (4, "maya", {"helping": 4}, None, 3, True),
        # No dominant pattern; only the choice pattern contributes.
        (4, "maya", {}, "building", 5, True),
        (2, "maya", {}, "helping", 2, True),
        (2, "maya", {}, "exploring", 2, False),
        # Dominant secondary plus a different primary choice.
        (2, "samuel", {"helping": 5}, "patience", 4, True),
        (1, "samuel", {"patience": 3}, None, 2, True),
        # Unknown characters are neutral.
        (3, "marcus", {"building": 6}, "building", 3, False),
    ],
)
def test_resonant_trust_change(
    base: int, character: str, levels: dict, choice_pattern, expected: int, triggered: bool
) -> None:
    result = calculate_resonant_trust_change(base, character, patterns(**levels), choice_pattern)
    assert result.modified_trust == expected
    assert result.triggered is triggered
    if triggered:
        assert result.description


def test_dominant_pattern_needs_threshold_and_prefers_earlier_key() -> None:
    assert dominant_pattern(patterns(building=2)) is None
    assert dominant_pattern(patterns(analytical=3, building=3)) == "analytical"
    assert dominant_pattern(patterns(analytical=3, building=4)) == "building"


def test_choice_update_applies_resonance_and_relationship() -> None:
    state = new_game_state()
    choice = choice_from(
        {"pattern": "patience", "consequence": {"characterId": "samuel", "trustChange": 2}}
    )
    update = compute_state_update(state, choice, "samuel", node_id="samuel_introduction")

    assert update.base_trust_delta == 2
    assert update.trust_delta == 3
    assert update.resonance_triggered is True
    assert update.pattern_deltas == {"patience": 1}
    assert update.orb_deltas == {"patience": 1}
    assert update.new_relationship_status == "acquaintance"
    assert update.trust_feedback_message == "Trust (Samuel): +3"
    assert update.consequence_echo.text == update.resonance_description
    assert update.consequence_echo.trust_at_event == 3


def test_compute_state_update_does_not_touch_state() -> None:
    state = new_game_state().with_character(CharacterState("maya", trust=2))
    before = state.to_dict()
    choice = choice_from(
        {
            "pattern": "building",
            "skills": ["technicalLiteracy"],
            "consequence": {"characterId": "maya", "trustChange": 1, "addGlobalFlags": ["met_maya"]},
        }
    )
    first = compute_state_update(state, choice, "maya", node_id="maya_robotics")
    second = compute_state_update(state, choice, "maya", node_id="maya_robotics")

    assert first == second
    assert state.to_dict() == before


def test_process_choice_returns_new_state() -> None:
    state = new_game_state()
    choice = choice_from(
        {
            "nextNodeId": "maya_robotics",
            "pattern": "building",
            "skills": ["technicalLiteracy"],
            "consequence": {
                "characterId": "maya",
                "trustChange": 1,
                "addKnowledgeFlags": ["knows_robotics"],
                "addGlobalFlags": ["met_maya"],
            },
        }
    )
    new_state, update = process_choice(state, choice, "maya", node_id="maya_introduction", now=42.0)
    maya = new_state.character("maya")

    assert maya.trust == 1
    assert maya.knowledge_flags == frozenset({"knows_robotics"})
    assert maya.conversation_history == ("maya_introduction",)
    assert maya.last_interaction == 42.0
    assert "met_maya" in new_state.global_flags
    assert new_state.pattern("building") == 1
    assert new_state.orbs.balance["building"] == 1
    assert new_state.orbs.total_earned == 1
    assert new_state.skill_levels == {"technicalLiteracy": 0.1}
    assert new_state.current_node_id == "maya_robotics"
    assert "demonstrating technicalLiteracy" in update.skill_context
    assert state.characters == {}


def test_crossing_pattern_threshold_reports_worldview_shift() -> None:
    state = GameState(patterns=patterns(analytical=4))
    update = compute_state_update(state, choice_from({"pattern": "analytical"}), "devon", node_id="n")
    assert update.crossed_pattern == "analytical"
    assert update.pattern_shift_message == "Worldview Shift: Analytical (Level 5)"
    assert update.consequence_echo is not None


def test_first_orb_milestone_echoes_through_samuel_once() -> None:
    choice = choice_from({"pattern": "exploring"})
    update = compute_state_update(new_game_state(), choice, "samuel", node_id="n")
    assert update.orb_milestone == "first_orb"
    assert update.consequence_echo == ORB_MILESTONE_ECHOES["first_orb"]

    acknowledged = compute_state_update(
        new_game_state(), choice, "samuel", node_id="n", acknowledged_milestones=["first_orb"]
    )
    assert acknowledged.orb_milestone is None

    elsewhere = compute_state_update(new_game_state(), choice, "maya", node_id="n")
    assert elsewhere.orb_milestone is None


def test_trust_echo_is_stable_for_the_same_choice() -> None:
    first = trust_echo("maya", 1, "maya_robotics", "ask_about_family")
    second = trust_echo("maya", 1, "maya_robotics", "ask_about_family")
    assert first is not None
    assert first == second
    assert trust_echo("maya", 0, "n", "c") is None
    assert trust_echo("stranger", 1, "n", "c") is None


def test_trust_is_clamped_and_relationship_never_downgrades() -> None:
    state = new_game_state().with_character(
        CharacterState("devon", trust=9, relationship_status="confidant")
    )
    gain = choice_from({"consequence": {"characterId": "devon", "trustChange": 5}})
    after_gain, _ = process_choice(state, gain, "devon", node_id="n")
    assert after_gain.character("devon").trust == 10

    loss = choice_from({"consequence": {"characterId": "devon", "trustChange": -10}})
    after_loss, update = process_choice(after_gain, loss, "devon", node_id="n")
    devon = after_loss.character("devon")
    assert devon.trust == 0
    assert devon.relationship_status == "confidant"
    assert update.trust_feedback_message == "Trust (Devon): -10"


def test_transformation_is_reported_when_requirements_are_met() -> None:
    maya = CharacterState(
        "maya", trust=4, knowledge_flags=frozenset({"knows_robotics", "knows_maya_family_pressure"})
    )
    state = GameState(characters={"maya": maya}, patterns=patterns(building=3))
    choice = choice_from({"pattern": "building", "consequence": {"characterId": "maya", "trustChange": 1}})

    update = compute_state_update(state, choice, "maya", node_id="maya_family")
    assert update.trust_delta == 2
    assert update.transformation.transformation_id == "maya_robot_heart_reveal"

    witnessed = compute_state_update(
        state, choice, "maya", node_id="maya_family", witnessed_transformations=["maya_robot_heart_reveal"]
    )
    assert witnessed.transformation is None
    assert "maya_transformation_complete" not in apply_state_update(state, update).global_flags


def test_orb_unlocks_are_reported_once_crossed() -> None:
    assert pattern_unlocks("maya", {"building": 40}) == ["maya_workshop_invitation"]
    assert pattern_unlocks("samuel", {"patience": 100}) == []


def test_apply_state_change_for_node_hooks() -> None:
    state = apply_state_change(
        new_game_state(),
        StateChange(add_global_flags=("met_samuel",), pattern_changes={"patience": 2}),
    )
    assert state.global_flags == frozenset({"met_samuel"})
    assert state.pattern("patience") == 2

    state = apply_state_change(state, StateChange(add_knowledge_flags=("asked_name",)), "samuel")
    assert state.character("samuel").knowledge_flags == frozenset({"asked_name"})

    with pytest.raises(ValueError, match="names none"):
        apply_state_change(state, StateChange(trust_change=1))


def test_trust_feedback_message_is_empty_without_change() -> None:
    assert trust_feedback_message(0, "maya") is None
    assert trust_feedback_message(2, "maya") == "Trust (Maya): +2"
