import pytest

from terminus.conditions import ConditionError, GlobalFlagGate, TrustGate, parse_condition
from terminus.evaluator import (
    NEEDS_COMBO,
    NEEDS_GLOBAL_FLAG,
    NEEDS_KNOWLEDGE_FLAG,
    NEEDS_ORB_FILL,
    NEEDS_PATTERN_LEVEL,
    NEEDS_RELATIONSHIP,
    NEEDS_TRUST,
    BLOCKED_BY_GLOBAL_FLAG,
    RETURN_TO_HUB_CHOICE_ID,
    evaluate_choices,
    select_content,
    summarize_requirements,
    takeable_choices,
)
from terminus.graph import DialogueNode
from terminus.state import CharacterState, GameState, OrbBalance, default_patterns, new_game_state


def make_node(node_id: str, choices: list, **extra) -> DialogueNode:
    data = {"speaker": "Samuel", "content": "Hello.", "choices": choices}
    data.update(extra)
    return DialogueNode.from_dict(node_id, data)


def gated_choice(condition: dict, **extra) -> dict:
    choice = {
        "choiceId": "gated",
        "text": "Gated choice",
        "nextNodeId": "next",
        "enabledCondition": condition,
    }
    choice.update(extra)
    return choice


def with_orbs(state: GameState, **counts: int) -> GameState:
    balance = default_patterns()
    balance.update(counts)
    return GameState(player_id=state.player_id, orbs=OrbBalance(balance=balance))


def test_trust_zero_against_minimum_two_reports_progress() -> None:
    node = make_node("samuel_intro", [gated_choice({"trust": {"min": 2}})])
    [entry] = evaluate_choices(node, new_game_state(), "samuel")

    assert entry.visible is True
    assert entry.enabled is False
    assert entry.reason.code == NEEDS_TRUST
    assert entry.reason.progress == (0, 2)
    assert "Samuel" in entry.reason.why


@pytest.mark.parametrize(
    ("condition", "code"),
    [
        ({"trust": {"min": 1}}, NEEDS_TRUST),
        ({"trust": {"max": 0}}, None),
        ({"relationship": ["confidant"]}, NEEDS_RELATIONSHIP),
        ({"hasGlobalFlags": ["met_maya"]}, NEEDS_GLOBAL_FLAG),
        ({"lacksGlobalFlags": ["met_samuel"]}, BLOCKED_BY_GLOBAL_FLAG),
        ({"hasKnowledgeFlags": ["knows_robotics"]}, NEEDS_KNOWLEDGE_FLAG),
        ({"lacksKnowledgeFlags": ["asked_name"]}, NEEDS_KNOWLEDGE_FLAG),
        ({"patterns": {"patience": {"min": 2}}}, NEEDS_PATTERN_LEVEL),
        ({"requiredCombos": ["architect_vision"]}, NEEDS_COMBO),
    ],
)
def test_single_failing_gate_reports_its_code(condition: dict, code: str | None) -> None:
    samuel = CharacterState("samuel", knowledge_flags=frozenset({"asked_name"}))
    state = new_game_state().with_flags(["met_samuel"]).with_character(samuel)
    [entry] = evaluate_choices(make_node("n", [gated_choice(condition)]), state, "samuel")

    if code is None:
        assert entry.enabled is True
        assert entry.reason is None
    else:
        assert entry.enabled is False
        assert entry.reason.code == code


def test_first_failing_gate_in_priority_order_wins() -> None:
    condition = {
        "requiredCombos": ["architect_vision"],
        "patterns": {"analytical": {"min": 3}},
        "hasGlobalFlags": ["met_maya"],
        "trust": {"min": 2},
    }
    node = make_node("n", [gated_choice(condition)])
    state = new_game_state()

    [entry] = evaluate_choices(node, state, "maya")
    assert entry.reason.code == NEEDS_TRUST

    state = state.with_character(CharacterState("maya", trust=2))
    [entry] = evaluate_choices(node, state, "maya")
    assert entry.reason.code == NEEDS_GLOBAL_FLAG

    state = state.with_flags(["met_maya"])
    [entry] = evaluate_choices(node, state, "maya")
    assert entry.reason.code == NEEDS_PATTERN_LEVEL
    assert entry.reason.progress == (0, 3)


FAILING_GATES_IN_ORDER = [
    ({"trust": {"min": 1}}, NEEDS_TRUST, "Requires trust 1"),
    ({"relationship": ["confidant"]}, NEEDS_RELATIONSHIP, "Requires being confidant"),
    ({"hasGlobalFlags": ["met_maya"]}, NEEDS_GLOBAL_FLAG, "Requires 'met_maya'"),
    ({"lacksGlobalFlags": ["met_samuel"]}, BLOCKED_BY_GLOBAL_FLAG, "Closed off by 'met_samuel'"),
    ({"hasKnowledgeFlags": ["knows_robotics"]}, NEEDS_KNOWLEDGE_FLAG, "has not shared 'knows_robotics'"),
    ({"lacksKnowledgeFlags": ["asked_name"]}, NEEDS_KNOWLEDGE_FLAG, "already shared 'asked_name'"),
    ({"patterns": {"patience": {"min": 2}}}, NEEDS_PATTERN_LEVEL, "Requires Patience 2"),
    ({"requiredCombos": ["architect_vision"]}, NEEDS_COMBO, "Requires "),
]


@pytest.mark.parametrize(
    ("earlier", "later"),
    list(zip(FAILING_GATES_IN_ORDER, FAILING_GATES_IN_ORDER[1:])),
    ids=[next(iter(condition)) for condition, _, _ in FAILING_GATES_IN_ORDER[:-1]],
)
def test_earlier_gate_wins_when_adjacent_gates_both_fail(earlier, later) -> None:
    earlier_condition, code, why = earlier
    later_condition, _, _ = later
    samuel = CharacterState("samuel", knowledge_flags=frozenset({"asked_name"}))
    state = new_game_state().with_flags(["met_samuel"]).with_character(samuel)
    condition = {**later_condition, **earlier_condition}

    [entry] = evaluate_choices(make_node("n", [gated_choice(condition)]), state, "samuel")
    assert entry.enabled is False
    assert entry.reason.code == code
    assert why in entry.reason.why

    [alone] = evaluate_choices(make_node("n", [gated_choice(later_condition)]), state, "samuel")
    assert alone.reason.code == later[1]
    assert later[2] in alone.reason.why


@pytest.mark.parametrize(
    ("condition", "state", "code"),
    [
        ({"trust": {"max": 2}}, new_game_state().with_character(CharacterState("samuel", trust=5)), NEEDS_TRUST),
        (
            {"patterns": {"helping": {"max": 1}}},
            GameState(patterns={**default_patterns(), "helping": 4}),
            NEEDS_PATTERN_LEVEL,
        ),
    ],
)
def test_exceeded_maximum_gates_report_no_progress(condition: dict, state: GameState, code: str) -> None:
    [entry] = evaluate_choices(make_node("n", [gated_choice(condition)]), state, "samuel")
    assert entry.enabled is False
    assert entry.reason.code == code
    assert entry.reason.progress is None


def test_parse_condition_sorts_gates_into_check_order() -> None:
    condition = parse_condition({"hasGlobalFlags": ["a"], "trust": {"min": 1}})
    assert [type(gate) for gate in condition.gates] == [TrustGate, GlobalFlagGate]


@pytest.mark.parametrize(
    ("raw", "match"),
    [
        ({"trust": 3}, "trust"),
        ({"trust": {"min": 11}}, "between 0 and 10"),
        ({"trust": {"min": 5, "max": 2}}, "greater than"),
        ({"relationship": ["enemy"]}, "unknown relationship"),
        ({"patterns": {"cooking": {"min": 1}}}, "unknown pattern"),
        ({"requiredCombos": ["not_a_combo"]}, "unknown combo"),
        ({"hasGlobalFlags": []}, "non-empty list"),
        ({"mood": "happy"}, "unsupported condition fields"),
        ("trust>2", "must be an object"),
    ],
)
def test_parse_condition_rejects_malformed_payloads(raw, match: str) -> None:
    with pytest.raises(ConditionError, match=match):
        parse_condition(raw)


def test_empty_condition_is_open() -> None:
    assert parse_condition(None) is None
    assert parse_condition({}) is None


def test_character_gates_need_a_character() -> None:
    node = make_node("n", [gated_choice({"trust": {"min": 1}})])
    with pytest.raises(ConditionError, match="character ID"):
        evaluate_choices(node, new_game_state(), None)


def test_orb_fill_gate_hides_choice_until_threshold() -> None:
    choice = {
        "choiceId": "deep_dive",
        "text": "How does it work?",
        "nextNodeId": "next",
        "requiredOrbFill": {"pattern": "analytical", "threshold": 80},
    }
    node = make_node("n", [choice])

    [entry] = evaluate_choices(node, with_orbs(new_game_state(), analytical=10), "maya")
    assert entry.visible is False
    assert entry.orb_locked is True
    assert entry.reason.code == NEEDS_ORB_FILL
    assert entry.reason.progress == (10, 80)

    [entry] = evaluate_choices(node, with_orbs(new_game_state(), analytical=80), "maya")
    assert entry.visible is True
    assert entry.enabled is True
    assert entry.reason is None


def test_enablement_reason_takes_precedence_over_orb_lock() -> None:
    choice = gated_choice(
        {"trust": {"min": 3}},
        requiredOrbFill={"pattern": "building", "threshold": 40},
    )
    [entry] = evaluate_choices(make_node("n", [choice]), new_game_state(), "maya")
    assert entry.visible is False
    assert entry.orb_locked is True
    assert entry.reason.code == NEEDS_TRUST


def test_hub_return_node_without_choices_gets_synthesized_exit() -> None:
    node = make_node("maya_hub_return", [])
    [entry] = evaluate_choices(node, new_game_state(), "maya", hub_node_id="concourse")

    assert entry.synthesized is True
    assert entry.takeable is True
    assert entry.choice_id == RETURN_TO_HUB_CHOICE_ID
    assert entry.choice.next_node_id == "concourse"


def test_plain_node_without_choices_gets_nothing() -> None:
    assert evaluate_choices(make_node("the_end", []), new_game_state(), "maya") == []


def test_evaluation_is_repeatable_and_leaves_state_alone() -> None:
    node = make_node(
        "n",
        [
            gated_choice({"trust": {"min": 2}, "hasGlobalFlags": ["met_maya"]}),
            {"choiceId": "open", "text": "Open", "nextNodeId": "next"},
        ],
    )
    state = new_game_state().with_flags(["met_samuel"])
    before = state.to_dict()

    first = evaluate_choices(node, state, "samuel")
    second = evaluate_choices(node, state, "samuel")

    assert first == second
    assert state.to_dict() == before


def test_mercy_unlock_opens_lowest_orb_threshold_when_nothing_else_is_takeable() -> None:
    choices = [
        {
            "choiceId": "big",
            "text": "Big ask",
            "nextNodeId": "next",
            "requiredOrbFill": {"pattern": "building", "threshold": 60},
        },
        {
            "choiceId": "small",
            "text": "Small ask",
            "nextNodeId": "next",
            "requiredOrbFill": {"pattern": "helping", "threshold": 30},
        },
    ]
    evaluated = evaluate_choices(make_node("n", choices), new_game_state(), "maya")
    [unlocked] = takeable_choices(evaluated)

    assert unlocked.choice_id == "small"
    assert unlocked.mercy_unlocked is True
    assert unlocked.takeable is True


def test_mercy_unlock_does_not_apply_when_a_choice_is_takeable() -> None:
    choices = [
        {
            "choiceId": "orb",
            "text": "Orb ask",
            "nextNodeId": "next",
            "requiredOrbFill": {"pattern": "building", "threshold": 60},
        },
        {"choiceId": "open", "text": "Open", "nextNodeId": "next"},
    ]
    evaluated = evaluate_choices(make_node("n", choices), new_game_state(), "maya")
    assert [entry.choice_id for entry in takeable_choices(evaluated)] == ["open"]


def test_mercy_unlock_ignores_condition_locked_choices() -> None:
    evaluated = evaluate_choices(
        make_node("n", [gated_choice({"trust": {"min": 5}})]), new_game_state(), "maya"
    )
    assert takeable_choices(evaluated) == []


def test_summarize_requirements_lists_every_gate() -> None:
    node = make_node(
        "n",
        [
            gated_choice(
                {"trust": {"min": 2}},
                visibleCondition={"hasGlobalFlags": ["met_maya"]},
                requiredOrbFill={"pattern": "building", "threshold": 40},
            )
        ],
    )
    summary = summarize_requirements(node.choices[0])
    assert summary == "Flags: met_maya, Trust 2+, Building orbs 40%"


def test_select_content_cycles_through_variations() -> None:
    node = make_node(
        "hub",
        [],
        content=[
            {"text": "First", "variation_id": "a"},
            {"text": "Second", "variation_id": "b"},
        ],
    )
    assert select_content(node).text == "First"
    assert select_content(node, ["a"]).text == "Second"
    assert select_content(node, ["a", "b"]).text == "First"
