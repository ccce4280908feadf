"""Turn a selected choice into a ``StateUpdate`` and apply it to a ``GameState``.

``compute_state_update`` has no side effects: it reads the current state and
the choice and describes everything that should change, including the
feedback to show the player. ``apply_state_update`` produces the new state.
Callers own persistence and logging.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, Mapping, Tuple

from terminus.affinity import CHARACTER_AFFINITIES, calculate_resonant_trust_change, dominant_pattern
from terminus.echoes import (
    ORB_MILESTONE_ECHOES,
    ConsequenceEcho,
    crossed_orb_milestone,
    crossed_pattern_threshold,
    pattern_recognition_echo,
    resonance_echo,
    trust_echo,
)
from terminus.graph import Choice, StateChange
from terminus.patterns import PATTERN_KEYS, pattern_label
from terminus.state import (
    SKILL_LEVEL_MAX,
    CharacterState,
    GameState,
    clamp,
    clamp_trust,
    relationship_for_trust,
)
from terminus.transformations import TransformationMoment, eligible_transformation

PATTERN_REWARD = 1
ORB_REWARD = 1
SKILL_INCREMENT = 0.1
ORB_MILESTONE_CHARACTER = "samuel"
SKILL_CONTEXT_TEXT_LIMIT = 60


@dataclass(frozen=True)
class StateUpdate:
    character_id: str
    trust_character_id: str
    node_id: str
    choice_id: str
    next_node_id: str
    base_trust_delta: int = 0
    trust_delta: int = 0
    resonance_triggered: bool = False
    resonance_description: str | None = None
    pattern_deltas: Mapping[str, int] = field(default_factory=dict)
    orb_deltas: Mapping[str, int] = field(default_factory=dict)
    skill_levels: Mapping[str, float] = field(default_factory=dict)
    add_global_flags: Tuple[str, ...] = ()
    remove_global_flags: Tuple[str, ...] = ()
    add_knowledge_flags: Tuple[str, ...] = ()
    remove_knowledge_flags: Tuple[str, ...] = ()
    set_relationship_status: str | None = None
    new_relationship_status: str | None = None
    consequence_echo: ConsequenceEcho | None = None
    crossed_pattern: str | None = None
    pattern_shift_message: str | None = None
    orb_milestone: str | None = None
    transformation: TransformationMoment | None = None
    unlocked_node_ids: Tuple[str, ...] = ()
    trust_feedback_message: str | None = None
    skill_context: str | None = None


def display_name(character_id: str) -> str:
    return character_id.replace("_", " ").title()


def trust_feedback_message(trust_delta: int, character_id: str) -> str | None:
    if trust_delta == 0:
        return None
    sign = "+" if trust_delta > 0 else ""
    return f"Trust ({display_name(character_id)}): {sign}{trust_delta}"


def _unlocked_nodes(orb_fill: Mapping[str, int]) -> FrozenSet[str]:
    unlocked = set()
    for affinity in CHARACTER_AFFINITIES.values():
        for unlock in affinity.unlocks:
            if orb_fill.get(unlock.pattern, 0) >= unlock.threshold:
                unlocked.add(unlock.node_id)
    return frozenset(unlocked)


def _skill_context(
    choice: Choice, node_id: str, speaker: str, patterns: Mapping[str, int]
) -> str | None:
    if not choice.skills:
        return None
    text = choice.text
    if len(text) > SKILL_CONTEXT_TEXT_LIMIT:
        text = text[: SKILL_CONTEXT_TEXT_LIMIT - 3] + "..."
    context = (
        f"In conversation with {speaker}, the player chose \"{text}\" "
        f"({choice.pattern or 'exploring'} pattern), "
        f"demonstrating {', '.join(choice.skills)}. "
    )
    dominant = dominant_pattern(patterns, min_threshold=5)
    if dominant is not None:
        context += f"This aligns with their emerging {dominant} identity. "
    return context + f"[{node_id}]"


def compute_state_update(
    state: GameState,
    choice: Choice,
    character_id: str,
    *,
    node_id: str,
    speaker: str | None = None,
    witnessed_transformations: Iterable[str] = (),
    acknowledged_milestones: Iterable[str] = (),
) -> StateUpdate:
    consequence = choice.consequence or StateChange()
    target_id = consequence.character_id or character_id
    before = state.character(target_id)

    pattern_deltas: Dict[str, int] = {
        key: delta for key, delta in consequence.pattern_changes.items() if delta
    }
    if choice.pattern:
        pattern_deltas[choice.pattern] = pattern_deltas.get(choice.pattern, 0) + PATTERN_REWARD
    patterns_after = {
        key: max(0, state.pattern(key) + pattern_deltas.get(key, 0)) for key in PATTERN_KEYS
    }

    base_trust = consequence.trust_change
    trust_delta = 0
    resonance = None
    if base_trust:
        resonance = calculate_resonant_trust_change(base_trust, target_id, patterns_after, choice.pattern)
        trust_delta = resonance.modified_trust
    trust_after = clamp_trust(before.trust + trust_delta)

    status_floor = consequence.set_relationship_status or before.relationship_status
    status_after = relationship_for_trust(trust_after, status_floor)

    orb_deltas = {choice.pattern: ORB_REWARD} if choice.pattern else {}
    orbs_after = state.orbs.earn(orb_deltas)

    skill_levels = {
        skill: clamp(round(state.skill_levels.get(skill, 0.0) + SKILL_INCREMENT, 6), 0.0, SKILL_LEVEL_MAX)
        for skill in choice.skills
    }

    echo = None
    if trust_delta:
        if resonance is not None and resonance.triggered and resonance.description:
            echo = resonance_echo(resonance.description)
        else:
            echo = trust_echo(target_id, trust_delta, node_id, choice.choice_id)
        if echo is not None:
            echo = echo.at_trust(trust_after)

    crossed = crossed_pattern_threshold(state.patterns, patterns_after)
    shift_message = None
    if crossed is not None:
        shift_message = f"Worldview Shift: {pattern_label(crossed)} (Level {patterns_after[crossed]})"
        if echo is None:
            echo = pattern_recognition_echo(character_id, crossed)

    milestone = None
    if echo is None and character_id == ORB_MILESTONE_CHARACTER:
        milestone = crossed_orb_milestone(
            state.orbs.total_earned, orbs_after.total_earned, tuple(acknowledged_milestones)
        )
        if milestone is not None:
            echo = ORB_MILESTONE_ECHOES[milestone]

    newly_unlocked = _unlocked_nodes(orbs_after.fill_levels()) - _unlocked_nodes(state.orbs.fill_levels())
    # Orbs capped at the maximum earn nothing.
    earned_orbs = {
        key: value
        for key, value in orb_deltas.items()
        if orbs_after.balance.get(key) != state.orbs.balance.get(key)
    }

    update = StateUpdate(
        character_id=character_id,
        trust_character_id=target_id,
        node_id=node_id,
        choice_id=choice.choice_id,
        next_node_id=choice.next_node_id,
        base_trust_delta=base_trust,
        trust_delta=trust_delta,
        resonance_triggered=bool(resonance and resonance.triggered),
        resonance_description=resonance.description if resonance else None,
        pattern_deltas=pattern_deltas,
        orb_deltas=earned_orbs,
        skill_levels=skill_levels,
        add_global_flags=consequence.add_global_flags,
        remove_global_flags=consequence.remove_global_flags,
        add_knowledge_flags=consequence.add_knowledge_flags,
        remove_knowledge_flags=consequence.remove_knowledge_flags,
        set_relationship_status=consequence.set_relationship_status,
        new_relationship_status=status_after if status_after != before.relationship_status else None,
        consequence_echo=echo,
        crossed_pattern=crossed,
        pattern_shift_message=shift_message,
        orb_milestone=milestone,
        unlocked_node_ids=tuple(sorted(newly_unlocked)),
        trust_feedback_message=trust_feedback_message(trust_delta, target_id),
        skill_context=_skill_context(choice, node_id, speaker or display_name(character_id), state.patterns),
    )

    if trust_delta > 0:
        moment = eligible_transformation(
            target_id, apply_state_update(state, update), tuple(witnessed_transformations)
        )
        if moment is not None:
            update = replace(update, transformation=moment)
    return update


def _update_character(
    character: CharacterState,
    *,
    trust_delta: int = 0,
    status: str | None = None,
    add_flags: Iterable[str] = (),
    remove_flags: Iterable[str] = (),
) -> CharacterState:
    trust = clamp_trust(character.trust + trust_delta)
    floor = status or character.relationship_status
    flags = (set(character.knowledge_flags) | set(add_flags)) - set(remove_flags)
    return replace(
        character,
        trust=trust,
        relationship_status=relationship_for_trust(trust, floor),
        knowledge_flags=frozenset(flags),
    )


def apply_state_update(state: GameState, update: StateUpdate, *, now: float | None = None) -> GameState:
    """Return the state after ``update``.

    Transformation consequences are not applied here; the caller plays the
    transformation scene and records it as witnessed.
    """
    target = _update_character(
        state.character(update.trust_character_id),
        trust_delta=update.trust_delta,
        status=update.set_relationship_status,
        add_flags=update.add_knowledge_flags,
        remove_flags=update.remove_knowledge_flags,
    )
    new_state = state.with_character(target)

    speaker = new_state.character(update.character_id)
    speaker = replace(
        speaker,
        conversation_history=speaker.conversation_history + (update.node_id,),
        last_interaction=now if now is not None else speaker.last_interaction,
    )
    new_state = new_state.with_character(speaker)

    patterns = {
        key: max(0, new_state.pattern(key) + update.pattern_deltas.get(key, 0)) for key in PATTERN_KEYS
    }
    skills = dict(new_state.skill_levels)
    skills.update(update.skill_levels)
    new_state = new_state.with_flags(update.add_global_flags, update.remove_global_flags)
    return replace(
        new_state,
        patterns=patterns,
        skill_levels=skills,
        orbs=new_state.orbs.earn(update.orb_deltas),
        current_node_id=update.next_node_id,
    )


def apply_state_change(state: GameState, change: StateChange, character_id: str | None = None) -> GameState:
    """Apply an authored node-level change such as ``onEnter`` without resonance."""
    target_id = change.character_id or character_id
    new_state = state
    touches_character = (
        change.trust_change
        or change.set_relationship_status
        or change.add_knowledge_flags
        or change.remove_knowledge_flags
    )
    if touches_character:
        if target_id is None:
            raise ValueError("State change touches a character but names none.")
        new_state = new_state.with_character(
            _update_character(
                new_state.character(target_id),
                trust_delta=change.trust_change,
                status=change.set_relationship_status,
                add_flags=change.add_knowledge_flags,
                remove_flags=change.remove_knowledge_flags,
            )
        )
    if change.pattern_changes:
        patterns = {
            key: max(0, new_state.pattern(key) + change.pattern_changes.get(key, 0)) for key in PATTERN_KEYS
        }
        new_state = replace(new_state, patterns=patterns)
    if change.add_global_flags or change.remove_global_flags:
        new_state = new_state.with_flags(change.add_global_flags, change.remove_global_flags)
    return new_state


def apply_state_changes(
    state: GameState, changes: Iterable[StateChange], character_id: str | None = None
) -> GameState:
    for change in changes:
        state = apply_state_change(state, change, character_id)
    return state


def process_choice(
    state: GameState,
    choice: Choice,
    character_id: str,
    *,
    node_id: str,
    speaker: str | None = None,
    now: float | None = None,
) -> Tuple[GameState, StateUpdate]:
    update = compute_state_update(state, choice, character_id, node_id=node_id, speaker=speaker)
    return apply_state_update(state, update, now=now), update
