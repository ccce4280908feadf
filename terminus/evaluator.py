"""Choice evaluation: which choices are visible, which are enabled, and why not."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, List, Mapping, Tuple

from terminus.combos import find_combo
from terminus.conditions import (
    ComboGate,
    ConditionError,
    ForbiddenGlobalFlagGate,
    ForbiddenKnowledgeFlagGate,
    Gate,
    GlobalFlagGate,
    KnowledgeFlagGate,
    PatternGate,
    RelationshipGate,
    StateCondition,
    TrustGate,
)
from terminus.graph import Choice, DialogueContent, DialogueNode, OrbRequirement
from terminus.navigator import DEFAULT_HUB_NODE_ID
from terminus.patterns import pattern_label
from terminus.state import CharacterState, GameState

NEEDS_TRUST = "NEEDS_TRUST"
NEEDS_RELATIONSHIP = "NEEDS_RELATIONSHIP"
NEEDS_GLOBAL_FLAG = "NEEDS_GLOBAL_FLAG"
BLOCKED_BY_GLOBAL_FLAG = "BLOCKED_BY_GLOBAL_FLAG"
NEEDS_KNOWLEDGE_FLAG = "NEEDS_KNOWLEDGE_FLAG"
NEEDS_PATTERN_LEVEL = "NEEDS_PATTERN_LEVEL"
NEEDS_COMBO = "NEEDS_COMBO"
NEEDS_ORB_FILL = "NEEDS_ORB_FILL"

RETURN_TO_HUB_CHOICE_ID = "return_to_hub"
RETURN_TO_HUB_TEXT = "Head back to the main concourse."


@dataclass(frozen=True)
class LockReason:
    code: str
    why: str
    how: str
    progress: Tuple[float, float] | None = None


@dataclass(frozen=True)
class EvaluatedChoice:
    choice: Choice
    visible: bool
    enabled: bool
    reason: LockReason | None = None
    orb_locked: bool = False
    synthesized: bool = False
    mercy_unlocked: bool = False

    @property
    def choice_id(self) -> str:
        return self.choice.choice_id

    @property
    def takeable(self) -> bool:
        return self.visible and self.enabled


def display_name(character_id: str) -> str:
    return character_id.replace("_", " ").title()


def _check_gate(
    gate: Gate,
    state: GameState,
    character: CharacterState | None,
    skill_levels: Mapping[str, float],
) -> LockReason | None:
    if isinstance(gate, TrustGate):
        name = display_name(character.character_id)
        if gate.minimum is not None and character.trust < gate.minimum:
            return LockReason(
                NEEDS_TRUST,
                f"Requires trust {gate.minimum} with {name}.",
                f"Spend more time with {name} and earn their trust.",
                (character.trust, gate.minimum),
            )
        if gate.maximum is not None and character.trust > gate.maximum:
            return LockReason(
                NEEDS_TRUST,
                f"Only available while trust with {name} is at most {gate.maximum}.",
                f"This moment has passed as {name} came to know you.",
            )
        return None

    if isinstance(gate, RelationshipGate):
        if character.relationship_status in gate.allowed:
            return None
        name = display_name(character.character_id)
        return LockReason(
            NEEDS_RELATIONSHIP,
            f"Requires being {' or '.join(gate.allowed)} with {name}.",
            f"Deepen your relationship with {name}.",
        )

    if isinstance(gate, GlobalFlagGate):
        missing = [flag for flag in gate.flags if flag not in state.global_flags]
        if not missing:
            return None
        return LockReason(
            NEEDS_GLOBAL_FLAG,
            f"Requires '{missing[0]}'.",
            "Something elsewhere in the station has to happen first.",
            (len(gate.flags) - len(missing), len(gate.flags)),
        )

    if isinstance(gate, ForbiddenGlobalFlagGate):
        present = [flag for flag in gate.flags if flag in state.global_flags]
        if not present:
            return None
        return LockReason(
            BLOCKED_BY_GLOBAL_FLAG,
            f"Closed off by '{present[0]}'.",
            "An earlier decision ruled this out.",
        )

    if isinstance(gate, KnowledgeFlagGate):
        missing = [flag for flag in gate.flags if flag not in character.knowledge_flags]
        if not missing:
            return None
        name = display_name(character.character_id)
        return LockReason(
            NEEDS_KNOWLEDGE_FLAG,
            f"{name} has not shared '{missing[0]}' yet.",
            f"Learn more about {name} first.",
            (len(gate.flags) - len(missing), len(gate.flags)),
        )

    if isinstance(gate, ForbiddenKnowledgeFlagGate):
        known = [flag for flag in gate.flags if flag in character.knowledge_flags]
        if not known:
            return None
        name = display_name(character.character_id)
        return LockReason(
            NEEDS_KNOWLEDGE_FLAG,
            f"{name} already shared '{known[0]}'.",
            "This conversation has already moved past that point.",
        )

    if isinstance(gate, PatternGate):
        current = state.pattern(gate.pattern)
        label = pattern_label(gate.pattern)
        if gate.minimum is not None and current < gate.minimum:
            return LockReason(
                NEEDS_PATTERN_LEVEL,
                f"Requires {label} {gate.minimum}.",
                f"Make more {label.lower()} choices.",
                (current, gate.minimum),
            )
        if gate.maximum is not None and current > gate.maximum:
            return LockReason(
                NEEDS_PATTERN_LEVEL,
                f"Only available while {label} is at most {gate.maximum}.",
                f"Your {label.lower()} streak has closed this path.",
            )
        return None

    if isinstance(gate, ComboGate):
        for combo_id in gate.combo_ids:
            combo = find_combo(combo_id)
            if combo is None:
                raise ConditionError(f"Unknown combo '{combo_id}'.")
            if combo.is_unlocked(state.patterns, skill_levels):
                continue
            return LockReason(
                NEEDS_COMBO,
                f"Requires {combo.describe()}.",
                "Keep developing the strengths this combination draws on.",
                combo.progress(state.patterns, skill_levels),
            )
        return None

    raise ConditionError(f"Unsupported gate {gate!r}.")


def first_failed_gate(
    condition: StateCondition | None,
    state: GameState,
    character_id: str | None,
    skill_levels: Mapping[str, float] | None = None,
) -> LockReason | None:
    """Return the lock reason of the first failing gate, or ``None`` when all pass."""
    if condition is None:
        return None
    if character_id is None and condition.needs_character():
        raise ConditionError("Character gates need a character ID to evaluate against.")
    character = state.character(character_id) if character_id is not None else None
    skills = state.skill_levels if skill_levels is None else skill_levels
    for gate in condition.gates:
        reason = _check_gate(gate, state, character, skills)
        if reason is not None:
            return reason
    return None


def evaluate_condition(
    condition: StateCondition | None,
    state: GameState,
    character_id: str | None,
    skill_levels: Mapping[str, float] | None = None,
) -> bool:
    return first_failed_gate(condition, state, character_id, skill_levels) is None


def orb_lock_reason(requirement: OrbRequirement | None, state: GameState) -> LockReason | None:
    if requirement is None:
        return None
    fill = state.orb_fill(requirement.pattern)
    if fill >= requirement.threshold:
        return None
    label = pattern_label(requirement.pattern)
    return LockReason(
        NEEDS_ORB_FILL,
        f"Requires {label} orbs at {requirement.threshold}%.",
        f"Earn {label.lower()} orbs by choosing that way in conversation.",
        (fill, requirement.threshold),
    )


def hub_return_choice(hub_node_id: str) -> Choice:
    return Choice(
        choice_id=RETURN_TO_HUB_CHOICE_ID,
        text=RETURN_TO_HUB_TEXT,
        next_node_id=hub_node_id,
    )


def evaluate_choices(
    node: DialogueNode,
    state: GameState,
    character_id: str | None,
    skill_levels: Mapping[str, float] | None = None,
    *,
    hub_node_id: str = DEFAULT_HUB_NODE_ID,
) -> List[EvaluatedChoice]:
    """Evaluate every choice of ``node`` in declaration order.

    Nothing here mutates ``state``; calling it twice with the same inputs
    gives equal results. A hub-return node without authored choices gets a
    single synthesized choice back to ``hub_node_id``.
    """
    if not node.choices and node.is_hub_return:
        return [
            EvaluatedChoice(
                choice=hub_return_choice(hub_node_id),
                visible=True,
                enabled=True,
                synthesized=True,
            )
        ]

    evaluated: List[EvaluatedChoice] = []
    for choice in node.choices:
        visible_reason = first_failed_gate(choice.visible_condition, state, character_id, skill_levels)
        enabled_reason = first_failed_gate(choice.enabled_condition, state, character_id, skill_levels)
        orb_reason = orb_lock_reason(choice.required_orb_fill, state)

        visible = visible_reason is None and orb_reason is None
        enabled = visible and enabled_reason is None
        evaluated.append(
            EvaluatedChoice(
                choice=choice,
                visible=visible,
                enabled=enabled,
                reason=enabled_reason or visible_reason or orb_reason,
                orb_locked=orb_reason is not None,
            )
        )
    return evaluated


def takeable_choices(evaluated: Iterable[EvaluatedChoice]) -> List[EvaluatedChoice]:
    """Choices a player can act on, applying the orb mercy unlock.

    When the only thing standing between the player and every remaining
    choice is orb fill, the choice with the lowest threshold is opened.
    """
    evaluated = list(evaluated)
    takeable = [entry for entry in evaluated if entry.takeable]
    if takeable:
        return takeable

    orb_only = [
        entry
        for entry in evaluated
        if entry.orb_locked and entry.reason is not None and entry.reason.code == NEEDS_ORB_FILL
    ]
    if not orb_only:
        return []
    easiest = min(orb_only, key=lambda entry: entry.choice.required_orb_fill.threshold)
    return [replace(easiest, visible=True, enabled=True, mercy_unlocked=True)]


def summarize_requirements(choice: Choice) -> str:
    parts = []
    for condition in (choice.visible_condition, choice.enabled_condition):
        if condition is not None and condition.gates:
            parts.append(condition.describe())
    if choice.required_orb_fill is not None:
        requirement = choice.required_orb_fill
        parts.append(f"{pattern_label(requirement.pattern)} orbs {requirement.threshold}%")
    return ", ".join(parts) if parts else "None"


def select_content(node: DialogueNode, used_variation_ids: Iterable[str] = ()) -> DialogueContent:
    """Pick the first content variation not shown yet, cycling back to the first."""
    used = set(used_variation_ids)
    for entry in node.content:
        if entry.variation_id is None or entry.variation_id not in used:
            return entry
    return node.content[0]
