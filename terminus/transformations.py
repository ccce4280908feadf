"""Character transformation moments unlocked by trust, knowledge and patterns."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Mapping, Tuple

from terminus.state import GameState


@dataclass(frozen=True)
class TransformationMoment:
    transformation_id: str
    character_id: str
    name: str
    trust_min: int
    required_flags: Tuple[str, ...] = ()
    required_patterns: Mapping[str, int] | None = None
    new_relationship_status: str | None = None
    global_flags_set: Tuple[str, ...] = ()
    unlocked_node_ids: Tuple[str, ...] = ()

    def missing_requirements(self, state: GameState) -> List[str]:
        character = state.character(self.character_id)
        missing = []
        if character.trust < self.trust_min:
            missing.append(f"Trust {self.trust_min}+ (have {character.trust})")
        known: FrozenSet[str] = character.knowledge_flags | state.global_flags
        for flag in self.required_flags:
            if flag not in known:
                missing.append(f"Flag '{flag}'")
        for pattern, level in (self.required_patterns or {}).items():
            if state.pattern(pattern) < level:
                missing.append(f"{pattern.title()} {level}+ (have {state.pattern(pattern)})")
        return missing


TRANSFORMATIONS: Tuple[TransformationMoment, ...] = (
    TransformationMoment(
        transformation_id="maya_robot_heart_reveal",
        character_id="maya",
        name="Maya's Awakening",
        trust_min=5,
        required_flags=("knows_robotics", "knows_maya_family_pressure"),
        required_patterns={"building": 3},
        new_relationship_status="confidant",
        global_flags_set=("maya_transformation_complete", "maya_engineer_identity"),
        unlocked_node_ids=("maya_confident_engineer",),
    ),
    TransformationMoment(
        transformation_id="samuel_platform_story",
        character_id="samuel",
        name="The Conductor's Story",
        trust_min=6,
        required_flags=("samuel_shared_past",),
        required_patterns={"patience": 4},
        global_flags_set=("samuel_story_heard",),
    ),
    TransformationMoment(
        transformation_id="devon_dropping_script",
        character_id="devon",
        name="Devon Drops the Script",
        trust_min=7,
        required_flags=("devon_optimizer_tested",),
        required_patterns={"analytical": 4},
        new_relationship_status="confidant",
        global_flags_set=("devon_transformation_complete",),
    ),
)

TRANSFORMATIONS_BY_ID: Dict[str, TransformationMoment] = {
    moment.transformation_id: moment for moment in TRANSFORMATIONS
}


def eligible_transformation(
    character_id: str, state: GameState, witnessed: Tuple[str, ...] | FrozenSet[str] = ()
) -> TransformationMoment | None:
    for moment in TRANSFORMATIONS:
        if moment.character_id != character_id or moment.transformation_id in witnessed:
            continue
        if not moment.missing_requirements(state):
            return moment
    return None
