"""Pattern and skill combos referenced by ``requiredCombos`` conditions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Tuple, Union


@dataclass(frozen=True)
class PatternCombo:
    combo_id: str
    character_id: str
    requirements: Mapping[str, int]
    career_hint: str

    def is_unlocked(self, patterns: Mapping[str, int], skill_levels: Mapping[str, float]) -> bool:
        return all(patterns.get(key, 0) >= level for key, level in self.requirements.items())

    def progress(self, patterns: Mapping[str, int], skill_levels: Mapping[str, float]) -> Tuple[int, int]:
        met = sum(1 for key, level in self.requirements.items() if patterns.get(key, 0) >= level)
        return met, len(self.requirements)

    def describe(self) -> str:
        parts = [f"{key} {level}" for key, level in self.requirements.items()]
        return f"{self.combo_id} ({', '.join(parts)})"


@dataclass(frozen=True)
class SkillCombo:
    combo_id: str
    name: str
    skills: Tuple[str, ...]
    min_levels: Tuple[float, ...]

    def is_unlocked(self, patterns: Mapping[str, int], skill_levels: Mapping[str, float]) -> bool:
        return all(
            skill_levels.get(skill, 0.0) >= level
            for skill, level in zip(self.skills, self.min_levels)
        )

    def progress(self, patterns: Mapping[str, int], skill_levels: Mapping[str, float]) -> Tuple[int, int]:
        met = sum(
            1
            for skill, level in zip(self.skills, self.min_levels)
            if skill_levels.get(skill, 0.0) >= level
        )
        return met, len(self.skills)

    def describe(self) -> str:
        parts = [f"{skill} {level:.1f}" for skill, level in zip(self.skills, self.min_levels)]
        return f"{self.name} ({', '.join(parts)})"


Combo = Union[PatternCombo, SkillCombo]


def _pattern_combos(*combos: PatternCombo) -> Dict[str, PatternCombo]:
    return {combo.combo_id: combo for combo in combos}


PATTERN_COMBOS: Dict[str, PatternCombo] = _pattern_combos(
    PatternCombo("architect_vision", "maya", {"analytical": 5, "building": 4}, "systems architects"),
    PatternCombo("data_storyteller", "maya", {"analytical": 5, "exploring": 4}, "data scientists"),
    PatternCombo(
        "creative_technologist", "maya", {"building": 5, "exploring": 4}, "creative technologists"
    ),
    PatternCombo("healers_path", "marcus", {"helping": 6, "patience": 3}, "healthcare coordinators"),
    PatternCombo("systems_thinker", "devon", {"analytical": 5, "patience": 4}, "systems engineers"),
    PatternCombo(
        "sustainable_builder", "devon", {"building": 5, "patience": 4}, "sustainable engineers"
    ),
    PatternCombo(
        "safety_designer",
        "kai",
        {"analytical": 4, "helping": 4, "patience": 3},
        "safety engineers",
    ),
)

SKILL_COMBOS: Dict[str, SkillCombo] = {
    combo.combo_id: combo
    for combo in (
        SkillCombo(
            "strategic_empathy",
            "Strategic Empathy",
            ("systemsThinking", "emotionalIntelligence"),
            (0.5, 0.5),
        ),
        SkillCombo(
            "technical_storyteller",
            "Technical Storyteller",
            ("technicalLiteracy", "communication"),
            (0.5, 0.5),
        ),
        SkillCombo(
            "ethical_analyst",
            "Ethical Analyst",
            ("dataLiteracy", "ethicalReasoning"),
            (0.4, 0.5),
        ),
        SkillCombo(
            "innovation_catalyst",
            "Innovation Catalyst",
            ("creativity", "technicalLiteracy", "strategicThinking"),
            (0.5, 0.4, 0.4),
        ),
    )
}


def find_combo(combo_id: str) -> Combo | None:
    # Pattern combos shadow skill combos sharing an id.
    combo = PATTERN_COMBOS.get(combo_id)
    if combo is not None:
        return combo
    return SKILL_COMBOS.get(combo_id)


def is_combo_unlocked(
    combo_id: str, patterns: Mapping[str, int], skill_levels: Mapping[str, float]
) -> bool:
    combo = find_combo(combo_id)
    if combo is None:
        raise KeyError(combo_id)
    return combo.is_unlocked(patterns, skill_levels)
