"""Character pattern affinities and the resonant trust calculation."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Dict, List, Mapping, Tuple

from terminus.patterns import PATTERN_KEYS

AFFINITY_MULTIPLIERS: Dict[str, float] = {
    "primary": 1.5,
    "secondary": 1.25,
    "neutral": 1.0,
    "friction": 0.75,
}

DOMINANT_PATTERN_THRESHOLD = 3
CHOICE_PATTERN_WEIGHT = 0.5


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class PatternUnlock:
    pattern: str
    threshold: int
    node_id: str
    description: str


@dataclass(frozen=True)
class CharacterAffinity:
    character_id: str
    primary: str
    secondary: str
    friction: str
    resonance: Mapping[str, str]
    unlocks: Tuple[PatternUnlock, ...] = ()

    def level(self, pattern: str) -> str:
        if pattern == self.primary:
            return "primary"
        if pattern == self.secondary:
            return "secondary"
        if pattern == self.friction:
            return "friction"
        return "neutral"

    def multiplier(self, pattern: str) -> float:
        return AFFINITY_MULTIPLIERS[self.level(pattern)]


CHARACTER_AFFINITIES: Dict[str, CharacterAffinity] = {
    "maya": CharacterAffinity(
        character_id="maya",
        primary="building",
        secondary="analytical",
        friction="helping",
        resonance={
            "building": "Maya sees a kindred maker spirit in you. Her eyes light up when you talk about creating things.",
            "analytical": "Your systematic thinking reminds Maya of how she approaches robotics problems.",
            "patience": "Maya appreciates that you don't rush her, even if she's not sure what to do with that kindness.",
            "exploring": "Your curiosity opens doors Maya didn't know existed.",
            "helping": "Maya tenses slightly. She's spent her whole life being helped into a box she didn't choose.",
        },
        unlocks=(
            PatternUnlock("building", 40, "maya_workshop_invitation", "Maya invites you to see her secret workshop"),
            PatternUnlock("building", 70, "maya_collaboration_offer", "Maya asks for your help on a robotics project"),
            PatternUnlock("analytical", 50, "maya_technical_deep_dive", "Maya shares the technical details she usually hides"),
        ),
    ),
    "samuel": CharacterAffinity(
        character_id="samuel",
        primary="patience",
        secondary="helping",
        friction="building",
        resonance={
            "patience": "Samuel nods slowly. You understand that some things can't be rushed.",
            "helping": "Samuel recognizes a fellow guide in you.",
            "analytical": "Samuel appreciates your thoughtfulness, even if he sees things differently.",
            "exploring": "Your curiosity reminds Samuel of his younger self.",
            "building": "Samuel watches carefully. Not everything needs to be fixed immediately.",
        },
    ),
    "devon": CharacterAffinity(
        character_id="devon",
        primary="analytical",
        secondary="building",
        friction="helping",
        resonance={
            "analytical": "Devon's posture relaxes. You speak his language.",
            "building": "Devon respects that you understand making things.",
            "patience": "Devon appreciates that you don't push for immediate answers.",
            "exploring": "Your questions make Devon think in new ways.",
            "helping": "Devon shifts uncomfortably. He prefers systems to sentiment.",
        },
    ),
}


def trust_multiplier(character_id: str, pattern: str) -> float:
    affinity = CHARACTER_AFFINITIES.get(character_id)
    if affinity is None:
        return AFFINITY_MULTIPLIERS["neutral"]
    return affinity.multiplier(pattern)


def resonance_description(character_id: str, pattern: str) -> str | None:
    affinity = CHARACTER_AFFINITIES.get(character_id)
    if affinity is None:
        return None
    return affinity.resonance.get(pattern)


def dominant_pattern(
    patterns: Mapping[str, int], min_threshold: int = DOMINANT_PATTERN_THRESHOLD
) -> str | None:
    """Highest-scoring pattern at or above ``min_threshold``; ties go to the earlier key."""
    best = None
    best_score = None
    for pattern in PATTERN_KEYS:
        score = patterns.get(pattern, 0)
        if best_score is None or score > best_score:
            best, best_score = pattern, score
    if best_score is not None and best_score >= min_threshold:
        return best
    return None


@dataclass(frozen=True)
class ResonantTrust:
    modified_trust: int
    triggered: bool
    description: str | None = None


def calculate_resonant_trust_change(
    base_trust_change: int,
    character_id: str,
    patterns: Mapping[str, int],
    choice_pattern: str | None = None,
) -> ResonantTrust:
    """Scale a trust change by who the player is and what they just did.

    The dominant pattern applies the full affinity multiplier; a choice
    pattern that differs from it adds half of its own multiplier's effect.
    """
    dominant = dominant_pattern(patterns)
    modified = base_trust_change
    triggered = False
    description = None

    if dominant is not None:
        multiplier = trust_multiplier(character_id, dominant)
        if multiplier != 1.0:
            modified = round_half_up(base_trust_change * multiplier)
            triggered = True
            description = resonance_description(character_id, dominant)

    if choice_pattern and choice_pattern != dominant:
        choice_multiplier = trust_multiplier(character_id, choice_pattern)
        if choice_multiplier != 1.0:
            modified += round_half_up(base_trust_change * (choice_multiplier - 1.0) * CHOICE_PATTERN_WEIGHT)
            if not triggered:
                triggered = True
                description = resonance_description(character_id, choice_pattern)

    return ResonantTrust(modified_trust=modified, triggered=triggered, description=description)


def pattern_unlocks(character_id: str, orb_fill: Mapping[str, int]) -> List[str]:
    affinity = CHARACTER_AFFINITIES.get(character_id)
    if affinity is None:
        return []
    return [unlock.node_id for unlock in affinity.unlocks if orb_fill.get(unlock.pattern, 0) >= unlock.threshold]


def all_pattern_unlocks() -> Dict[str, Tuple[PatternUnlock, ...]]:
    return {key: affinity.unlocks for key, affinity in CHARACTER_AFFINITIES.items() if affinity.unlocks}
