"""Consequence echoes: the short character reactions shown after a choice.

Pools hold several lines per situation. Selection is keyed on a SHA-1 of
the character, node and choice so the same choice always echoes the same
line, which keeps choice processing repeatable.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import hashlib
from typing import Dict, Mapping, Sequence, Tuple

from terminus.patterns import PATTERN_KEYS


@dataclass(frozen=True)
class ConsequenceEcho:
    text: str
    emotion: str = "neutral"
    timing: str = "immediate"
    trust_at_event: int | None = None

    def at_trust(self, trust: int) -> "ConsequenceEcho":
        return replace(self, trust_at_event=trust)


def _echoes(*entries: Tuple[str, str]) -> Tuple[ConsequenceEcho, ...]:
    return tuple(ConsequenceEcho(text=text, emotion=emotion) for text, emotion in entries)


def _delayed(text: str, emotion: str) -> Tuple[ConsequenceEcho, ...]:
    return (ConsequenceEcho(text=text, emotion=emotion, timing="delayed"),)


TRUST_ECHOES: Dict[str, Dict[str, Dict[str, Tuple[ConsequenceEcho, ...]]]] = {
    "samuel": {
        "up": {
            "subtle": _echoes(
                ("Samuel nods slowly.", "warm"),
                ("\"Mm.\" Something in his expression softens.", "warm"),
                ("Samuel's eyes crinkle at the corners.", "warm"),
            ),
            "noticeable": _echoes(
                ("\"You see things clearly.\" Samuel sounds almost surprised.", "warm"),
                ("Samuel leans back, studying you differently now.", "knowing"),
            ),
            "significant": _echoes(
                ("Samuel goes quiet for a moment. \"You remind me of myself. Before I found this place.\"", "vulnerable"),
                ("\"Not many people get that.\" His voice is softer now.", "warm"),
            ),
        },
        "down": {
            "subtle": _echoes(
                ("Samuel's gaze drifts to the departures board.", "neutral"),
                ("A pause. Just slightly too long.", "neutral"),
            ),
            "noticeable": _echoes(
                ("Something closes behind Samuel's eyes.", "guarded"),
                ("Samuel glances at the clock. \"Time moves differently for everyone.\"", "neutral"),
            ),
            "significant": _echoes(
                ("Samuel exhales slowly. \"I've seen that path before. It's harder than it looks.\"", "concerned"),
            ),
        },
    },
    "maya": {
        "up": {
            "subtle": _echoes(
                ("Maya's pen stops moving for just a second.", "thoughtful"),
                ("Maya looks up from her notebook.", "open"),
            ),
            "noticeable": _echoes(
                ("\"Huh.\" Maya sets down her pen. \"I wasn't expecting you to say that.\"", "surprised"),
                ("Maya tilts her head, really looking at you now.", "curious"),
            ),
            "significant": _echoes(
                ("Maya closes her notebook. \"I don't usually tell people this stuff.\"", "vulnerable"),
                ("\"You get it.\" Maya sounds almost relieved. \"Most people don't get it.\"", "grateful"),
            ),
        },
        "down": {
            "subtle": _echoes(
                ("Maya's hand moves to cover her notebook.", "guarded"),
                ("\"Yeah.\" Maya's voice goes flat.", "guarded"),
            ),
            "noticeable": _echoes(
                ("Maya's jaw tightens. \"Right. Sure.\"", "defensive"),
                ("\"Anyway.\" Maya flips to a new page. Conversation over.", "dismissive"),
            ),
            "significant": _echoes(
                ("\"You sound like my parents.\" Maya's voice is cold now.", "angry"),
            ),
        },
    },
    "devon": {
        "up": {
            "subtle": _echoes(
                ("Devon's typing slows.", "thoughtful"),
                ("A micro-pause. Devon processes something.", "neutral"),
            ),
            "noticeable": _echoes(
                ("Devon stops typing entirely. \"Go on.\"", "curious"),
            ),
            "significant": _echoes(
                ("Devon closes their laptop. \"Okay. I'm listening. Really listening.\"", "open"),
            ),
        },
        "down": {
            "subtle": _echoes(
                ("\"Noted.\" Devon doesn't look up.", "neutral"),
            ),
            "noticeable": _echoes(
                ("\"That's statistically unlikely to help.\" Devon's voice is flat.", "dismissive"),
            ),
            "significant": _echoes(
                ("\"I thought you were different.\" Devon won't meet your eyes.", "hurt"),
            ),
        },
    },
}

PATTERN_RECOGNITION_ECHOES: Dict[str, Dict[str, Tuple[ConsequenceEcho, ...]]] = {
    "samuel": {
        "analytical": _delayed("\"You think through things. I can see it in how you ask questions.\"", "knowing"),
        "helping": _delayed("\"You lead with care. That's not something you can fake.\"", "warm"),
        "building": _delayed("\"You're a maker. You see possibility where others see problems.\"", "warm"),
        "patience": _delayed("\"You don't rush to fill silences. That's rare these days.\"", "knowing"),
        "exploring": _delayed("\"Curious, aren't you? Good. Curiosity is how people find their path.\"", "warm"),
    },
    "maya": {
        "analytical": _delayed("\"You're like a detective.\" Maya sounds more curious than critical.", "curious"),
        "helping": _delayed("\"You actually care what people say. That's... rare.\"", "surprised"),
        "building": _delayed("\"Wait, do you build things too?\" Maya leans in.", "excited"),
    },
    "devon": {
        "analytical": _delayed("\"You think in systems. I respect that.\"", "approving"),
        "patience": _delayed("\"You don't rush to conclusions. That's unusual. In a good way.\"", "surprised"),
        "building": _delayed("\"You want to fix things. Actually fix them.\"", "approving"),
    },
}

ORB_MILESTONES: Tuple[Tuple[str, int], ...] = (
    ("first_orb", 1),
    ("orbs_10", 10),
    ("orbs_30", 30),
    ("orbs_60", 60),
    ("orbs_100", 100),
)

ORB_MILESTONE_ECHOES: Dict[str, ConsequenceEcho] = {
    "first_orb": ConsequenceEcho("Samuel glances at the light gathering around you. \"There it is. The station noticed.\"", "knowing"),
    "orbs_10": ConsequenceEcho("\"You're starting to leave a mark on this place.\" Samuel smiles.", "warm"),
    "orbs_30": ConsequenceEcho("Samuel watches the orbs settle. \"Your choices have a shape now.\"", "knowing"),
    "orbs_60": ConsequenceEcho("\"Most travellers never get this far.\" Samuel sounds proud.", "warm"),
    "orbs_100": ConsequenceEcho("Samuel is quiet for a long moment. \"You know who you are now.\"", "vulnerable"),
}

PATTERN_ECHO_THRESHOLD = 5


def echo_intensity(delta: int) -> str:
    magnitude = abs(delta)
    if magnitude >= 3:
        return "significant"
    if magnitude >= 2:
        return "noticeable"
    return "subtle"


def pick_echo(pool: Sequence[ConsequenceEcho], *key_parts: str) -> ConsequenceEcho | None:
    if not pool:
        return None
    digest = hashlib.sha1(":".join(key_parts).encode("utf-8")).hexdigest()
    return pool[int(digest, 16) % len(pool)]


def trust_echo(character_id: str, delta: int, node_id: str, choice_id: str) -> ConsequenceEcho | None:
    if delta == 0:
        return None
    pools = TRUST_ECHOES.get(character_id)
    if pools is None:
        return None
    direction = "up" if delta > 0 else "down"
    return pick_echo(pools[direction].get(echo_intensity(delta), ()), character_id, node_id, choice_id)


def resonance_echo(description: str) -> ConsequenceEcho:
    return ConsequenceEcho(text=description, emotion="resonant")


def crossed_pattern_threshold(
    before: Mapping[str, int], after: Mapping[str, int], threshold: int = PATTERN_ECHO_THRESHOLD
) -> str | None:
    for pattern in PATTERN_KEYS:
        if before.get(pattern, 0) < threshold <= after.get(pattern, 0):
            return pattern
    return None


def pattern_recognition_echo(character_id: str, pattern: str) -> ConsequenceEcho | None:
    pool = PATTERN_RECOGNITION_ECHOES.get(character_id, {}).get(pattern, ())
    return pool[0] if pool else None


def crossed_orb_milestone(total_before: int, total_after: int, acknowledged: Sequence[str] = ()) -> str | None:
    for milestone, threshold in ORB_MILESTONES:
        if milestone in acknowledged:
            continue
        if total_before < threshold <= total_after:
            return milestone
    return None
