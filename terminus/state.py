"""Player and character state for Grand Central Terminus.

All state objects are frozen. Operations that change state return a new
object and leave the input untouched, so evaluation and simulation code can
share a single ``GameState`` without copying it defensively.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Tuple

from terminus.patterns import PATTERN_KEYS, is_pattern
from terminus.state_migrations import StateMigrationError, migrate_state_payload

STATE_VERSION = 2

TRUST_MIN = 0
TRUST_MAX = 10

RELATIONSHIP_LEVELS = ("stranger", "acquaintance", "confidant")
ACQUAINTANCE_TRUST = 3
CONFIDANT_TRUST = 6

MAX_ORB_COUNT = 100
SKILL_LEVEL_MAX = 1.0


def clamp(n, lo, hi): return lo if n < lo else hi if n > hi else n


def clamp_trust(value: int) -> int:
    return clamp(int(value), TRUST_MIN, TRUST_MAX)


def relationship_rank(status: str) -> int:
    try:
        return RELATIONSHIP_LEVELS.index(status)
    except ValueError:
        raise ValueError(f"Unknown relationship status '{status}'.") from None


def relationship_for_trust(trust: int, current: str = "stranger") -> str:
    """Derive the relationship status for ``trust`` without ever downgrading."""
    if trust >= CONFIDANT_TRUST:
        derived = "confidant"
    elif trust >= ACQUAINTANCE_TRUST:
        derived = "acquaintance"
    else:
        derived = "stranger"
    if relationship_rank(derived) < relationship_rank(current):
        return current
    return derived


def default_patterns() -> Dict[str, int]:
    return {key: 0 for key in PATTERN_KEYS}


@dataclass(frozen=True)
class CharacterState:
    character_id: str
    trust: int = 0
    relationship_status: str = "stranger"
    knowledge_flags: FrozenSet[str] = frozenset()
    conversation_history: Tuple[str, ...] = ()
    last_interaction: float | None = None

    def has_met(self) -> bool:
        return bool(self.conversation_history)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "trust": self.trust,
            "relationship_status": self.relationship_status,
            "knowledge_flags": sorted(self.knowledge_flags),
            "conversation_history": list(self.conversation_history),
            "last_interaction": self.last_interaction,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CharacterState":
        character_id = data.get("character_id")
        if not isinstance(character_id, str) or not character_id:
            raise StateMigrationError("Character state is missing 'character_id'.")
        status = data.get("relationship_status") or "stranger"
        if status not in RELATIONSHIP_LEVELS:
            raise StateMigrationError(
                f"Character '{character_id}' has unknown relationship status '{status}'."
            )
        try:
            trust = clamp_trust(data.get("trust", 0))
        except (TypeError, ValueError):
            raise StateMigrationError(f"Character '{character_id}' has invalid trust.") from None
        return cls(
            character_id=character_id,
            trust=trust,
            relationship_status=status,
            knowledge_flags=frozenset(data.get("knowledge_flags") or ()),
            conversation_history=tuple(data.get("conversation_history") or ()),
            last_interaction=data.get("last_interaction"),
        )


@dataclass(frozen=True)
class OrbBalance:
    """Orbs earned per pattern, capped at ``MAX_ORB_COUNT`` each."""

    balance: Mapping[str, int] = field(default_factory=default_patterns)
    total_earned: int = 0

    def fill(self, pattern: str) -> int:
        count = self.balance.get(pattern, 0)
        return min(100, count * 100 // MAX_ORB_COUNT)

    def fill_levels(self) -> Dict[str, int]:
        return {key: self.fill(key) for key in PATTERN_KEYS}

    def earn(self, deltas: Mapping[str, int]) -> "OrbBalance":
        balance = dict(self.balance)
        earned = 0
        for pattern, amount in deltas.items():
            before = balance.get(pattern, 0)
            after = clamp(before + amount, 0, MAX_ORB_COUNT)
            balance[pattern] = after
            earned += max(0, after - before)
        return OrbBalance(balance=balance, total_earned=self.total_earned + earned)

    def to_dict(self) -> Dict[str, Any]:
        return {"balance": dict(self.balance), "total_earned": self.total_earned}

    @classmethod
    def from_dict(cls, data: Any) -> "OrbBalance":
        if not isinstance(data, Mapping):
            return cls()
        raw = data.get("balance")
        raw = raw if isinstance(raw, Mapping) else {}
        balance = {key: clamp(int(raw.get(key, 0)), 0, MAX_ORB_COUNT) for key in PATTERN_KEYS}
        return cls(balance=balance, total_earned=max(0, int(data.get("total_earned", 0))))


@dataclass(frozen=True)
class GameState:
    player_id: str = "player"
    characters: Mapping[str, CharacterState] = field(default_factory=dict)
    global_flags: FrozenSet[str] = frozenset()
    patterns: Mapping[str, int] = field(default_factory=default_patterns)
    skill_levels: Mapping[str, float] = field(default_factory=dict)
    orbs: OrbBalance = field(default_factory=OrbBalance)
    current_node_id: str | None = None
    last_saved: float | None = None
    save_version: int = STATE_VERSION

    def character(self, character_id: str) -> CharacterState:
        """Return the stored character, or a fresh one the player has not met yet."""
        existing = self.characters.get(character_id)
        if existing is not None:
            return existing
        return CharacterState(character_id=character_id)

    def with_character(self, character: CharacterState) -> "GameState":
        characters = dict(self.characters)
        characters[character.character_id] = character
        return replace(self, characters=characters)

    def with_flags(
        self, add: Iterable[str] = (), remove: Iterable[str] = ()
    ) -> "GameState":
        flags = (set(self.global_flags) | set(add)) - set(remove)
        return replace(self, global_flags=frozenset(flags))

    def pattern(self, pattern: str) -> int:
        return self.patterns.get(pattern, 0)

    def orb_fill(self, pattern: str) -> int:
        return self.orbs.fill(pattern)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.save_version,
            "player_id": self.player_id,
            "characters": {
                character_id: character.to_dict()
                for character_id, character in sorted(self.characters.items())
            },
            "global_flags": sorted(self.global_flags),
            "patterns": {key: self.patterns.get(key, 0) for key in PATTERN_KEYS},
            "skill_levels": dict(sorted(self.skill_levels.items())),
            "orbs": self.orbs.to_dict(),
            "current_node_id": self.current_node_id,
            "last_saved": self.last_saved,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameState":
        payload = migrate_state_payload(data, STATE_VERSION)

        raw_characters = payload.get("characters") or {}
        if not isinstance(raw_characters, dict):
            raise StateMigrationError("'characters' must be an object keyed by character ID.")
        characters: Dict[str, CharacterState] = {}
        for character_id, entry in raw_characters.items():
            if not isinstance(entry, dict):
                raise StateMigrationError(f"Character '{character_id}' must be an object.")
            entry = dict(entry)
            entry.setdefault("character_id", character_id)
            characters[character_id] = CharacterState.from_dict(entry)

        raw_patterns = payload.get("patterns") or {}
        if not isinstance(raw_patterns, dict):
            raise StateMigrationError("'patterns' must be an object.")
        unknown = sorted(key for key in raw_patterns if not is_pattern(key))
        if unknown:
            raise StateMigrationError(f"Unknown pattern keys: {', '.join(unknown)}.")
        patterns = {key: max(0, int(raw_patterns.get(key, 0))) for key in PATTERN_KEYS}

        raw_skills = payload.get("skill_levels") or {}
        if not isinstance(raw_skills, dict):
            raise StateMigrationError("'skill_levels' must be an object.")
        skills = {
            str(skill): clamp(float(level), 0.0, SKILL_LEVEL_MAX)
            for skill, level in raw_skills.items()
        }

        return cls(
            player_id=str(payload.get("player_id") or "player"),
            characters=characters,
            global_flags=frozenset(payload.get("global_flags") or ()),
            patterns=patterns,
            skill_levels=skills,
            orbs=OrbBalance.from_dict(payload.get("orbs")),
            current_node_id=payload.get("current_node_id"),
            last_saved=payload.get("last_saved"),
            save_version=STATE_VERSION,
        )


def new_game_state(player_id: str = "player", current_node_id: str | None = None) -> GameState:
    return GameState(player_id=player_id, current_node_id=current_node_id)
