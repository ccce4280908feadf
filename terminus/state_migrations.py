"""Game state payload migrations for Grand Central Terminus."""

from __future__ import annotations

import copy
from typing import Any, Callable, Dict, List

from terminus.patterns import PATTERN_KEYS


class StateMigrationError(Exception):
    """Raised when a state payload cannot be brought up to the current schema."""


Migration = Callable[[Dict], Dict]


def _as_str_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item) for item in value if isinstance(item, str) and item]
    return []


def _legacy_character(entry: Any, fallback_id: str | None = None) -> Dict[str, Any]:
    if not isinstance(entry, dict):
        raise StateMigrationError("Legacy character entries must be objects.")
    character_id = entry.get("characterId") or entry.get("character_id") or fallback_id
    if not isinstance(character_id, str) or not character_id:
        raise StateMigrationError("Legacy character entry is missing 'characterId'.")
    return {
        "character_id": character_id,
        "trust": entry.get("trust", 0),
        "relationship_status": entry.get("relationshipStatus", "stranger"),
        "knowledge_flags": _as_str_list(entry.get("knowledgeFlags")),
        "conversation_history": _as_str_list(entry.get("conversationHistory")),
        "last_interaction": entry.get("lastInteraction"),
    }


def _migrate_v0_to_v1(payload: Dict) -> Dict:
    # v0 is the flat camelCase layout written by the first web client.
    raw_characters = payload.get("characters") or []
    characters: Dict[str, Dict[str, Any]] = {}
    if isinstance(raw_characters, dict):
        for character_id, entry in raw_characters.items():
            character = _legacy_character(entry, character_id)
            characters[character["character_id"]] = character
    elif isinstance(raw_characters, list):
        for entry in raw_characters:
            character = _legacy_character(entry)
            characters[character["character_id"]] = character
    else:
        raise StateMigrationError("Legacy 'characters' must be a list or an object.")

    patterns = payload.get("patterns")
    if not isinstance(patterns, dict):
        patterns = {}

    return {
        "version": 1,
        "player_id": payload.get("playerId") or payload.get("player_id") or "player",
        "characters": characters,
        "global_flags": _as_str_list(payload.get("globalFlags")),
        "patterns": {key: patterns.get(key, 0) for key in PATTERN_KEYS},
        "current_node_id": payload.get("currentNodeId"),
        "last_saved": payload.get("lastSaved"),
    }


def _migrate_v1_to_v2(payload: Dict) -> Dict:
    upgraded = dict(payload)
    upgraded["version"] = 2
    upgraded.setdefault("skill_levels", {})
    upgraded.setdefault(
        "orbs",
        {"balance": {key: 0 for key in PATTERN_KEYS}, "total_earned": 0},
    )
    return upgraded


MIGRATIONS: Dict[int, Migration] = {
    0: _migrate_v0_to_v1,
    1: _migrate_v1_to_v2,
}


def detect_version(payload: Dict) -> int:
    version = payload.get("version")
    if version is None:
        # Legacy payloads carry a string 'saveVersion' instead.
        return 0
    if isinstance(version, bool) or not isinstance(version, int):
        raise StateMigrationError("State version missing or invalid.")
    return version


def migrate_state_payload(payload: Dict, target_version: int) -> Dict:
    if not isinstance(payload, dict):
        raise StateMigrationError("State payload was not an object.")

    version = detect_version(payload)
    if version > target_version:
        raise StateMigrationError(
            f"State schema {version} is newer than supported {target_version}."
        )

    current = copy.deepcopy(payload)
    while version < target_version:
        migrator = MIGRATIONS.get(version)
        if migrator is None:
            raise StateMigrationError(f"No migration available for state schema {version}.")
        current = migrator(current)
        next_version = current.get("version")
        if not isinstance(next_version, int) or next_version <= version:
            raise StateMigrationError("Migration produced an invalid schema version.")
        version = next_version

    return current
