import json
from pathlib import Path

import pytest

from terminus.baseline import compare_to_baseline, load_baseline, write_baseline
from terminus.settings import EngineSettings, SimulationConfig, load_settings, load_simulation_config
from terminus.state import (
    STATE_VERSION,
    CharacterState,
    GameState,
    OrbBalance,
    new_game_state,
    relationship_for_trust,
)
from terminus.state_migrations import StateMigrationError, migrate_state_payload


def legacy_payload() -> dict:
    return {
        "saveVersion": "1.0",
        "playerId": "player-7",
        "currentNodeId": "maya_robotics",
        "globalFlags": ["met_samuel", "met_maya"],
        "patterns": {"building": 2, "patience": 1},
        "characters": [
            {
                "characterId": "maya",
                "trust": 4,
                "relationshipStatus": "acquaintance",
                "knowledgeFlags": ["knows_robotics"],
                "conversationHistory": ["maya_introduction"],
            }
        ],
        "lastSaved": 1700000000,
    }


def test_legacy_payload_migrates_to_current_version() -> None:
    payload = migrate_state_payload(legacy_payload(), STATE_VERSION)
    assert payload["version"] == STATE_VERSION
    assert payload["player_id"] == "player-7"
    assert payload["characters"]["maya"]["knowledge_flags"] == ["knows_robotics"]
    assert payload["skill_levels"] == {}
    assert payload["orbs"]["total_earned"] == 0


def test_game_state_round_trips_legacy_save() -> None:
    state = GameState.from_dict(legacy_payload())
    maya = state.character("maya")
    assert maya.trust == 4
    assert maya.relationship_status == "acquaintance"
    assert state.pattern("building") == 2
    assert state.global_flags == frozenset({"met_samuel", "met_maya"})
    assert GameState.from_dict(state.to_dict()) == state


def test_migration_does_not_mutate_input() -> None:
    payload = legacy_payload()
    migrate_state_payload(payload, STATE_VERSION)
    assert payload == legacy_payload()


@pytest.mark.parametrize(
    ("payload", "match"),
    [
        ({"version": 99}, "newer than supported"),
        ({"version": "2"}, "invalid"),
        ({"version": 2, "patterns": {"cooking": 1}}, "Unknown pattern"),
        ({"version": 2, "characters": {"maya": {"relationship_status": "rival"}}}, "relationship"),
        ({"characters": "maya"}, "list or an object"),
    ],
)
def test_bad_state_payloads_raise(payload: dict, match: str) -> None:
    with pytest.raises(StateMigrationError, match=match):
        GameState.from_dict(payload)


def test_character_lookup_does_not_store_unmet_characters() -> None:
    state = new_game_state()
    devon = state.character("devon")
    assert devon.trust == 0
    assert devon.has_met() is False
    assert "devon" not in state.characters


@pytest.mark.parametrize(
    ("trust", "current", "expected"),
    [
        (0, "stranger", "stranger"),
        (3, "stranger", "acquaintance"),
        (6, "stranger", "confidant"),
        (1, "confidant", "confidant"),
        (4, "confidant", "confidant"),
    ],
)
def test_relationship_follows_trust_without_regressing(trust: int, current: str, expected: str) -> None:
    assert relationship_for_trust(trust, current) == expected


def test_orbs_are_capped_per_pattern() -> None:
    orbs = OrbBalance().earn({"analytical": 95}).earn({"analytical": 10})
    assert orbs.balance["analytical"] == 100
    assert orbs.fill("analytical") == 100
    assert orbs.total_earned == 100


def test_state_updates_return_new_objects() -> None:
    state = new_game_state()
    updated = state.with_character(CharacterState("maya", trust=2)).with_flags(["met_maya"])
    assert state.characters == {}
    assert state.global_flags == frozenset()
    assert updated.character("maya").trust == 2


def test_settings_clamp_out_of_range_values(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"max_redirect_hops": 0, "search_strategy": "astar", "reachability_max_states": "many"})
    )
    settings = load_settings(path)
    assert settings.max_redirect_hops == 1
    assert settings.search_strategy == "bfs"
    assert settings.reachability_max_states == EngineSettings().reachability_max_states
    assert settings.copy() == settings


def test_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    assert load_settings(tmp_path / "missing.json") == EngineSettings()
    broken = tmp_path / "broken.json"
    broken.write_text("{not json")
    assert load_settings(broken) == EngineSettings()


def test_settings_build_simulator_options() -> None:
    settings = EngineSettings(reachability_max_steps=9, search_strategy="dfs")
    options = settings.reachability_options("samuel_introduction")
    assert options.start_node_id == "samuel_introduction"
    assert options.max_steps == 9
    assert options.strategy == "dfs"
    assert settings.narrative_options().max_expansions == settings.narrative_max_expansions


def test_simulation_config_validates_fields(tmp_path: Path) -> None:
    path = tmp_path / "sim.json"
    path.write_text(json.dumps({"start_node_ids": ["a", "b"], "max_steps": 10}))
    config = load_simulation_config(path)
    assert config.fixture == "new_game"
    assert config.critical_path_options().start_node_ids == ("a", "b")
    assert config.critical_path_options().max_steps == 10

    with pytest.raises(ValueError, match="start_node_ids"):
        SimulationConfig.from_dict({"start_node_ids": []})
    with pytest.raises(ValueError, match="max_states"):
        SimulationConfig.from_dict({"start_node_ids": ["a"], "max_states": 0})


def test_baseline_comparison(tmp_path: Path) -> None:
    path = tmp_path / "baseline.json"
    assert load_baseline(path) == []

    write_baseline(path, ["soft_deadlock:b", "dead_end:a", "dead_end:a"])
    assert load_baseline(path) == ["dead_end:a", "soft_deadlock:b"]

    comparison = compare_to_baseline(["dead_end:a", "missing_node:c"], load_baseline(path))
    assert comparison.new == ("missing_node:c",)
    assert comparison.resolved == ("soft_deadlock:b",)
    assert comparison.known == ("dead_end:a",)
    assert comparison.ok is False


def test_baseline_accepts_plain_list(tmp_path: Path) -> None:
    path = tmp_path / "baseline.json"
    path.write_text(json.dumps(["x"]))
    assert load_baseline(path) == ["x"]
    path.write_text(json.dumps({"signatures": [1]}))
    with pytest.raises(ValueError, match="signature strings"):
        load_baseline(path)
