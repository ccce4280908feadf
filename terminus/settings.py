"""Engine and simulation configuration for Grand Central Terminus."""

from __future__ import annotations

from dataclasses import asdict, dataclass
import json
import logging
from pathlib import Path
from typing import Any, Dict, Tuple

from terminus.narrative_sim import NarrativeSimOptions
from terminus.navigator import MAX_REDIRECT_HOPS
from terminus.simulation import STRATEGIES, CriticalPathOptions, ReachabilityOptions

logger = logging.getLogger(__name__)

_BASE_DIR = Path(__file__).resolve().parent.parent
SETTINGS_PATH = _BASE_DIR / "terminus.settings.json"


def _clamp(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, value))


@dataclass
class EngineSettings:
    """Tunable bounds shared by the navigator and the simulators."""

    max_redirect_hops: int = MAX_REDIRECT_HOPS
    reachability_max_steps: int = 200
    reachability_max_states: int = 5000
    max_unique_states_per_node: int = 25
    search_strategy: str = "bfs"
    narrative_max_steps_per_path: int = 120
    narrative_max_expansions: int = 6000
    narrative_max_states_per_node: int = 40

    def clamp(self) -> "EngineSettings":
        self.max_redirect_hops = _clamp(int(self.max_redirect_hops), 1, 100)
        self.reachability_max_steps = _clamp(int(self.reachability_max_steps), 1, 10_000)
        self.reachability_max_states = _clamp(int(self.reachability_max_states), 1, 1_000_000)
        self.max_unique_states_per_node = _clamp(int(self.max_unique_states_per_node), 1, 10_000)
        strategy = str(self.search_strategy).lower()
        if strategy not in STRATEGIES:
            strategy = "bfs"
        self.search_strategy = strategy
        self.narrative_max_steps_per_path = _clamp(int(self.narrative_max_steps_per_path), 1, 10_000)
        self.narrative_max_expansions = _clamp(int(self.narrative_max_expansions), 1, 1_000_000)
        self.narrative_max_states_per_node = _clamp(int(self.narrative_max_states_per_node), 1, 10_000)
        return self

    def copy(self) -> "EngineSettings":
        return EngineSettings.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "EngineSettings":
        if not isinstance(data, dict):
            return cls()
        defaults = cls()

        def _as_int(key: str) -> int:
            default = getattr(defaults, key)
            try:
                return int(data.get(key, default))
            except (TypeError, ValueError):
                return default

        settings = cls(
            max_redirect_hops=_as_int("max_redirect_hops"),
            reachability_max_steps=_as_int("reachability_max_steps"),
            reachability_max_states=_as_int("reachability_max_states"),
            max_unique_states_per_node=_as_int("max_unique_states_per_node"),
            search_strategy=str(data.get("search_strategy", defaults.search_strategy)),
            narrative_max_steps_per_path=_as_int("narrative_max_steps_per_path"),
            narrative_max_expansions=_as_int("narrative_max_expansions"),
            narrative_max_states_per_node=_as_int("narrative_max_states_per_node"),
        )
        return settings.clamp()

    def reachability_options(self, start_node_id: str) -> ReachabilityOptions:
        return ReachabilityOptions(
            start_node_id=start_node_id,
            max_steps=self.reachability_max_steps,
            max_states=self.reachability_max_states,
            max_unique_states_per_node=self.max_unique_states_per_node,
            strategy=self.search_strategy,
        )

    def narrative_options(self) -> NarrativeSimOptions:
        return NarrativeSimOptions(
            max_steps_per_path=self.narrative_max_steps_per_path,
            max_expansions=self.narrative_max_expansions,
            max_states_per_node=self.narrative_max_states_per_node,
        )


def load_settings(path: Path | str = SETTINGS_PATH) -> EngineSettings:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        return EngineSettings()
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable settings file %s: %s", path, exc)
        return EngineSettings()
    return EngineSettings.from_dict(data)


@dataclass(frozen=True)
class SimulationConfig:
    """CI simulation run: which state fixture to start from and where."""

    start_node_ids: Tuple[str, ...]
    fixture: str = "new_game"
    max_steps: int = 120
    max_states: int = 5000
    max_unique_states_per_node: int = 25

    @classmethod
    def from_dict(cls, data: Any) -> "SimulationConfig":
        if not isinstance(data, dict):
            raise ValueError("Simulation config must be a JSON object.")
        starts = data.get("start_node_ids")
        if not isinstance(starts, list) or not starts or not all(isinstance(s, str) and s for s in starts):
            raise ValueError("'start_node_ids' must be a non-empty list of node IDs.")
        fixture = data.get("fixture", "new_game")
        if not isinstance(fixture, str) or not fixture:
            raise ValueError("'fixture' must be a non-empty string.")
        values = {}
        for key in ("max_steps", "max_states", "max_unique_states_per_node"):
            value = data.get(key, getattr(cls, key))
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(f"'{key}' must be a positive integer.")
            values[key] = value
        return cls(start_node_ids=tuple(starts), fixture=fixture, **values)

    def critical_path_options(self) -> CriticalPathOptions:
        return CriticalPathOptions(
            start_node_ids=self.start_node_ids,
            max_steps=self.max_steps,
            max_states=self.max_states,
            max_unique_states_per_node=self.max_unique_states_per_node,
        )


def load_simulation_config(path: Path | str) -> SimulationConfig:
    with Path(path).open("r", encoding="utf-8") as handle:
        return SimulationConfig.from_dict(json.load(handle))
