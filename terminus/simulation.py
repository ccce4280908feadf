"""Bounded state-space simulators used to prove content has no dead ends."""

from __future__ import annotations

from collections import Counter, defaultdict, deque
from dataclasses import dataclass, field
import hashlib
import logging
from typing import Any, Deque, Dict, List, Mapping, Sequence, Set, Tuple

from terminus.evaluator import EvaluatedChoice, evaluate_choices, evaluate_condition, takeable_choices
from terminus.navigator import GraphRegistry, Resolution
from terminus.patterns import PATTERN_KEYS
from terminus.processing import apply_state_changes, process_choice
from terminus.state import GameState

logger = logging.getLogger(__name__)

STRATEGIES = ("bfs", "dfs")


@dataclass(frozen=True)
class TraceStep:
    node_id: str
    choice_id: str
    next_node_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"nodeId": self.node_id, "choiceId": self.choice_id, "nextNodeId": self.next_node_id}


def state_fingerprint(node_id: str, state: GameState, character_id: str) -> str:
    """Coarse identity of a simulation state.

    Only the dimensions conditions look at are kept, and a character's
    knowledge is reduced to a flag count.
    """
    patterns = ",".join(str(state.pattern(key)) for key in PATTERN_KEYS)
    flags = hashlib.sha1("|".join(sorted(state.global_flags)).encode("utf-8")).hexdigest()[:12]
    orbs = ",".join(str(state.orbs.balance.get(key, 0)) for key in PATTERN_KEYS)
    character = state.character(character_id)
    return (
        f"{node_id}|{character_id}|{patterns}|{flags}|{orbs}|"
        f"{character.trust}:{character.relationship_status}:{len(character.knowledge_flags)}"
    )


def enter_node(resolution: Resolution, state: GameState) -> GameState:
    return apply_state_changes(state, resolution.node.on_enter, resolution.character_id)


def evaluate_node(registry: GraphRegistry, resolution: Resolution, state: GameState) -> List[EvaluatedChoice]:
    return evaluate_choices(
        resolution.node, state, resolution.character_id, hub_node_id=registry.hub_node_id
    )


def take_choice(resolution: Resolution, state: GameState, entry: EvaluatedChoice) -> GameState:
    node = resolution.node
    state = apply_state_changes(state, node.on_exit, resolution.character_id)
    next_state, _ = process_choice(
        state, entry.choice, resolution.character_id, node_id=node.node_id, speaker=node.speaker
    )
    return next_state


def _check_strategy(strategy: str) -> str:
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown search strategy '{strategy}'; expected one of {', '.join(STRATEGIES)}.")
    return strategy


@dataclass(frozen=True)
class ReachabilityOptions:
    start_node_id: str
    max_steps: int = 200
    max_states: int = 5000
    max_unique_states_per_node: int = 25
    strategy: str = "bfs"


@dataclass(frozen=True)
class ReachabilityResult:
    visited_node_ids: Tuple[str, ...]
    expanded_states: int
    hit_max_states: bool
    truncated: bool
    visited_by_character: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    missing_node_ids: Tuple[str, ...] = ()
    capped_states: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visitedNodeIds": list(self.visited_node_ids),
            "expandedStates": self.expanded_states,
            "hitMaxStates": self.hit_max_states,
            "truncated": self.truncated,
            "visitedByCharacter": {key: list(value) for key, value in self.visited_by_character.items()},
            "missingNodeIds": list(self.missing_node_ids),
            "cappedStates": self.capped_states,
        }


def simulate_reachability(
    registry: GraphRegistry, initial_state: GameState, options: ReachabilityOptions
) -> ReachabilityResult:
    """Explore (node, state) pairs from ``options.start_node_id`` within the given bounds."""
    depth_first = _check_strategy(options.strategy) == "dfs"
    frontier: Deque[Tuple[str, GameState, int]] = deque([(options.start_node_id, initial_state, 0)])
    seen: Set[str] = set()
    per_node: Counter = Counter()
    visited: Set[str] = set()
    by_character: Dict[str, Set[str]] = defaultdict(set)
    missing: Set[str] = set()
    expanded = 0
    capped = 0
    hit_max_states = False
    depth_limited = False

    while frontier:
        node_id, state, depth = frontier.pop() if depth_first else frontier.popleft()
        resolution = registry.try_resolve(node_id)
        if resolution is None:
            missing.add(node_id)
            continue
        character_id = resolution.character_id
        state = enter_node(resolution, state)

        key = state_fingerprint(resolution.node_id, state, character_id)
        if key in seen:
            continue
        bucket = f"{character_id}:{resolution.node_id}"
        if per_node[bucket] >= options.max_unique_states_per_node:
            capped += 1
            continue
        if expanded >= options.max_states:
            hit_max_states = True
            break

        seen.add(key)
        per_node[bucket] += 1
        expanded += 1
        visited.add(resolution.node_id)
        by_character[character_id].add(resolution.node_id)

        if depth >= options.max_steps:
            depth_limited = True
            continue
        for entry in takeable_choices(evaluate_node(registry, resolution, state)):
            frontier.append((entry.choice.next_node_id, take_choice(resolution, state, entry), depth + 1))

    if hit_max_states:
        logger.debug("Reachability from '%s' stopped at %d states.", options.start_node_id, expanded)
    return ReachabilityResult(
        visited_node_ids=tuple(sorted(visited)),
        expanded_states=expanded,
        hit_max_states=hit_max_states,
        truncated=hit_max_states or depth_limited,
        visited_by_character={key: tuple(sorted(value)) for key, value in sorted(by_character.items())},
        missing_node_ids=tuple(sorted(missing)),
        capped_states=capped,
    )


REQUIRED_STATE_VIOLATION = "required_state_violation"
SOFT_DEADLOCK = "soft_deadlock"
DEAD_END = "dead_end"
MISSING_NODE = "missing_node"


@dataclass(frozen=True)
class ChoiceSnapshot:
    choice_id: str
    next_node_id: str
    visible: bool
    enabled: bool
    reason_code: str | None = None

    @classmethod
    def from_evaluated(cls, entry: EvaluatedChoice) -> "ChoiceSnapshot":
        return cls(
            choice_id=entry.choice_id,
            next_node_id=entry.choice.next_node_id,
            visible=entry.visible,
            enabled=entry.enabled,
            reason_code=entry.reason.code if entry.reason else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "choiceId": self.choice_id,
            "nextNodeId": self.next_node_id,
            "visible": self.visible,
            "enabled": self.enabled,
            "reason": self.reason_code,
        }


@dataclass(frozen=True)
class Violation:
    kind: str
    start_node_id: str
    node_id: str
    message: str
    trace: Tuple[TraceStep, ...] = ()
    choices: Tuple[ChoiceSnapshot, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.kind}:{self.node_id}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "startNodeId": self.start_node_id,
            "nodeId": self.node_id,
            "message": self.message,
            "trace": [step.to_dict() for step in self.trace],
            "choices": [choice.to_dict() for choice in self.choices],
        }


@dataclass(frozen=True)
class CriticalPathOptions:
    start_node_ids: Tuple[str, ...]
    max_steps: int = 120
    max_states: int = 5000
    max_unique_states_per_node: int = 25


@dataclass(frozen=True)
class CriticalPathReport:
    violations: Tuple[Violation, ...]
    expanded_states: int
    truncated: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expandedStates": self.expanded_states,
            "truncated": self.truncated,
            "violations": [violation.to_dict() for violation in self.violations],
        }


def _critical_path_from(
    registry: GraphRegistry,
    initial_state: GameState,
    start_node_id: str,
    options: CriticalPathOptions,
    found: Dict[Tuple[str, str], Violation],
) -> Tuple[int, bool]:
    frontier: Deque[Tuple[str, GameState, Tuple[TraceStep, ...]]] = deque([(start_node_id, initial_state, ())])
    seen: Set[str] = set()
    per_node: Counter = Counter()
    expanded = 0
    truncated = False

    def record(kind: str, node_id: str, message: str, trace: Sequence[TraceStep], choices=()) -> None:
        found.setdefault(
            (kind, node_id),
            Violation(kind, start_node_id, node_id, message, tuple(trace), tuple(choices)),
        )

    while frontier:
        node_id, state, trace = frontier.popleft()
        resolution = registry.try_resolve(node_id)
        if resolution is None:
            record(MISSING_NODE, node_id, f"Node '{node_id}' does not resolve.", trace)
            continue
        node = resolution.node
        character_id = resolution.character_id

        if not evaluate_condition(node.required_state, state, character_id):
            record(
                REQUIRED_STATE_VIOLATION,
                node.node_id,
                f"Reached with state that fails requiredState ({node.required_state.describe()}).",
                trace,
            )
        state = enter_node(resolution, state)

        key = state_fingerprint(node.node_id, state, character_id)
        if key in seen:
            continue
        bucket = f"{character_id}:{node.node_id}"
        if per_node[bucket] >= options.max_unique_states_per_node:
            continue
        if expanded >= options.max_states:
            truncated = True
            break
        seen.add(key)
        per_node[bucket] += 1
        expanded += 1

        evaluated = evaluate_node(registry, resolution, state)
        takeable = takeable_choices(evaluated)
        if not takeable and not node.is_boundary:
            if evaluated:
                record(
                    SOFT_DEADLOCK,
                    node.node_id,
                    "Choices exist but none can be taken.",
                    trace,
                    [ChoiceSnapshot.from_evaluated(entry) for entry in evaluated],
                )
            else:
                record(DEAD_END, node.node_id, "Node has no choices and is not an ending.", trace)
            continue
        if len(trace) >= options.max_steps:
            truncated = True
            continue
        for entry in takeable:
            step = TraceStep(node.node_id, entry.choice_id, entry.choice.next_node_id)
            frontier.append((entry.choice.next_node_id, take_choice(resolution, state, entry), trace + (step,)))

    return expanded, truncated


def simulate_critical_path(
    registry: GraphRegistry, initial_state: GameState, options: CriticalPathOptions
) -> CriticalPathReport:
    """Walk every takeable path from each start node and collect violations once each."""
    found: Dict[Tuple[str, str], Violation] = {}
    total_expanded = 0
    truncated = False
    for start_node_id in options.start_node_ids:
        expanded, start_truncated = _critical_path_from(registry, initial_state, start_node_id, options, found)
        total_expanded += expanded
        truncated = truncated or start_truncated
        logger.debug("Critical path from '%s' expanded %d states.", start_node_id, expanded)
    violations = tuple(sorted(found.values(), key=lambda item: (item.kind, item.node_id)))
    return CriticalPathReport(violations=violations, expanded_states=total_expanded, truncated=truncated)
