"""Per-graph narrative path simulation.

Every graph is explored from its start node with a fresh game state. Any
reachable point where play cannot continue is reported with the trace of
choices that led there.
"""

from __future__ import annotations

from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import logging
from typing import Any, Deque, Dict, List, Set, Tuple

from terminus.conditions import KnowledgeFlagGate
from terminus.evaluator import evaluate_condition, takeable_choices
from terminus.graph import DialogueGraph
from terminus.navigator import REVISIT_SUFFIX, GraphRegistry, Resolution, character_for_graph
from terminus.simulation import TraceStep, enter_node, evaluate_node, state_fingerprint, take_choice
from terminus.state import CharacterState, GameState, new_game_state

logger = logging.getLogger(__name__)

MISSING_START = "missing_start"
SOFT_DEADLOCK = "soft_deadlock"
HARD_DEAD_END = "hard_dead_end"
MISSING_TARGET = "missing_target"


@dataclass(frozen=True)
class NarrativeSimOptions:
    max_steps_per_path: int = 120
    max_expansions: int = 6000
    max_states_per_node: int = 40


@dataclass(frozen=True)
class SimFailure:
    graph_key: str
    node_id: str
    kind: str
    message: str
    trace: Tuple[TraceStep, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.graph_key}/{self.node_id}/{self.kind}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graphKey": self.graph_key,
            "nodeId": self.node_id,
            "kind": self.kind,
            "message": self.message,
            "trace": [step.to_dict() for step in self.trace],
        }


@dataclass(frozen=True)
class RequiredStateMismatch:
    graph_key: str
    node_id: str
    requirement: str
    trace: Tuple[TraceStep, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graphKey": self.graph_key,
            "nodeId": self.node_id,
            "requirement": self.requirement,
            "trace": [step.to_dict() for step in self.trace],
        }


@dataclass(frozen=True)
class GraphSummary:
    graph_key: str
    start_node_id: str
    expansions: int
    visited_nodes: int
    total_nodes: int
    failures: int
    truncated: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graphKey": self.graph_key,
            "startNodeId": self.start_node_id,
            "expansions": self.expansions,
            "visitedNodes": self.visited_nodes,
            "totalNodes": self.total_nodes,
            "failures": self.failures,
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class NarrativeSimReport:
    generated_at: str
    options: NarrativeSimOptions
    per_graph: Tuple[GraphSummary, ...]
    failures: Tuple[SimFailure, ...]
    required_state_mismatches: Tuple[RequiredStateMismatch, ...]

    @property
    def totals(self) -> Dict[str, int]:
        return {
            "graphs": len(self.per_graph),
            "expansions": sum(summary.expansions for summary in self.per_graph),
            "failures": len(self.failures),
            "requiredStateMismatches": len(self.required_state_mismatches),
            "truncatedGraphs": sum(1 for summary in self.per_graph if summary.truncated),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "options": asdict(self.options),
            "totals": self.totals,
            "perGraph": [summary.to_dict() for summary in self.per_graph],
            "failures": [failure.to_dict() for failure in self.failures],
            "requiredStateMismatches": [item.to_dict() for item in self.required_state_mismatches],
        }


def _revisit_entry_flag(graph: DialogueGraph) -> str | None:
    start = graph.get(graph.start_node_id)
    if start is None:
        return None
    for choice in start.choices:
        for condition in (choice.visible_condition, choice.enabled_condition):
            for gate in condition.gates if condition is not None else ():
                if isinstance(gate, KnowledgeFlagGate) and gate.flags:
                    return gate.flags[0]
    return None


def initial_state_for_graph(graph_key: str, graph: DialogueGraph) -> GameState:
    """Fresh state for a graph; revisit graphs start as if the arc was finished.

    Revisit entry nodes usually branch on a decision made during the base arc,
    so the first knowledge flag the start node's choices ask for is seeded too.
    """
    state = new_game_state(current_node_id=graph.start_node_id)
    if not graph_key.endswith(REVISIT_SUFFIX):
        return state
    character_id = character_for_graph(graph_key)
    state = state.with_flags([f"{character_id}_arc_complete"])
    entry_flag = _revisit_entry_flag(graph)
    if entry_flag is None:
        return state
    character = CharacterState(character_id=character_id, knowledge_flags=frozenset({entry_flag}))
    return state.with_character(character)


def _simulate_graph(
    registry: GraphRegistry, graph_key: str, options: NarrativeSimOptions
) -> Tuple[GraphSummary, List[SimFailure], List[RequiredStateMismatch]]:
    graph = registry.graph(graph_key)
    failures: Dict[Tuple[str, str], SimFailure] = {}
    mismatches: Dict[str, RequiredStateMismatch] = {}

    def fail(node_id: str, kind: str, message: str, trace: Tuple[TraceStep, ...]) -> None:
        failures.setdefault((node_id, kind), SimFailure(graph_key, node_id, kind, message, trace))

    start = registry.try_resolve(graph.start_node_id) if graph.start_node_id in graph else None
    if start is None:
        fail(graph.start_node_id, MISSING_START, "Start node does not resolve to a defined node.", ())
        summary = GraphSummary(graph_key, graph.start_node_id, 0, 0, len(graph), len(failures), False)
        return summary, list(failures.values()), []

    frontier: Deque[Tuple[Resolution, GameState, Tuple[TraceStep, ...]]] = deque(
        [(start, initial_state_for_graph(graph_key, graph), ())]
    )
    seen: Set[str] = set()
    per_node: Counter = Counter()
    visited: Set[str] = set()
    expansions = 0
    truncated = False

    while frontier:
        resolution, state, trace = frontier.popleft()
        node = resolution.node

        if node.node_id not in mismatches and not evaluate_condition(
            node.required_state, state, resolution.character_id
        ):
            mismatches[node.node_id] = RequiredStateMismatch(
                graph_key, node.node_id, node.required_state.describe(), trace
            )
        state = enter_node(resolution, state)

        key = state_fingerprint(node.node_id, state, resolution.character_id)
        if key in seen or per_node[node.node_id] >= options.max_states_per_node:
            continue
        if expansions >= options.max_expansions:
            truncated = True
            break
        seen.add(key)
        per_node[node.node_id] += 1
        expansions += 1
        visited.add(node.node_id)

        evaluated = evaluate_node(registry, resolution, state)
        takeable = takeable_choices(evaluated)
        if not takeable and not node.is_boundary:
            if evaluated:
                fail(node.node_id, SOFT_DEADLOCK, "Choices exist but none can be taken.", trace)
            else:
                fail(node.node_id, HARD_DEAD_END, "Node has no choices and is not a boundary.", trace)
            continue
        if len(trace) >= options.max_steps_per_path:
            truncated = True
            continue

        for entry in takeable:
            step = TraceStep(node.node_id, entry.choice_id, entry.choice.next_node_id)
            target = registry.try_resolve(entry.choice.next_node_id)
            if target is None:
                fail(
                    entry.choice.next_node_id,
                    MISSING_TARGET,
                    f"Choice '{entry.choice_id}' targets a node that does not resolve.",
                    trace + (step,),
                )
                continue
            if target.graph_key != graph_key:
                continue
            frontier.append((target, take_choice(resolution, state, entry), trace + (step,)))

    if truncated:
        logger.debug("Narrative sim for '%s' truncated after %d expansions.", graph_key, expansions)
    summary = GraphSummary(
        graph_key=graph_key,
        start_node_id=graph.start_node_id,
        expansions=expansions,
        visited_nodes=len(visited),
        total_nodes=len(graph),
        failures=len(failures),
        truncated=truncated,
    )
    return summary, list(failures.values()), list(mismatches.values())


def build_narrative_sim_report(
    registry: GraphRegistry,
    options: NarrativeSimOptions | None = None,
    *,
    generated_at: str | None = None,
) -> NarrativeSimReport:
    options = options or NarrativeSimOptions()
    summaries: List[GraphSummary] = []
    failures: List[SimFailure] = []
    mismatches: List[RequiredStateMismatch] = []
    for graph_key in registry.graph_keys():
        summary, graph_failures, graph_mismatches = _simulate_graph(registry, graph_key, options)
        summaries.append(summary)
        failures.extend(graph_failures)
        mismatches.extend(graph_mismatches)

    failures.sort(key=lambda item: (item.graph_key, item.kind, item.node_id))
    mismatches.sort(key=lambda item: (item.graph_key, item.node_id))
    return NarrativeSimReport(
        generated_at=generated_at or datetime.now(timezone.utc).isoformat(),
        options=options,
        per_graph=tuple(summaries),
        failures=tuple(failures),
        required_state_mismatches=tuple(mismatches),
    )
