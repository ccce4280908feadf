"""Static gating analysis for Grand Central Terminus content bundles."""

from __future__ import annotations

from collections import defaultdict, deque
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Set, Tuple

from terminus.graph import HUB_RETURN_SUFFIX
from terminus.schema import normalize_nodes, path

GATING_FIELDS = ("visibleCondition", "enabledCondition", "requiredOrbFill")


def _is_gated(choice: Mapping[str, Any]) -> bool:
    return any(choice.get(key) not in (None, {}) for key in GATING_FIELDS)


def _iter_choices(
    graph_key: str, nodes: Mapping[str, Any]
) -> Iterable[Tuple[str, Mapping[str, Any], str, Tuple[object, ...]]]:
    for node_id, node in nodes.items():
        choices = node.get("choices")
        if not isinstance(choices, Sequence) or isinstance(choices, (str, bytes)):
            continue
        for index, choice in enumerate(choices):
            if not isinstance(choice, Mapping):
                continue
            target = choice.get("nextNodeId")
            if isinstance(target, str):
                yield node_id, choice, target, ("graphs", graph_key, "nodes", node_id, "choices", index)


def analyze_softlocks(bundle: Mapping[str, Any]) -> List[str]:
    """Warn about nodes whose every exit is gated and chains that lead into them."""
    graphs = bundle.get("graphs")
    if not isinstance(graphs, Mapping):
        return []
    redirects = bundle.get("redirects") or {}
    if not isinstance(redirects, Mapping):
        redirects = {}

    all_nodes: Dict[str, Mapping[str, Any]] = {}
    node_paths: Dict[str, str] = {}
    choice_meta: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    starts: List[str] = []
    for graph_key, graph in graphs.items():
        if not isinstance(graph, Mapping):
            continue
        nodes, _ = normalize_nodes(graph.get("nodes"))
        for node_id, node in nodes.items():
            all_nodes[node_id] = node
            node_paths[node_id] = path("graphs", graph_key, "nodes", node_id)
        for node_id, choice, target, choice_path in _iter_choices(graph_key, nodes):
            choice_meta[node_id].append(
                {"target": target, "gated": _is_gated(choice), "path": path(*choice_path)}
            )
        start = graph.get("startNodeId")
        if isinstance(start, str):
            starts.append(start)

    def follow(node_id: str) -> str:
        hops = 0
        seen = {node_id}
        while node_id in redirects and hops < 10:
            target = redirects[node_id]
            if target in seen:
                break
            seen.add(target)
            node_id = target
            hops += 1
        return node_id

    warnings: List[str] = []
    for node_id, choices in choice_meta.items():
        if choices and not any(not choice["gated"] for choice in choices):
            choice_paths = ", ".join(choice["path"] for choice in choices)
            warnings.append(f"{node_paths[node_id]}: all choices are gated. Choices: {choice_paths}.")

    def traverse(start_node: str) -> List[str]:
        visited: Set[str] = set()
        queue: deque[str] = deque([start_node])
        chain_warnings: List[str] = []
        while queue:
            node_id = follow(queue.popleft())
            if node_id in visited or node_id not in all_nodes:
                continue
            visited.add(node_id)
            choices = choice_meta.get(node_id, [])
            ungated = [choice for choice in choices if not choice["gated"]]
            if choices and not ungated:
                chain_warnings.append(
                    f"{node_paths[node_id]}: traversal from start '{start_node}'"
                    " hit node with no ungated exits."
                )
            if not choices and node_id.endswith(HUB_RETURN_SUFFIX):
                continue
            queue.extend(choice["target"] for choice in ungated)
        return chain_warnings

    for start_node in starts:
        warnings.extend(traverse(start_node))
    return warnings
