#!/usr/bin/env python3
"""List nodes that no start node can reach by following choices and redirects."""

import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_BUNDLE_PATH = REPO_ROOT / "content" / "terminus.json"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from terminus.graph import HUB_RETURN_SUFFIX
from terminus.navigator import DEFAULT_HUB_NODE_ID, GraphRegistry
from terminus.schema import normalize_nodes


def load_bundle(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def build_graph(bundle: dict) -> tuple:
    """Adjacency over every node in the bundle plus messages for broken targets."""
    router = GraphRegistry({}, bundle.get("redirects") or {})
    hub = bundle.get("hubNodeId") or DEFAULT_HUB_NODE_ID
    nodes = {}
    for graph in (bundle.get("graphs") or {}).values():
        graph_nodes, _ = normalize_nodes(graph.get("nodes"))
        nodes.update(graph_nodes)

    graph = {node_id: [] for node_id in nodes}
    missing_targets = []
    for node_id, node in nodes.items():
        choices = node.get("choices") or []
        if not choices and node_id.endswith(HUB_RETURN_SUFFIX):
            choices = [{"nextNodeId": hub}]
        for choice in choices:
            target = choice.get("nextNodeId")
            if not isinstance(target, str):
                continue
            redirect = router.follow_redirects(target)
            resolved = redirect.node_id
            graph[node_id].append(resolved)
            if redirect.cycle_detected:
                missing_targets.append(f"{node_id}: redirect cycle from {target} stops at {resolved}")
            elif redirect.truncated:
                missing_targets.append(
                    f"{node_id}: redirect chain from {target} exceeds {router.max_redirect_hops} hops"
                )
            if resolved not in nodes:
                missing_targets.append(f"{node_id}: choice targets missing node {resolved}")
    return graph, missing_targets


def traverse_from(start_node: str, graph: dict) -> set:
    if start_node not in graph:
        return set()
    visited = set()
    stack = [start_node]
    while stack:
        current = stack.pop()
        if current in visited or current not in graph:
            continue
        visited.add(current)
        stack.extend(graph.get(current, []))
    return visited


def main() -> None:
    bundle_path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_BUNDLE_PATH
    bundle = load_bundle(bundle_path)
    graph, missing_targets = build_graph(bundle)

    all_reached = set()
    for entry in (bundle.get("graphs") or {}).values():
        start = entry.get("startNodeId")
        if isinstance(start, str):
            all_reached.update(traverse_from(start, graph))

    unreachable = sorted(set(graph) - all_reached)

    print(f"Bundle file: {bundle_path}")
    print(f"Total nodes: {len(graph)}")
    print(f"Reachable nodes: {len(all_reached)}")
    for message in missing_targets:
        print(f"  ! {message}")
    if unreachable:
        print("Unreachable nodes:")
        for node_id in unreachable:
            print(f"  - {node_id}")
    else:
        print("All nodes reachable from the graph starts.")


if __name__ == "__main__":
    main()
