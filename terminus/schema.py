"""Structural validation for Grand Central Terminus content bundles."""

from __future__ import annotations

from collections import Counter
import json
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Sequence, Set, Tuple

from terminus.conditions import condition_errors
from terminus.patterns import PATTERN_KEYS, is_pattern
from terminus.state import RELATIONSHIP_LEVELS

CHOICE_FIELDS = {
    "choiceId",
    "text",
    "nextNodeId",
    "visibleCondition",
    "enabledCondition",
    "requiredOrbFill",
    "pattern",
    "skills",
    "consequence",
    "preview",
}
STATE_CHANGE_FIELDS = {
    "characterId",
    "trustChange",
    "setRelationshipStatus",
    "addKnowledgeFlags",
    "removeKnowledgeFlags",
    "addGlobalFlags",
    "removeGlobalFlags",
    "patternChanges",
}


def path(*parts: object) -> str:
    path_str = ""
    for part in parts:
        if isinstance(part, int):
            path_str = f"{path_str}[{part}]"
            continue
        part = str(part)
        if part.isidentifier():
            path_str = f"{path_str}.{part}" if path_str else part
        else:
            path_str = f"{path_str}[{json.dumps(part)}]"
    return path_str


def format_validation_message(path_str: str, context: str, message: str) -> str:
    if context:
        return f"{path_str}: {context}: {message}"
    return f"{path_str}: {message}"


def is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_str_list(value: Any) -> bool:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        return False
    return all(is_non_empty_str(item) for item in value)


class ValidationContext:
    """Accumulates validation messages instead of stopping at the first one."""

    def __init__(self) -> None:
        self.errors: List[str] = []

    def add(self, context: str, path_str: str, message: str) -> None:
        self.errors.append(format_validation_message(path_str, context, message))

    def extend_with_path(self, messages: Iterable[str], path_str: str) -> None:
        for message in messages:
            self.errors.append(f"{path_str}: {message}")

    def ok(self) -> bool:
        return not self.errors


def normalize_nodes(
    raw_nodes: Any, ctx: ValidationContext | None = None, base_path: Sequence[object] = ()
) -> Tuple[Dict[str, Dict[str, Any]], List[str]]:
    """Accept nodes as an object keyed by ID or a list of ``nodeId`` entries."""
    nodes: Dict[str, Dict[str, Any]] = {}
    errors: List[str] = []
    node_ids: List[str] = []

    def add_error(context: str, path_parts: Sequence[object], message: str) -> None:
        path_str = path(*base_path, *path_parts)
        errors.append(format_validation_message(path_str, context, message))
        if ctx is not None:
            ctx.add(context, path_str, message)

    if isinstance(raw_nodes, Mapping):
        for node_id, payload in raw_nodes.items():
            if not is_non_empty_str(node_id):
                add_error("Nodes", ("nodes",), "node identifiers must be non-empty strings.")
                continue
            if not isinstance(payload, Mapping):
                add_error("Nodes", ("nodes", node_id), f"node '{node_id}' must be an object.")
                continue
            nodes[node_id] = dict(payload)
        node_ids = list(nodes)
    elif isinstance(raw_nodes, list):
        for idx, entry in enumerate(raw_nodes):
            if not isinstance(entry, MutableMapping):
                add_error(f"Node entry {idx + 1}", ("nodes", idx), "must be an object.")
                continue
            node_id = entry.get("nodeId")
            if not is_non_empty_str(node_id):
                add_error(f"Node entry {idx + 1}", ("nodes", idx, "nodeId"), "is missing a valid 'nodeId'.")
                continue
            node_ids.append(node_id)
            payload = dict(entry)
            payload.pop("nodeId", None)
            nodes[node_id] = payload
    else:
        add_error(
            "Graph data",
            ("nodes",),
            "must be an object mapping IDs to node definitions or a list of node entries.",
        )

    duplicates = sorted(node_id for node_id, count in Counter(node_ids).items() if count > 1)
    if duplicates:
        add_error("Nodes", ("nodes",), f"duplicate node IDs found: {', '.join(duplicates)}.")

    return nodes, errors


def validate_condition(
    condition: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    ctx.extend_with_path(condition_errors(condition, context), path(*path_parts))


def validate_state_change(
    change: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    if not isinstance(change, Mapping):
        ctx.add(context, path(*path_parts), "state change must be an object.")
        return

    unknown = sorted(set(change) - STATE_CHANGE_FIELDS)
    if unknown:
        ctx.add(context, path(*path_parts), f"unsupported state change fields: {', '.join(unknown)}.")

    character_id = change.get("characterId")
    if character_id is not None and not is_non_empty_str(character_id):
        ctx.add(context, path(*path_parts, "characterId"), "must be a non-empty string.")

    trust_change = change.get("trustChange")
    if trust_change is not None and (isinstance(trust_change, bool) or not isinstance(trust_change, int)):
        ctx.add(context, path(*path_parts, "trustChange"), "must be an integer.")

    status = change.get("setRelationshipStatus")
    if status is not None and status not in RELATIONSHIP_LEVELS:
        ctx.add(context, path(*path_parts, "setRelationshipStatus"), f"unknown relationship status '{status}'.")

    character_scoped = ("trustChange", "setRelationshipStatus", "addKnowledgeFlags", "removeKnowledgeFlags")
    if character_id is None and any(key in change for key in character_scoped):
        ctx.add(context, path(*path_parts), "character changes require 'characterId'.")

    for key in ("addKnowledgeFlags", "removeKnowledgeFlags", "addGlobalFlags", "removeGlobalFlags"):
        if key in change and not is_str_list(change[key]):
            ctx.add(context, path(*path_parts, key), "must be a list of non-empty strings.")

    pattern_changes = change.get("patternChanges")
    if pattern_changes is not None:
        if not isinstance(pattern_changes, Mapping):
            ctx.add(context, path(*path_parts, "patternChanges"), "must be an object keyed by pattern.")
        else:
            for pattern, delta in pattern_changes.items():
                if not is_pattern(pattern):
                    ctx.add(context, path(*path_parts, "patternChanges", pattern), f"unknown pattern '{pattern}'.")
                elif isinstance(delta, bool) or not isinstance(delta, int):
                    ctx.add(context, path(*path_parts, "patternChanges", pattern), "must be an integer.")


def validate_state_changes(
    changes: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    if changes is None:
        return
    if not isinstance(changes, list):
        ctx.add(context, path(*path_parts), "must be a list of state changes.")
        return
    for idx, change in enumerate(changes):
        validate_state_change(change, f"{context} (entry {idx + 1})", (*path_parts, idx), ctx)


def validate_choice(
    choice: Any,
    node_id: str,
    index: int,
    known_targets: Set[str],
    path_parts: Sequence[object],
    ctx: ValidationContext,
) -> None:
    context = f"Choice {index + 1} in node '{node_id}'"
    if not isinstance(choice, Mapping):
        ctx.add(context, path(*path_parts), "must be an object.")
        return

    unknown = sorted(set(choice) - CHOICE_FIELDS)
    if unknown:
        ctx.add(context, path(*path_parts), f"unsupported choice fields: {', '.join(unknown)}.")

    if not is_non_empty_str(choice.get("choiceId")):
        ctx.add(context, path(*path_parts, "choiceId"), "requires a non-empty 'choiceId'.")
    if not is_non_empty_str(choice.get("text")):
        ctx.add(context, path(*path_parts, "text"), "requires non-empty 'text'.")

    target = choice.get("nextNodeId")
    if not is_non_empty_str(target):
        ctx.add(context, path(*path_parts, "nextNodeId"), "requires a non-empty 'nextNodeId'.")
    elif target not in known_targets:
        ctx.add(context, path(*path_parts, "nextNodeId"), f"targets unknown node '{target}'.")

    validate_condition(choice.get("visibleCondition"), context, (*path_parts, "visibleCondition"), ctx)
    validate_condition(choice.get("enabledCondition"), context, (*path_parts, "enabledCondition"), ctx)

    orb = choice.get("requiredOrbFill")
    if orb is not None:
        if not isinstance(orb, Mapping):
            ctx.add(context, path(*path_parts, "requiredOrbFill"), "must be an object.")
        else:
            if not is_pattern(orb.get("pattern")):
                ctx.add(context, path(*path_parts, "requiredOrbFill", "pattern"), "must name a pattern.")
            threshold = orb.get("threshold")
            if isinstance(threshold, bool) or not isinstance(threshold, int) or not 0 <= threshold <= 100:
                ctx.add(context, path(*path_parts, "requiredOrbFill", "threshold"), "must be an integer 0-100.")

    pattern = choice.get("pattern")
    if pattern is not None and not is_pattern(pattern):
        ctx.add(context, path(*path_parts, "pattern"), f"unknown pattern '{pattern}'.")

    skills = choice.get("skills")
    if skills is not None and not is_str_list(skills):
        ctx.add(context, path(*path_parts, "skills"), "must be a list of skill names.")

    consequence = choice.get("consequence")
    if consequence is not None:
        validate_state_change(consequence, context, (*path_parts, "consequence"), ctx)


def validate_node(
    node: Mapping[str, Any],
    node_id: str,
    known_targets: Set[str],
    path_parts: Sequence[object],
    ctx: ValidationContext,
) -> None:
    context = f"Node '{node_id}'"
    if not is_non_empty_str(node.get("speaker")):
        ctx.add(context, path(*path_parts, "speaker"), "requires a non-empty 'speaker'.")

    content = node.get("content")
    if isinstance(content, str):
        if not content.strip():
            ctx.add(context, path(*path_parts, "content"), "must not be empty.")
    elif isinstance(content, list) and content:
        for idx, entry in enumerate(content):
            if not isinstance(entry, Mapping) or not is_non_empty_str(entry.get("text")):
                ctx.add(context, path(*path_parts, "content", idx), "content entries need non-empty 'text'.")
    else:
        ctx.add(context, path(*path_parts, "content"), "must be a string or a non-empty list of content entries.")

    validate_condition(node.get("requiredState"), context, (*path_parts, "requiredState"), ctx)
    validate_state_changes(node.get("onEnter"), f"{context} onEnter", (*path_parts, "onEnter"), ctx)
    validate_state_changes(node.get("onExit"), f"{context} onExit", (*path_parts, "onExit"), ctx)

    tags = node.get("tags")
    if tags is not None and not is_str_list(tags):
        ctx.add(context, path(*path_parts, "tags"), "must be a list of strings.")

    metadata = node.get("metadata")
    if metadata is not None and not isinstance(metadata, Mapping):
        ctx.add(context, path(*path_parts, "metadata"), "must be an object.")

    choices = node.get("choices", [])
    if not isinstance(choices, list):
        ctx.add(context, path(*path_parts, "choices"), "'choices' must be a list.")
        return
    for idx, choice in enumerate(choices):
        validate_choice(choice, node_id, idx, known_targets, (*path_parts, "choices", idx), ctx)
    choice_ids = [choice.get("choiceId") for choice in choices if isinstance(choice, Mapping)]
    duplicates = sorted(
        str(choice_id) for choice_id, count in Counter(choice_ids).items() if choice_id and count > 1
    )
    if duplicates:
        ctx.add(context, path(*path_parts, "choices"), f"duplicate choice IDs: {', '.join(duplicates)}.")


def find_redirect_cycles(redirects: Mapping[str, str]) -> List[List[str]]:
    cycles: List[List[str]] = []
    seen: Set[str] = set()
    for origin in sorted(redirects):
        if origin in seen:
            continue
        chain: List[str] = []
        current = origin
        while current in redirects and current not in chain:
            chain.append(current)
            current = redirects[current]
        seen.update(chain)
        if current in chain:
            cycle = chain[chain.index(current):]
            if cycle not in cycles:
                cycles.append(cycle)
    return cycles


def validate_bundle(bundle: Any) -> List[str]:
    """Return every structural problem in a content bundle as ``path: message``."""
    ctx = ValidationContext()
    if not isinstance(bundle, Mapping):
        ctx.add("Bundle", "bundle", "content bundle must be a JSON object.")
        return ctx.errors

    if not is_non_empty_str(bundle.get("title")):
        ctx.add("Bundle", "title", "'title' must be a non-empty string.")

    graphs = bundle.get("graphs")
    if not isinstance(graphs, Mapping) or not graphs:
        ctx.add("Bundle", "graphs", "'graphs' must be a non-empty object keyed by graph name.")
        return ctx.errors

    redirects = bundle.get("redirects") or {}
    if not isinstance(redirects, Mapping):
        ctx.add("Bundle", "redirects", "'redirects' must map old node IDs to new ones.")
        redirects = {}

    normalized: Dict[str, Dict[str, Dict[str, Any]]] = {}
    node_owner: Dict[str, str] = {}
    for graph_key, graph in graphs.items():
        if not isinstance(graph, Mapping):
            ctx.add("Graph", path("graphs", graph_key), "must be an object.")
            continue
        nodes, _ = normalize_nodes(graph.get("nodes"), ctx, ("graphs", graph_key))
        normalized[graph_key] = nodes
        for node_id in nodes:
            if node_id in node_owner:
                ctx.add(
                    "Graph",
                    path("graphs", graph_key, "nodes", node_id),
                    f"node ID already defined in graph '{node_owner[node_id]}'.",
                )
            else:
                node_owner[node_id] = graph_key

    known_targets = set(node_owner) | {str(key) for key in redirects}

    for graph_key, nodes in normalized.items():
        graph = graphs[graph_key]
        start = graph.get("startNodeId")
        if not is_non_empty_str(start):
            ctx.add(f"Graph '{graph_key}'", path("graphs", graph_key, "startNodeId"), "requires a 'startNodeId'.")
        elif start not in nodes:
            ctx.add(
                f"Graph '{graph_key}'",
                path("graphs", graph_key, "startNodeId"),
                f"start node '{start}' is not defined in this graph.",
            )
        for node_id, node in nodes.items():
            validate_node(node, node_id, known_targets, ("graphs", graph_key, "nodes", node_id), ctx)

    for origin, target in redirects.items():
        if not is_non_empty_str(origin) or not is_non_empty_str(target):
            ctx.add("Redirects", path("redirects", str(origin)), "redirect entries must map strings to strings.")
            continue
        if target not in node_owner and target not in redirects:
            ctx.add("Redirects", path("redirects", origin), f"redirect targets unknown node '{target}'.")
    clean_redirects = {
        origin: target
        for origin, target in redirects.items()
        if is_non_empty_str(origin) and is_non_empty_str(target)
    }
    for cycle in find_redirect_cycles(clean_redirects):
        ctx.add("Redirects", path("redirects", cycle[0]), f"redirect cycle: {' -> '.join(cycle + [cycle[0]])}.")

    hub = bundle.get("hubNodeId")
    if hub is not None and hub not in node_owner:
        ctx.add("Bundle", "hubNodeId", f"hub node '{hub}' is not defined in any graph.")

    locations = bundle.get("locations")
    if locations is not None and (not is_str_list(locations) or any(key not in graphs for key in locations)):
        ctx.add("Bundle", "locations", "'locations' must list graph keys defined in 'graphs'.")

    return ctx.errors


def validate_pattern_unlocks(
    unlocks: Mapping[str, Sequence[Any]], node_ids: Set[str]
) -> List[str]:
    """Check that every pattern-affinity unlock points at an existing node."""
    ctx = ValidationContext()
    for character_id, entries in sorted(unlocks.items()):
        for idx, unlock in enumerate(entries):
            context = f"Pattern unlock {idx + 1} for '{character_id}'"
            if unlock.pattern not in PATTERN_KEYS:
                ctx.add(context, path("unlocks", character_id, idx), f"unknown pattern '{unlock.pattern}'.")
            if unlock.node_id not in node_ids:
                ctx.add(context, path("unlocks", character_id, idx), f"unlocks missing node '{unlock.node_id}'.")
    return ctx.errors
