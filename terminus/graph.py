"""Dialogue graph model: nodes, choices and the authored state changes they carry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterator, List, Mapping, Tuple

from terminus.conditions import StateCondition, parse_condition
from terminus.schema import normalize_nodes

HUB_RETURN_SUFFIX = "_hub_return"
BOUNDARY_TAGS = frozenset({"terminal", "ending", "arc_complete"})


class ContentError(ValueError):
    """Raised when content cannot be turned into a dialogue graph."""


def _str_tuple(value: Any) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


@dataclass(frozen=True)
class DialogueContent:
    text: str
    emotion: str | None = None
    variation_id: str | None = None


@dataclass(frozen=True)
class OrbRequirement:
    pattern: str
    threshold: int


@dataclass(frozen=True)
class StateChange:
    character_id: str | None = None
    trust_change: int = 0
    set_relationship_status: str | None = None
    add_knowledge_flags: Tuple[str, ...] = ()
    remove_knowledge_flags: Tuple[str, ...] = ()
    add_global_flags: Tuple[str, ...] = ()
    remove_global_flags: Tuple[str, ...] = ()
    pattern_changes: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StateChange":
        return cls(
            character_id=data.get("characterId"),
            trust_change=int(data.get("trustChange", 0) or 0),
            set_relationship_status=data.get("setRelationshipStatus"),
            add_knowledge_flags=_str_tuple(data.get("addKnowledgeFlags")),
            remove_knowledge_flags=_str_tuple(data.get("removeKnowledgeFlags")),
            add_global_flags=_str_tuple(data.get("addGlobalFlags")),
            remove_global_flags=_str_tuple(data.get("removeGlobalFlags")),
            pattern_changes=dict(data.get("patternChanges") or {}),
        )


@dataclass(frozen=True)
class Choice:
    choice_id: str
    text: str
    next_node_id: str
    visible_condition: StateCondition | None = None
    enabled_condition: StateCondition | None = None
    required_orb_fill: OrbRequirement | None = None
    pattern: str | None = None
    skills: Tuple[str, ...] = ()
    consequence: StateChange | None = None
    preview: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], context: str) -> "Choice":
        orb = data.get("requiredOrbFill")
        consequence = data.get("consequence")
        return cls(
            choice_id=str(data["choiceId"]),
            text=str(data["text"]),
            next_node_id=str(data["nextNodeId"]),
            visible_condition=parse_condition(data.get("visibleCondition"), f"{context} visibleCondition"),
            enabled_condition=parse_condition(data.get("enabledCondition"), f"{context} enabledCondition"),
            required_orb_fill=OrbRequirement(orb["pattern"], int(orb["threshold"])) if orb else None,
            pattern=data.get("pattern"),
            skills=_str_tuple(data.get("skills")),
            consequence=StateChange.from_dict(consequence) if consequence else None,
            preview=data.get("preview"),
        )


@dataclass(frozen=True)
class DialogueNode:
    node_id: str
    speaker: str
    content: Tuple[DialogueContent, ...]
    choices: Tuple[Choice, ...] = ()
    required_state: StateCondition | None = None
    on_enter: Tuple[StateChange, ...] = ()
    on_exit: Tuple[StateChange, ...] = ()
    tags: FrozenSet[str] = frozenset()
    session_boundary: bool = False
    simulation: bool = False

    @property
    def is_hub_return(self) -> bool:
        return self.node_id.endswith(HUB_RETURN_SUFFIX)

    @property
    def is_boundary(self) -> bool:
        """Nodes where a session may legitimately end without further choices."""
        return bool(self.tags & BOUNDARY_TAGS) or self.session_boundary or self.simulation

    @classmethod
    def from_dict(cls, node_id: str, data: Mapping[str, Any]) -> "DialogueNode":
        context = f"node '{node_id}'"
        raw_content = data.get("content")
        if isinstance(raw_content, str):
            content = (DialogueContent(text=raw_content),)
        else:
            content = tuple(
                DialogueContent(
                    text=str(entry["text"]),
                    emotion=entry.get("emotion"),
                    variation_id=entry.get("variation_id") or entry.get("variationId"),
                )
                for entry in raw_content or ()
            )
        choices = tuple(
            Choice.from_dict(entry, f"{context} choice {idx + 1}")
            for idx, entry in enumerate(data.get("choices") or ())
        )
        metadata = data.get("metadata") or {}
        return cls(
            node_id=node_id,
            speaker=str(data.get("speaker", "")),
            content=content,
            choices=choices,
            required_state=parse_condition(data.get("requiredState"), f"{context} requiredState"),
            on_enter=tuple(StateChange.from_dict(entry) for entry in data.get("onEnter") or ()),
            on_exit=tuple(StateChange.from_dict(entry) for entry in data.get("onExit") or ()),
            tags=frozenset(_str_tuple(data.get("tags"))),
            session_boundary=bool(metadata.get("sessionBoundary", False)),
            simulation=bool(metadata.get("simulation", False)),
        )


@dataclass(frozen=True)
class DialogueGraph:
    """Immutable arena of nodes with an ID index."""

    graph_key: str
    start_node_id: str
    nodes: Tuple[DialogueNode, ...]
    title: str | None = None
    version: str | None = None
    _index: Mapping[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: Dict[str, int] = {}
        for position, node in enumerate(self.nodes):
            if node.node_id in index:
                raise ContentError(f"Graph '{self.graph_key}' defines node '{node.node_id}' twice.")
            index[node.node_id] = position
        object.__setattr__(self, "_index", index)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._index

    def __iter__(self) -> Iterator[DialogueNode]:
        return iter(self.nodes)

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, node_id: str) -> DialogueNode | None:
        position = self._index.get(node_id)
        if position is None:
            return None
        return self.nodes[position]

    def node_ids(self) -> List[str]:
        return [node.node_id for node in self.nodes]

    @classmethod
    def from_dict(cls, graph_key: str, data: Mapping[str, Any]) -> "DialogueGraph":
        raw_nodes, errors = normalize_nodes(data.get("nodes"), base_path=("graphs", graph_key))
        if errors:
            raise ContentError("Invalid graph:\n- " + "\n- ".join(errors))
        nodes = tuple(DialogueNode.from_dict(node_id, node) for node_id, node in raw_nodes.items())
        start = data.get("startNodeId")
        if not isinstance(start, str) or not start:
            raise ContentError(f"Graph '{graph_key}' is missing 'startNodeId'.")
        return cls(
            graph_key=graph_key,
            start_node_id=start,
            nodes=nodes,
            title=data.get("title"),
            version=data.get("version"),
        )
