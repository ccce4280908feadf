"""Node resolution across character graphs, including redirect handling."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Dict, Iterable, List, Mapping, Tuple

from terminus.graph import ContentError, DialogueGraph, DialogueNode

logger = logging.getLogger(__name__)

MAX_REDIRECT_HOPS = 10
DEFAULT_HUB_NODE_ID = "samuel_hub_initial"
REVISIT_SUFFIX = "_revisit"


class NodeNotFoundError(KeyError):
    """Raised when a node ID is not defined in any registered graph."""


class UnknownCharacterError(LookupError):
    """Raised when a graph or character key is not registered."""


def character_for_graph(graph_key: str) -> str:
    if graph_key.endswith(REVISIT_SUFFIX):
        return graph_key[: -len(REVISIT_SUFFIX)]
    return graph_key


@dataclass(frozen=True)
class RedirectResult:
    node_id: str
    path: Tuple[str, ...]
    hops: int
    cycle_detected: bool = False
    truncated: bool = False


@dataclass(frozen=True)
class Resolution:
    requested_node_id: str
    graph_key: str
    graph: DialogueGraph
    node: DialogueNode
    redirect: RedirectResult

    @property
    def character_id(self) -> str:
        return character_for_graph(self.graph_key)

    @property
    def node_id(self) -> str:
        return self.node.node_id

    @property
    def redirect_path(self) -> Tuple[str, ...]:
        return self.redirect.path

    @property
    def hops(self) -> int:
        return self.redirect.hops

    @property
    def cycle_detected(self) -> bool:
        return self.redirect.cycle_detected

    @property
    def truncated(self) -> bool:
        return self.redirect.truncated


class GraphRegistry:
    """All loaded graphs plus the redirect table used to find nodes in them."""

    def __init__(
        self,
        graphs: Mapping[str, DialogueGraph],
        redirects: Mapping[str, str] | None = None,
        *,
        hub_node_id: str = DEFAULT_HUB_NODE_ID,
        locations: Iterable[str] = (),
        max_redirect_hops: int = MAX_REDIRECT_HOPS,
    ) -> None:
        self._graphs: Dict[str, DialogueGraph] = dict(graphs)
        self.redirects: Dict[str, str] = dict(redirects or {})
        self.hub_node_id = hub_node_id
        self.locations = frozenset(locations)
        self.max_redirect_hops = max(0, int(max_redirect_hops))

        self._owner: Dict[str, str] = {}
        for graph_key in sorted(self._graphs):
            for node_id in self._graphs[graph_key].node_ids():
                if node_id in self._owner:
                    raise ContentError(
                        f"Node '{node_id}' is defined in both '{self._owner[node_id]}' and '{graph_key}'."
                    )
                self._owner[node_id] = graph_key

    def graph_keys(self) -> List[str]:
        return sorted(self._graphs)

    def graph(self, graph_key: str) -> DialogueGraph:
        try:
            return self._graphs[graph_key]
        except KeyError:
            raise UnknownCharacterError(f"No graph registered for '{graph_key}'.") from None

    def character_ids(self) -> List[str]:
        return sorted({character_for_graph(key) for key in self._graphs if key not in self.locations})

    def is_location(self, graph_key: str) -> bool:
        return graph_key in self.locations

    def find_graph_key(self, node_id: str) -> str | None:
        return self._owner.get(node_id)

    def all_node_ids(self) -> List[str]:
        return sorted(self._owner)

    def start_node_ids(self) -> Dict[str, str]:
        return {key: self._graphs[key].start_node_id for key in self.graph_keys()}

    def follow_redirects(self, node_id: str) -> RedirectResult:
        path = [node_id]
        seen = {node_id}
        current = node_id
        cycle_detected = False
        truncated = False
        while current in self.redirects:
            if len(path) - 1 >= self.max_redirect_hops:
                truncated = True
                logger.warning(
                    "Redirect chain from '%s' exceeded %d hops; stopping at '%s'.",
                    node_id,
                    self.max_redirect_hops,
                    current,
                )
                break
            target = self.redirects[current]
            if target in seen:
                cycle_detected = True
                logger.warning(
                    "Redirect cycle from '%s' back to '%s'; stopping at '%s'.",
                    node_id,
                    target,
                    current,
                )
                break
            path.append(target)
            seen.add(target)
            current = target
        return RedirectResult(
            node_id=current,
            path=tuple(path),
            hops=len(path) - 1,
            cycle_detected=cycle_detected,
            truncated=truncated,
        )

    def resolve_node(self, node_id: str) -> Resolution:
        redirect = self.follow_redirects(node_id)
        graph_key = self._owner.get(redirect.node_id)
        if graph_key is None:
            raise NodeNotFoundError(f"Node '{redirect.node_id}' is not defined in any graph.")
        graph = self._graphs[graph_key]
        node = graph.get(redirect.node_id)
        assert node is not None
        return Resolution(
            requested_node_id=node_id,
            graph_key=graph_key,
            graph=graph,
            node=node,
            redirect=redirect,
        )

    def try_resolve(self, node_id: str) -> Resolution | None:
        try:
            return self.resolve_node(node_id)
        except NodeNotFoundError:
            return None

    def resolve_or_fallback(self, node_id: str, fallback_node_id: str | None = None) -> Resolution:
        """Resolve ``node_id`` for live play, falling back to the hub when content is broken."""
        resolution = self.try_resolve(node_id)
        if resolution is not None:
            return resolution
        fallback = fallback_node_id or self.hub_node_id
        logger.warning("Node '%s' could not be resolved; falling back to '%s'.", node_id, fallback)
        return self.resolve_node(fallback)
