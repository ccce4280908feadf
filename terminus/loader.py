"""Load content bundles from JSON into a ``GraphRegistry``."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from terminus.graph import HUB_RETURN_SUFFIX, ContentError, DialogueGraph
from terminus.navigator import DEFAULT_HUB_NODE_ID, MAX_REDIRECT_HOPS, GraphRegistry
from terminus.schema import validate_bundle

logger = logging.getLogger(__name__)

DEFAULT_BUNDLE_PATH = Path(__file__).resolve().parent.parent / "content" / "terminus.json"


def _raise_bundle_validation(errors: List[str]) -> None:
    raise ContentError("Invalid content bundle:\n- " + "\n- ".join(errors))


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def merge_bundle_modules(bundle: Dict[str, Any], bundle_path: Path | str) -> Dict[str, Any]:
    """Fold the graphs and redirects of every listed module into ``bundle``."""
    modules = bundle.get("modules")
    if not modules:
        return bundle
    if not isinstance(modules, list):
        _raise_bundle_validation(["'modules' must be a list of module file paths."])

    graphs = dict(bundle.get("graphs") or {})
    redirects = dict(bundle.get("redirects") or {})
    base_dir = Path(bundle_path).resolve().parent

    for module_ref in modules:
        if not isinstance(module_ref, str) or not module_ref.strip():
            _raise_bundle_validation(["module entries must be non-empty strings."])
        module_path = (base_dir / module_ref).resolve()
        module = _read_json(module_path)
        if not isinstance(module, dict):
            _raise_bundle_validation([f"{module_path}: module data must be a JSON object."])

        module_graphs = module.get("graphs") or {}
        if not isinstance(module_graphs, dict):
            _raise_bundle_validation([f"{module_path}: 'graphs' must be an object."])
        overlap = set(graphs).intersection(module_graphs)
        if overlap:
            _raise_bundle_validation(
                [f"{module_path}: graph keys already exist in base bundle: {', '.join(sorted(overlap))}."]
            )
        graphs.update(module_graphs)

        module_redirects = module.get("redirects") or {}
        if not isinstance(module_redirects, dict):
            _raise_bundle_validation([f"{module_path}: 'redirects' must be an object."])
        for origin, target in module_redirects.items():
            if origin in redirects and redirects[origin] != target:
                _raise_bundle_validation(
                    [f"{module_path}: redirect '{origin}' conflicts with existing definition."]
                )
            redirects.setdefault(origin, target)
        logger.debug("Merged module %s (%d graphs).", module_path, len(module_graphs))

    merged = dict(bundle)
    merged["graphs"] = graphs
    merged["redirects"] = redirects
    merged.pop("modules", None)
    return merged


def read_bundle(path: Path | str = DEFAULT_BUNDLE_PATH) -> Dict[str, Any]:
    path = Path(path)
    bundle = _read_json(path)
    if not isinstance(bundle, dict):
        _raise_bundle_validation(["Content bundle must be a JSON object."])
    return merge_bundle_modules(bundle, path)


def build_registry(bundle: Dict[str, Any], *, max_redirect_hops: int = MAX_REDIRECT_HOPS) -> GraphRegistry:
    errors = validate_bundle(bundle)
    if errors:
        _raise_bundle_validation(errors)
    graphs = {
        graph_key: DialogueGraph.from_dict(graph_key, payload)
        for graph_key, payload in bundle["graphs"].items()
    }
    registry = GraphRegistry(
        graphs,
        bundle.get("redirects") or {},
        hub_node_id=bundle.get("hubNodeId") or DEFAULT_HUB_NODE_ID,
        locations=bundle.get("locations") or (),
        max_redirect_hops=max_redirect_hops,
    )
    hub_returns = [node_id for node_id in registry.all_node_ids() if node_id.endswith(HUB_RETURN_SUFFIX)]
    if hub_returns and registry.find_graph_key(registry.hub_node_id) is None:
        _raise_bundle_validation(
            [f"hubNodeId: hub node '{registry.hub_node_id}' is missing but hub-return nodes exist."]
        )
    return registry


def load_registry(
    path: Path | str = DEFAULT_BUNDLE_PATH, *, max_redirect_hops: int = MAX_REDIRECT_HOPS
) -> GraphRegistry:
    registry = build_registry(read_bundle(path), max_redirect_hops=max_redirect_hops)
    logger.info("Loaded %d graphs from %s.", len(registry.graph_keys()), path)
    return registry
