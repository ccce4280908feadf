import json
import logging
from pathlib import Path

import pytest

from terminus.graph import ContentError, DialogueGraph
from terminus.loader import build_registry, load_registry, read_bundle
from terminus.navigator import GraphRegistry, NodeNotFoundError, UnknownCharacterError, character_for_graph


def graph(graph_key: str, start: str, *node_ids: str) -> DialogueGraph:
    nodes = {
        node_id: {"speaker": graph_key.title(), "content": f"{node_id} text", "tags": ["ending"]}
        for node_id in node_ids
    }
    return DialogueGraph.from_dict(graph_key, {"startNodeId": start, "nodes": nodes})


def registry(redirects: dict, **kwargs) -> GraphRegistry:
    return GraphRegistry(
        {
            "samuel": graph("samuel", "samuel_hub_initial", "samuel_hub_initial", "c"),
            "maya": graph("maya", "maya_introduction", "maya_introduction"),
        },
        redirects,
        **kwargs,
    )


def test_resolve_node_finds_owning_graph() -> None:
    resolution = registry({}).resolve_node("maya_introduction")
    assert resolution.graph_key == "maya"
    assert resolution.character_id == "maya"
    assert resolution.hops == 0
    assert resolution.redirect_path == ("maya_introduction",)


def test_redirect_chain_records_path_and_hops() -> None:
    resolution = registry({"a": "b", "b": "c"}).resolve_node("a")
    assert resolution.node_id == "c"
    assert resolution.redirect_path == ("a", "b", "c")
    assert resolution.hops == 2
    assert resolution.cycle_detected is False


def test_redirect_cycle_stops_at_last_distinct_node(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="terminus.navigator"):
        result = registry({"a": "b", "b": "a"}).follow_redirects("a")
    assert result.node_id == "b"
    assert result.path == ("a", "b")
    assert result.cycle_detected is True
    assert "cycle" in caplog.text


def test_redirect_chain_is_bounded() -> None:
    redirects = {f"r{i}": f"r{i + 1}" for i in range(12)}
    result = registry(redirects, max_redirect_hops=10).follow_redirects("r0")
    assert result.truncated is True
    assert result.hops == 10
    assert result.node_id == "r10"


def test_unknown_node_raises_not_found() -> None:
    reg = registry({"old": "gone"})
    with pytest.raises(NodeNotFoundError):
        reg.resolve_node("old")
    assert reg.try_resolve("nowhere") is None


def test_resolve_or_fallback_uses_hub(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="terminus.navigator"):
        resolution = registry({}).resolve_or_fallback("deleted_node")
    assert resolution.node_id == "samuel_hub_initial"
    assert "deleted_node" in caplog.text


def test_unknown_graph_key_raises() -> None:
    with pytest.raises(UnknownCharacterError):
        registry({}).graph("marcus")


def test_node_ids_must_be_unique_across_graphs() -> None:
    with pytest.raises(ContentError, match="defined in both"):
        GraphRegistry({"one": graph("one", "x", "x"), "two": graph("two", "x", "x")})


def test_revisit_graphs_belong_to_their_character() -> None:
    assert character_for_graph("maya_revisit") == "maya"
    assert character_for_graph("samuel") == "samuel"


def write_bundle(tmp_path: Path, bundle: dict, name: str = "bundle.json") -> Path:
    path = tmp_path / name
    path.write_text(json.dumps(bundle))
    return path


def minimal_bundle() -> dict:
    return {
        "title": "Test",
        "hubNodeId": "hub",
        "graphs": {
            "samuel": {
                "startNodeId": "hub",
                "nodes": {
                    "hub": {
                        "speaker": "Samuel",
                        "content": "Welcome.",
                        "choices": [{"choiceId": "go", "text": "Go", "nextNodeId": "samuel_hub_return"}],
                    },
                    "samuel_hub_return": {"speaker": "Samuel", "content": "Back you go."},
                },
            }
        },
    }


def test_build_registry_rejects_invalid_bundle() -> None:
    bundle = minimal_bundle()
    bundle["graphs"]["samuel"]["nodes"]["hub"]["choices"][0]["nextNodeId"] = "missing"
    with pytest.raises(ContentError, match="missing"):
        build_registry(bundle)


def test_build_registry_requires_hub_when_hub_returns_exist() -> None:
    bundle = minimal_bundle()
    del bundle["hubNodeId"]
    with pytest.raises(ContentError, match="hub node"):
        build_registry(bundle)


def test_read_bundle_merges_modules(tmp_path: Path) -> None:
    module = {
        "graphs": {
            "maya": {
                "startNodeId": "maya_intro",
                "nodes": [{"nodeId": "maya_intro", "speaker": "Maya", "content": "Hi.", "tags": ["ending"]}],
            }
        },
        "redirects": {"maya_old": "maya_intro"},
    }
    write_bundle(tmp_path, module, "maya.json")
    bundle = minimal_bundle()
    bundle["modules"] = ["maya.json"]
    path = write_bundle(tmp_path, bundle)

    merged = read_bundle(path)
    assert sorted(merged["graphs"]) == ["maya", "samuel"]
    assert merged["redirects"] == {"maya_old": "maya_intro"}
    assert "modules" not in merged

    reg = load_registry(path)
    assert reg.resolve_node("maya_old").graph_key == "maya"


def test_module_graph_keys_cannot_collide(tmp_path: Path) -> None:
    write_bundle(tmp_path, {"graphs": {"samuel": {}}}, "dup.json")
    bundle = minimal_bundle()
    bundle["modules"] = ["dup.json"]
    with pytest.raises(ContentError, match="already exist"):
        read_bundle(write_bundle(tmp_path, bundle))


def test_sample_content_loads() -> None:
    reg = load_registry()
    assert reg.graph_keys() == ["devon", "maya", "samuel"]
    assert reg.hub_node_id == "samuel_hub_initial"
    resolution = reg.resolve_node("maya_intro_old")
    assert resolution.node_id == "maya_introduction"
    assert resolution.hops == 1
