#!/usr/bin/env python3
"""Validate Grand Central Terminus content for common authoring mistakes."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_BUNDLE = REPO_ROOT / "content" / "terminus.json"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from terminus.affinity import all_pattern_unlocks
from terminus.graph import ContentError
from terminus.loader import read_bundle
from terminus.schema import normalize_nodes, validate_bundle, validate_pattern_unlocks
from tools.softlock import analyze_softlocks


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate Grand Central Terminus dialogue content.")
    parser.add_argument(
        "bundle_path",
        nargs="?",
        default=str(DEFAULT_BUNDLE),
        help="Path to the content bundle JSON file.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Sequence[str]) -> None:
    args = parse_args(argv[1:])
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    bundle_path = Path(args.bundle_path).resolve()
    try:
        bundle = read_bundle(bundle_path)
    except json.JSONDecodeError as exc:
        print(f"Failed to parse JSON from {bundle_path}: {exc}")
        sys.exit(1)
    except ContentError as exc:
        print(str(exc))
        sys.exit(1)

    errors = validate_bundle(bundle)
    if errors:
        print("Validation failed (path: message):")
        for err in errors:
            print(f" - {err}")
        sys.exit(1)

    node_ids = set()
    for graph in bundle["graphs"].values():
        nodes, _ = normalize_nodes(graph.get("nodes"))
        node_ids.update(nodes)
    warnings = validate_pattern_unlocks(all_pattern_unlocks(), node_ids)
    warnings.extend(analyze_softlocks(bundle))
    if warnings:
        print("Warnings (path: message):")
        for warning in warnings:
            print(f" - {warning}")

    print(f"Validation passed for {bundle_path}.")


if __name__ == "__main__":
    main(sys.argv)
