#!/usr/bin/env python3
"""Run the content simulators and fail when they find problems not in the baseline."""

from __future__ import annotations

import argparse
from concurrent.futures import ProcessPoolExecutor
from dataclasses import replace
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
CONTENT_DIR = REPO_ROOT / "content"

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from terminus.baseline import compare_to_baseline, load_baseline, signatures, write_baseline
from terminus.loader import load_registry
from terminus.narrative_sim import build_narrative_sim_report
from terminus.settings import EngineSettings, SimulationConfig, load_settings, load_simulation_config
from terminus.simulation import CriticalPathOptions, CriticalPathReport, simulate_critical_path
from terminus.state import GameState, new_game_state

NEW_GAME_FIXTURE = "new_game"


def load_fixtures(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    fixtures = data.get("fixtures", {}) if isinstance(data, dict) else {}
    if not isinstance(fixtures, dict):
        raise ValueError(f"{path}: 'fixtures' must be an object keyed by fixture name.")
    return fixtures


def fixture_state(name: str, fixtures: Dict[str, Any]) -> GameState:
    if name == NEW_GAME_FIXTURE:
        return new_game_state()
    if name not in fixtures:
        raise ValueError(f"Unknown state fixture '{name}'.")
    return GameState.from_dict(fixtures[name])


def _critical_path_worker(
    bundle_path: str, max_redirect_hops: int, state_payload: Dict[str, Any], options: CriticalPathOptions
) -> CriticalPathReport:
    registry = load_registry(bundle_path, max_redirect_hops=max_redirect_hops)
    return simulate_critical_path(registry, GameState.from_dict(state_payload), options)


def run_critical_path(
    bundle_path: Path, state: GameState, config: SimulationConfig, settings: EngineSettings, workers: int
) -> CriticalPathReport:
    options = config.critical_path_options()
    hops = settings.max_redirect_hops
    if workers <= 1 or len(options.start_node_ids) <= 1:
        return simulate_critical_path(load_registry(bundle_path, max_redirect_hops=hops), state, options)

    payload = state.to_dict()
    per_start = [replace(options, start_node_ids=(start,)) for start in options.start_node_ids]
    with ProcessPoolExecutor(max_workers=workers) as pool:
        reports = list(
            pool.map(
                _critical_path_worker,
                [str(bundle_path)] * len(per_start),
                [hops] * len(per_start),
                [payload] * len(per_start),
                per_start,
            )
        )
    merged = {}
    for report in reports:
        for violation in report.violations:
            merged.setdefault((violation.kind, violation.node_id), violation)
    return CriticalPathReport(
        violations=tuple(sorted(merged.values(), key=lambda item: (item.kind, item.node_id))),
        expanded_states=sum(report.expanded_states for report in reports),
        truncated=any(report.truncated for report in reports),
    )


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate Grand Central Terminus content paths.")
    parser.add_argument(
        "config",
        nargs="?",
        default=str(CONTENT_DIR / "sim_config.json"),
        help="Simulation config JSON ({fixture, start_node_ids, max_steps, max_states}).",
    )
    parser.add_argument("--bundle", default=str(CONTENT_DIR / "terminus.json"), help="Content bundle JSON.")
    parser.add_argument("--fixtures", default=str(CONTENT_DIR / "fixtures.json"), help="State fixtures JSON.")
    parser.add_argument("--settings", default=None, help="Optional engine settings JSON.")
    parser.add_argument(
        "--mode",
        choices=("critical", "narrative"),
        default="critical",
        help="critical: walk from configured start nodes; narrative: walk every graph.",
    )
    parser.add_argument("--baseline", default=None, help="Baseline signatures JSON.")
    parser.add_argument("--update-baseline", action="store_true", help="Rewrite the baseline from this run.")
    parser.add_argument("--report", default=None, help="Write the full JSON report here.")
    parser.add_argument("--workers", type=int, default=1, help="Processes for critical-path runs.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Sequence[str]) -> None:
    args = parse_args(argv[1:])
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    settings = load_settings(args.settings) if args.settings else load_settings()
    bundle_path = Path(args.bundle).resolve()

    if args.mode == "critical":
        config = load_simulation_config(args.config)
        state = fixture_state(config.fixture, load_fixtures(Path(args.fixtures)))
        report = run_critical_path(bundle_path, state, config, settings, args.workers)
        found = report.violations
        partial = report.truncated
        label = "violations"
        default_baseline = CONTENT_DIR / "critical_path_baseline.json"
    else:
        registry = load_registry(bundle_path, max_redirect_hops=settings.max_redirect_hops)
        report = build_narrative_sim_report(registry, settings.narrative_options())
        found = report.failures
        partial = bool(report.totals["truncatedGraphs"])
        label = "failures"
        default_baseline = CONTENT_DIR / "narrative_baseline.json"

    if args.report:
        report_path = Path(args.report)
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")

    baseline_path = Path(args.baseline) if args.baseline else default_baseline
    current: List[str] = signatures(found)
    if args.update_baseline:
        write_baseline(baseline_path, current)
        print(f"Baseline updated with {len(current)} {label}: {baseline_path}")
        return

    comparison = compare_to_baseline(current, load_baseline(baseline_path))
    print(f"Simulation found {len(current)} {label} ({len(comparison.known)} known).")
    if partial:
        print("Note: exploration hit its bounds; results are partial.")
    for signature in comparison.resolved:
        print(f" ~ resolved: {signature}")
    if comparison.new:
        print(f"New {label} not in baseline:")
        for signature in comparison.new:
            print(f" - {signature}")
        sys.exit(1)
    print("No new problems.")


if __name__ == "__main__":
    main(sys.argv)
