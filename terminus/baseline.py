"""Compare simulator findings against a checked-in baseline."""

from __future__ import annotations

from dataclasses import dataclass
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple


@dataclass(frozen=True)
class BaselineComparison:
    new: Tuple[str, ...]
    resolved: Tuple[str, ...]
    known: Tuple[str, ...]

    @property
    def ok(self) -> bool:
        return not self.new

    def to_dict(self) -> Dict[str, List[str]]:
        return {"new": list(self.new), "resolved": list(self.resolved), "known": list(self.known)}


def signatures(entries: Iterable[Any]) -> List[str]:
    return sorted({entry.signature for entry in entries})


def load_baseline(path: Path | str) -> List[str]:
    """Read a baseline file; a missing file is an empty baseline."""
    path = Path(path)
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if isinstance(data, Mapping):
        data = data.get("signatures", [])
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ValueError(f"{path}: baseline must be a list of signature strings.")
    return sorted(set(data))


def write_baseline(path: Path | str, entries: Iterable[str]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump({"signatures": sorted(set(entries))}, handle, indent=2)
        handle.write("\n")


def compare_to_baseline(current: Iterable[str], baseline: Iterable[str]) -> BaselineComparison:
    current_set = set(current)
    baseline_set = set(baseline)
    return BaselineComparison(
        new=tuple(sorted(current_set - baseline_set)),
        resolved=tuple(sorted(baseline_set - current_set)),
        known=tuple(sorted(current_set & baseline_set)),
    )
