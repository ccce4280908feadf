"""Behavioural pattern keys shared by state, conditions and processing."""

from __future__ import annotations

from typing import Dict

PATTERN_KEYS = ("analytical", "helping", "building", "patience", "exploring")

PATTERN_LABELS: Dict[str, str] = {
    "analytical": "Analytical",
    "helping": "Helping",
    "building": "Building",
    "patience": "Patience",
    "exploring": "Exploring",
}


def is_pattern(value: object) -> bool:
    return isinstance(value, str) and value in PATTERN_KEYS


def pattern_label(pattern: str) -> str:
    return PATTERN_LABELS.get(pattern, pattern.title())
