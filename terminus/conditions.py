"""State conditions authored on choices and nodes.

A condition is written in content as a JSON object such as::

    {"trust": {"min": 2}, "hasGlobalFlags": ["met_samuel"], "patterns": {"patience": {"min": 3}}}

``parse_condition`` turns it into a ``StateCondition`` holding one gate per
requirement, sorted into the order the evaluator checks them in. Anything
malformed raises ``ConditionError`` so bad content never evaluates as open.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Sequence, Tuple, Union

from terminus.combos import find_combo
from terminus.patterns import PATTERN_KEYS, is_pattern
from terminus.state import RELATIONSHIP_LEVELS, TRUST_MAX, TRUST_MIN


class ConditionError(ValueError):
    """Raised for malformed or unsupported condition payloads."""


@dataclass(frozen=True)
class TrustGate:
    minimum: int | None = None
    maximum: int | None = None

    def describe(self) -> str:
        if self.minimum is not None and self.maximum is not None:
            return f"Trust {self.minimum}-{self.maximum}"
        if self.minimum is not None:
            return f"Trust {self.minimum}+"
        return f"Trust at most {self.maximum}"


@dataclass(frozen=True)
class RelationshipGate:
    allowed: Tuple[str, ...]

    def describe(self) -> str:
        return f"Relationship: {'/'.join(self.allowed)}"


@dataclass(frozen=True)
class GlobalFlagGate:
    flags: Tuple[str, ...]

    def describe(self) -> str:
        return f"Flags: {'/'.join(self.flags)}"


@dataclass(frozen=True)
class ForbiddenGlobalFlagGate:
    flags: Tuple[str, ...]

    def describe(self) -> str:
        return f"Not flags: {'/'.join(self.flags)}"


@dataclass(frozen=True)
class KnowledgeFlagGate:
    flags: Tuple[str, ...]

    def describe(self) -> str:
        return f"Knows: {'/'.join(self.flags)}"


@dataclass(frozen=True)
class ForbiddenKnowledgeFlagGate:
    flags: Tuple[str, ...]

    def describe(self) -> str:
        return f"Does not know: {'/'.join(self.flags)}"


@dataclass(frozen=True)
class PatternGate:
    pattern: str
    minimum: int | None = None
    maximum: int | None = None

    def describe(self) -> str:
        label = self.pattern.title()
        if self.minimum is not None and self.maximum is not None:
            return f"{label} {self.minimum}-{self.maximum}"
        if self.minimum is not None:
            return f"{label} {self.minimum}+"
        return f"{label} at most {self.maximum}"


@dataclass(frozen=True)
class ComboGate:
    combo_ids: Tuple[str, ...]

    def describe(self) -> str:
        return f"Combos: {'/'.join(self.combo_ids)}"


Gate = Union[
    TrustGate,
    RelationshipGate,
    GlobalFlagGate,
    ForbiddenGlobalFlagGate,
    KnowledgeFlagGate,
    ForbiddenKnowledgeFlagGate,
    PatternGate,
    ComboGate,
]

# Evaluation order; the first failing gate decides the lock reason.
GATE_ORDER: Tuple[type, ...] = (
    TrustGate,
    RelationshipGate,
    GlobalFlagGate,
    ForbiddenGlobalFlagGate,
    KnowledgeFlagGate,
    ForbiddenKnowledgeFlagGate,
    PatternGate,
    ComboGate,
)

CHARACTER_GATES: Tuple[type, ...] = (
    TrustGate,
    RelationshipGate,
    KnowledgeFlagGate,
    ForbiddenKnowledgeFlagGate,
)


@dataclass(frozen=True)
class StateCondition:
    gates: Tuple[Gate, ...] = ()

    def needs_character(self) -> bool:
        return any(isinstance(gate, CHARACTER_GATES) for gate in self.gates)

    def describe(self) -> str:
        if not self.gates:
            return "None"
        return ", ".join(gate.describe() for gate in self.gates)


ConditionParser = Callable[[Any, str], List[Gate]]


@dataclass(frozen=True)
class ConditionSpec:
    field_rule: str
    parse: ConditionParser


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _flag_list(value: Any, context: str, key: str) -> Tuple[str, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)) or not value:
        raise ConditionError(f"{context}: '{key}' must be a non-empty list of flag names.")
    flags = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise ConditionError(f"{context}: '{key}' entries must be non-empty strings.")
        flags.append(entry)
    return tuple(flags)


def _bounds(value: Any, context: str, key: str, lo: int, hi: int | None) -> Tuple[int | None, int | None]:
    if not isinstance(value, Mapping):
        raise ConditionError(f"{context}: '{key}' must be an object with 'min' and/or 'max'.")
    unknown = sorted(set(value) - {"min", "max"})
    if unknown:
        raise ConditionError(f"{context}: '{key}' has unsupported fields: {', '.join(unknown)}.")
    minimum = value.get("min")
    maximum = value.get("max")
    if minimum is None and maximum is None:
        raise ConditionError(f"{context}: '{key}' requires 'min' or 'max'.")
    for name, bound in (("min", minimum), ("max", maximum)):
        if bound is None:
            continue
        if not _is_int(bound) or bound < lo or (hi is not None and bound > hi):
            limit = f"between {lo} and {hi}" if hi is not None else f"at least {lo}"
            raise ConditionError(f"{context}: '{key}.{name}' must be an integer {limit}.")
    if minimum is not None and maximum is not None and minimum > maximum:
        raise ConditionError(f"{context}: '{key}.min' is greater than '{key}.max'.")
    return minimum, maximum


def _parse_trust(value: Any, context: str) -> List[Gate]:
    minimum, maximum = _bounds(value, context, "trust", TRUST_MIN, TRUST_MAX)
    return [TrustGate(minimum=minimum, maximum=maximum)]


def _parse_relationship(value: Any, context: str) -> List[Gate]:
    allowed = _flag_list(value, context, "relationship")
    for status in allowed:
        if status not in RELATIONSHIP_LEVELS:
            raise ConditionError(f"{context}: unknown relationship status '{status}'.")
    return [RelationshipGate(allowed=allowed)]


def _parse_has_global(value: Any, context: str) -> List[Gate]:
    return [GlobalFlagGate(flags=_flag_list(value, context, "hasGlobalFlags"))]


def _parse_lacks_global(value: Any, context: str) -> List[Gate]:
    return [ForbiddenGlobalFlagGate(flags=_flag_list(value, context, "lacksGlobalFlags"))]


def _parse_has_knowledge(value: Any, context: str) -> List[Gate]:
    return [KnowledgeFlagGate(flags=_flag_list(value, context, "hasKnowledgeFlags"))]


def _parse_lacks_knowledge(value: Any, context: str) -> List[Gate]:
    return [ForbiddenKnowledgeFlagGate(flags=_flag_list(value, context, "lacksKnowledgeFlags"))]


def _parse_patterns(value: Any, context: str) -> List[Gate]:
    if not isinstance(value, Mapping) or not value:
        raise ConditionError(f"{context}: 'patterns' must be a non-empty object keyed by pattern.")
    gates: List[Gate] = []
    for pattern in value:
        if not is_pattern(pattern):
            raise ConditionError(f"{context}: unknown pattern '{pattern}'.")
    for pattern in PATTERN_KEYS:
        if pattern not in value:
            continue
        minimum, maximum = _bounds(value[pattern], context, f"patterns.{pattern}", 0, None)
        gates.append(PatternGate(pattern=pattern, minimum=minimum, maximum=maximum))
    return gates


def _parse_combos(value: Any, context: str) -> List[Gate]:
    combo_ids = _flag_list(value, context, "requiredCombos")
    for combo_id in combo_ids:
        if find_combo(combo_id) is None:
            raise ConditionError(f"{context}: unknown combo '{combo_id}'.")
    return [ComboGate(combo_ids=combo_ids)]


CONDITION_SPECS: Dict[str, ConditionSpec] = {
    "trust": ConditionSpec("object with integer 'min'/'max' in 0..10", _parse_trust),
    "relationship": ConditionSpec("list of relationship statuses", _parse_relationship),
    "hasGlobalFlags": ConditionSpec("list of global flags that must be set", _parse_has_global),
    "lacksGlobalFlags": ConditionSpec("list of global flags that must be unset", _parse_lacks_global),
    "hasKnowledgeFlags": ConditionSpec(
        "list of character knowledge flags that must be set", _parse_has_knowledge
    ),
    "lacksKnowledgeFlags": ConditionSpec(
        "list of character knowledge flags that must be unset", _parse_lacks_knowledge
    ),
    "patterns": ConditionSpec("object of pattern -> {'min', 'max'}", _parse_patterns),
    "requiredCombos": ConditionSpec("list of pattern or skill combo IDs", _parse_combos),
}


def parse_condition(raw: Any, context: str = "condition") -> StateCondition | None:
    if raw is None or raw == {}:
        return None
    if not isinstance(raw, Mapping):
        raise ConditionError(f"{context}: condition must be an object or null.")

    unknown = sorted(key for key in raw if key not in CONDITION_SPECS)
    if unknown:
        raise ConditionError(f"{context}: unsupported condition fields: {', '.join(unknown)}.")

    gates: List[Gate] = []
    for key, spec in CONDITION_SPECS.items():
        if key in raw:
            gates.extend(spec.parse(raw[key], context))
    gates.sort(key=lambda gate: GATE_ORDER.index(type(gate)))
    return StateCondition(gates=tuple(gates))


def condition_errors(raw: Any, context: str) -> List[str]:
    try:
        parse_condition(raw, context)
    except ConditionError as exc:
        return [str(exc)]
    return []
