"""
Equivalence policies.

A closed set of tagged, immutable policy variants sharing one contract:
``evaluate(reference_payload, candidate_payload) -> PolicyResult``.
Evaluation is deterministic and has no side effects.

Field paths are dotted (``Blocks.0.Timestamp``); ``*`` matches every list
element or every mapping value at that level.
"""

from __future__ import annotations

import copy
import json
import math
from collections import Counter
from dataclasses import dataclass
from decimal import Context, Decimal, InvalidOperation, localcontext
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple, Union

from api_compare.exceptions import PolicyViolation

MISSING = object()
MAX_REPORTED_DIFFERENCES = 20

# Wide enough that subtracting any two on-chain quantities is exact.
_EXACT = Context(prec=200)


@dataclass(frozen=True)
class FieldDifference:
    """A single differing location between two payloads."""

    path: str
    reference: Any
    candidate: Any

    def describe(self) -> str:
        return f"{self.path or '<root>'}: {_show(self.reference)} != {_show(self.candidate)}"


@dataclass(frozen=True)
class PolicyResult:
    """Outcome of a policy evaluation."""

    equivalent: bool
    skipped: bool = False
    differences: Tuple[FieldDifference, ...] = ()
    detail: str = ""


def _show(value: Any) -> str:
    if value is MISSING:
        return "<missing>"
    return canonical_json(value)


def canonical_json(value: Any) -> str:
    """Serialise with sorted keys so field order never matters."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def split_path(path: str) -> Tuple[str, ...]:
    return tuple(part for part in path.split(".") if part)


def _join(prefix: str, key: Any) -> str:
    return f"{prefix}.{key}" if prefix else str(key)


def diff_values(reference: Any, candidate: Any, path: str = "") -> List[FieldDifference]:
    """
    Structural diff of two JSON values.

    Mapping key order is irrelevant; list order is significant.
    """
    if isinstance(reference, dict) and isinstance(candidate, dict):
        differences: List[FieldDifference] = []
        for key in sorted(set(reference) | set(candidate), key=str):
            differences.extend(
                diff_values(
                    reference.get(key, MISSING), candidate.get(key, MISSING), _join(path, key)
                )
            )
        return differences

    if isinstance(reference, list) and isinstance(candidate, list):
        differences = []
        if len(reference) != len(candidate):
            differences.append(
                FieldDifference(f"{path}.length" if path else "length", len(reference), len(candidate))
            )
        for index, (left, right) in enumerate(zip(reference, candidate)):
            differences.extend(diff_values(left, right, _join(path, index)))
        return differences

    if type(reference) is bool or type(candidate) is bool:
        same = type(reference) is type(candidate) and reference == candidate
    else:
        same = reference == candidate
    return [] if same else [FieldDifference(path, reference, candidate)]


def _children(node: Any, segment: str) -> Iterator[Tuple[Any, Any]]:
    """Yield (key, child) pairs of ``node`` selected by one path segment."""
    if isinstance(node, dict):
        if segment == "*":
            yield from node.items()
        elif segment in node:
            yield segment, node[segment]
    elif isinstance(node, list):
        if segment == "*":
            yield from enumerate(node)
        elif segment.isdigit() and int(segment) < len(node):
            index = int(segment)
            yield index, node[index]


def _locate(payload: Any, segments: Tuple[str, ...]) -> Iterator[Tuple[Any, Any]]:
    """Yield (container, key) for every location matching ``segments``."""
    head, rest = segments[0], segments[1:]
    for key, child in _children(payload, head):
        if rest:
            yield from _locate(child, rest)
        else:
            yield payload, key


def remove_paths(payload: Any, paths: Iterable[Tuple[str, ...]]) -> None:
    """
    Delete every location matching any of ``paths`` from ``payload`` in place.

    All locations are resolved before anything is deleted, so list indexes
    always refer to the original payload (``a.0`` and ``a.1`` remove the
    first two elements). The empty path never matches.
    """
    targets: Dict[int, Tuple[Any, set]] = {}
    for segments in paths:
        if not segments:
            continue
        for container, key in _locate(payload, segments):
            targets.setdefault(id(container), (container, set()))[1].add(key)

    for container, keys in targets.values():
        if isinstance(container, list):
            for index in sorted(keys, reverse=True):
                del container[index]
        else:
            for key in keys:
                container.pop(key, None)


def transform_path(
    payload: Any, segments: Tuple[str, ...], transform: Callable[[Any], Any]
) -> Any:
    """
    Return a copy of ``payload`` with ``transform`` applied at matching paths.

    An empty path transforms the payload itself.
    """
    if not segments:
        return transform(payload)
    head, rest = segments[0], segments[1:]
    if isinstance(payload, dict):
        result = dict(payload)
        for key, child in _children(payload, head):
            result[key] = transform_path(child, rest, transform)
        return result
    if isinstance(payload, list):
        result_list = list(payload)
        for index, child in _children(payload, head):
            result_list[index] = transform_path(child, rest, transform)
        return result_list
    return payload


def collect_paths(
    reference: Any, candidate: Any, segments: Tuple[str, ...], prefix: str = ""
) -> Iterator[Tuple[str, Any, Any]]:
    """
    Walk both payloads along ``segments`` in lockstep.

    Yields (concrete_path, reference_value, candidate_value); a side that
    lacks the location yields MISSING.
    """
    if not segments:
        yield prefix, reference, candidate
        return
    head, rest = segments[0], segments[1:]
    left = dict(_children(reference, head))
    right = dict(_children(candidate, head))
    for key in sorted(set(left) | set(right), key=str):
        yield from collect_paths(
            left.get(key, MISSING), right.get(key, MISSING), rest, _join(prefix, key)
        )


def as_number(value: Any, strings: bool = False) -> Optional[Union[int, Decimal]]:
    """
    Exact numeric view of a JSON value.

    Integers stay integers (token amounts exceed float precision) and
    floats become the Decimal of their shortest repr, so ``1.1 - 1.0`` is
    exactly ``0.1``. Strings are parsed only with ``strings=True``:
    decimal or ``0x`` hex, as big ints and Eth quantities travel on the wire.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return Decimal(repr(value)) if math.isfinite(value) else None
    if isinstance(value, str) and strings:
        text = value.strip()
        try:
            if text.lower().startswith("0x"):
                return int(text, 16)
            if text.lstrip("+-").isdigit():
                return int(text)
            number = Decimal(text)
        except (ValueError, InvalidOperation):
            return None
        return number if number.is_finite() else None
    return None


def within(left: Union[int, Decimal], right: Union[int, Decimal], epsilon: float) -> bool:
    """Whether ``|left - right| <= epsilon`` holds exactly."""
    bound = Decimal(repr(epsilon))
    if isinstance(left, int) and isinstance(right, int):
        return abs(left - right) <= bound
    with localcontext(_EXACT):
        return abs(Decimal(left) - Decimal(right)) <= bound


def _result(differences: List[FieldDifference], detail: str = "") -> PolicyResult:
    return PolicyResult(
        equivalent=not differences,
        differences=tuple(differences[:MAX_REPORTED_DIFFERENCES]),
        detail=detail,
    )


@dataclass(frozen=True)
class EquivalencePolicy:
    """Base policy. Subclasses set ``kind`` and implement ``evaluate``."""

    kind = "abstract"

    def evaluate(self, reference: Any, candidate: Any) -> PolicyResult:
        raise NotImplementedError

    def describe(self) -> str:
        return self.kind

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind}


@dataclass(frozen=True)
class ExactMatch(EquivalencePolicy):
    """Structural equality after canonicalising field order."""

    kind = "exact_match"

    def evaluate(self, reference: Any, candidate: Any) -> PolicyResult:
        return _result(diff_values(reference, candidate))


@dataclass(frozen=True)
class IgnoreFields(EquivalencePolicy):
    """Exact match after removing the named paths from both payloads."""

    kind = "ignore_fields"
    fields: FrozenSet[str] = frozenset()

    def _strip(self, payload: Any) -> Any:
        stripped = copy.deepcopy(payload)
        remove_paths(stripped, [split_path(path) for path in self.fields])
        return stripped

    def evaluate(self, reference: Any, candidate: Any) -> PolicyResult:
        return _result(diff_values(self._strip(reference), self._strip(candidate)))

    def describe(self) -> str:
        return f"{self.kind}({', '.join(sorted(self.fields))})"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "fields": sorted(self.fields)}


@dataclass(frozen=True)
class NumericTolerance(EquivalencePolicy):
    """
    Declared numeric fields may differ by at most ``epsilon``; everything else exactly.

    A declared field may hold a JSON number or a decimal or ``0x`` hex
    string; ``.`` declares the payload itself. With no declared fields
    every JSON number leaf is compared within tolerance and strings are
    compared exactly, so hex addresses and CIDs never pass as numbers.
    Paths in ``ignore`` are removed from both payloads first.
    """

    kind = "numeric_tolerance"
    epsilon: float = 0.0
    fields: Tuple[str, ...] = ()
    ignore: FrozenSet[str] = frozenset()

    def _compare_leaves(self, path: str, reference: Any, candidate: Any) -> List[FieldDifference]:
        if isinstance(reference, dict) and isinstance(candidate, dict):
            differences: List[FieldDifference] = []
            for key in sorted(set(reference) | set(candidate), key=str):
                differences.extend(
                    self._compare_leaves(
                        _join(path, key), reference.get(key, MISSING), candidate.get(key, MISSING)
                    )
                )
            return differences
        if isinstance(reference, list) and isinstance(candidate, list) and len(reference) == len(candidate):
            differences = []
            for index, (left, right) in enumerate(zip(reference, candidate)):
                differences.extend(self._compare_leaves(_join(path, index), left, right))
            return differences
        return self._compare_number(path, reference, candidate)

    def _compare_number(
        self, path: str, reference: Any, candidate: Any, strings: bool = False
    ) -> List[FieldDifference]:
        left, right = as_number(reference, strings), as_number(candidate, strings)
        if left is None or right is None:
            return diff_values(reference, candidate, path)
        if within(left, right, self.epsilon):
            return []
        return [FieldDifference(path, reference, candidate)]

    def evaluate(self, reference: Any, candidate: Any) -> PolicyResult:
        reference = copy.deepcopy(reference)
        candidate = copy.deepcopy(candidate)
        ignored = [split_path(path) for path in self.ignore]
        remove_paths(reference, ignored)
        remove_paths(candidate, ignored)

        if not self.fields:
            return _result(self._compare_leaves("", reference, candidate), detail=f"epsilon={self.epsilon:g}")

        differences: List[FieldDifference] = []
        declared = [split_path(path) for path in self.fields]
        for segments in declared:
            for concrete, left, right in collect_paths(reference, candidate, segments):
                if left is MISSING or right is MISSING:
                    differences.append(FieldDifference(concrete, left, right))
                else:
                    differences.extend(self._compare_number(concrete, left, right, strings=True))

        if () not in declared:
            remove_paths(reference, declared)
            remove_paths(candidate, declared)
            differences.extend(diff_values(reference, candidate))
        return _result(differences, detail=f"epsilon={self.epsilon:g}")

    def describe(self) -> str:
        scope = ", ".join(self.fields) if self.fields else "all numbers"
        return f"{self.kind}({self.epsilon:g}; {scope})"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind, "epsilon": self.epsilon, "fields": list(self.fields)}
        if self.ignore:
            data["ignore"] = sorted(self.ignore)
        return data


@dataclass(frozen=True)
class SetEquality(EquivalencePolicy):
    """
    Declared collections are compared as unordered multisets.

    With no declared fields the payload itself is the collection.
    """

    kind = "set_equality"
    fields: Tuple[str, ...] = ()

    @staticmethod
    def _as_multiset(value: Any) -> Any:
        if isinstance(value, list):
            return sorted(canonical_json(item) for item in value)
        return value

    def evaluate(self, reference: Any, candidate: Any) -> PolicyResult:
        paths = self.fields or ("",)
        left, right = reference, candidate
        for path in paths:
            segments = split_path(path)
            left = transform_path(left, segments, self._as_multiset)
            right = transform_path(right, segments, self._as_multiset)

        differences = diff_values(left, right)
        if not differences:
            return _result([])

        detail_parts = []
        for path in paths:
            for concrete, ref_items, cand_items in collect_paths(left, right, split_path(path)):
                if isinstance(ref_items, list) and isinstance(cand_items, list):
                    missing = Counter(ref_items) - Counter(cand_items)
                    extra = Counter(cand_items) - Counter(ref_items)
                    detail_parts.append(
                        f"{concrete or '<root>'}: missing from candidate "
                        f"{sorted(missing.elements())}, extra in candidate {sorted(extra.elements())}"
                    )
        return _result(differences, detail="; ".join(detail_parts))

    def describe(self) -> str:
        return f"{self.kind}({', '.join(self.fields) if self.fields else '<root>'})"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "fields": list(self.fields)}


def shape_of(value: Any) -> Any:
    """Type skeleton of a JSON value; list shape follows its first element."""
    if isinstance(value, dict):
        return {key: shape_of(item) for key, item in value.items()}
    if isinstance(value, list):
        return [shape_of(value[0])] if value else []
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    return type(value).__name__


@dataclass(frozen=True)
class ShapeMatch(EquivalencePolicy):
    """
    Both payloads have the same JSON shape; values are not compared.

    Used for methods whose values are legitimately node-specific
    (peer lists, gas price estimates, start time).
    """

    kind = "shape_match"

    def evaluate(self, reference: Any, candidate: Any) -> PolicyResult:
        left, right = shape_of(reference), shape_of(candidate)
        # An empty list matches a list of any shape.
        if left == [] or right == []:
            if isinstance(reference, list) and isinstance(candidate, list):
                return _result([])
        return _result(diff_values(left, right))


@dataclass(frozen=True)
class AlwaysSkip(EquivalencePolicy):
    """Never compared; the case is reported as skipped."""

    kind = "always_skip"
    reason: str = "always skipped"

    def evaluate(self, reference: Any, candidate: Any) -> PolicyResult:
        return PolicyResult(equivalent=True, skipped=True, detail=self.reason)

    def describe(self) -> str:
        return f"{self.kind}({self.reason})"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "reason": self.reason}


def _fields(entry: Dict[str, Any], key: str = "fields") -> Tuple[str, ...]:
    fields = entry.get(key, [])
    if isinstance(fields, str):
        fields = [fields]
    if not isinstance(fields, list) or not all(isinstance(item, str) and item for item in fields):
        raise PolicyViolation(f"'{entry.get('kind')}' {key} must be a list of non-empty strings")
    return tuple(fields)


def _build_ignore_fields(entry: Dict[str, Any]) -> EquivalencePolicy:
    fields = _fields(entry)
    if not fields:
        raise PolicyViolation("ignore_fields requires at least one field")
    return IgnoreFields(fields=frozenset(fields))


def _build_numeric_tolerance(entry: Dict[str, Any]) -> EquivalencePolicy:
    epsilon = entry.get("epsilon")
    if isinstance(epsilon, bool) or not isinstance(epsilon, (int, float)) or epsilon < 0:
        raise PolicyViolation("numeric_tolerance requires a non-negative numeric 'epsilon'")
    return NumericTolerance(
        epsilon=float(epsilon),
        fields=_fields(entry),
        ignore=frozenset(_fields(entry, "ignore")),
    )


POLICY_BUILDERS: Dict[str, Callable[[Dict[str, Any]], EquivalencePolicy]] = {
    ExactMatch.kind: lambda entry: ExactMatch(),
    IgnoreFields.kind: _build_ignore_fields,
    NumericTolerance.kind: _build_numeric_tolerance,
    SetEquality.kind: lambda entry: SetEquality(fields=_fields(entry)),
    ShapeMatch.kind: lambda entry: ShapeMatch(),
    AlwaysSkip.kind: lambda entry: AlwaysSkip(reason=str(entry.get("reason", "always skipped"))),
}


def build_policy(entry: Any) -> EquivalencePolicy:
    """
    Build a policy from its catalog form.

    Accepts a bare kind string (``exact_match``) or a mapping with ``kind``
    and kind-specific parameters.

    Raises:
        PolicyViolation: If the kind is unknown or parameters are invalid
    """
    if entry is None:
        return ExactMatch()
    if isinstance(entry, str):
        entry = {"kind": entry}
    if not isinstance(entry, dict) or "kind" not in entry:
        raise PolicyViolation(f"Policy must be a kind name or a mapping with 'kind', got {entry!r}")

    builder = POLICY_BUILDERS.get(entry["kind"])
    if builder is None:
        raise PolicyViolation(
            f"Unknown policy kind '{entry['kind']}'. Expected one of: {', '.join(sorted(POLICY_BUILDERS))}"
        )
    return builder(entry)
