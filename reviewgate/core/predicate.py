"""Detection predicates: data-only descriptions of what a rule looks for.

A predicate is a mapping with a ``kind`` key plus kind-specific parameters::

    {"kind": "pattern", "regex": "Password=", "ignore_case": true}
    {"kind": "structural", "anchor": "\\[Http(Get|Post)", "require": "\\[Authorize",
     "within": 3, "direction": "before"}

New kinds are added with ``register_predicate`` and need no engine changes.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from .source import SourceUnit

_DIRECTIONS = {"before", "after", "around"}


@dataclass(frozen=True)
class PredicateMatch:
    """A line range hit by a predicate, with the text that triggered it."""
    start_line: int
    end_line: int
    text: str


Validator = Callable[[dict, str], list[str]]
Evaluator = Callable[[Mapping, SourceUnit], list[PredicateMatch]]

_KINDS: dict[str, tuple[Validator, Evaluator]] = {}


def register_predicate(kind: str, validator: Validator, evaluator: Evaluator) -> None:
    """Register a predicate kind. Re-registering an existing kind is an error."""
    if kind in _KINDS:
        raise ValueError(f"predicate kind '{kind}' is already registered")
    _KINDS[kind] = (validator, evaluator)


def predicate_kinds() -> list[str]:
    return sorted(_KINDS)


def validate_predicate(predicate: Any, path: str = "predicate") -> list[str]:
    """Return a list of error strings if the predicate is malformed."""
    if not isinstance(predicate, Mapping):
        return [f"{path}: expected dict, got {type(predicate).__name__}"]
    kind = predicate.get("kind")
    if kind is None:
        return [f"{path}: missing required key 'kind'"]
    if not isinstance(kind, str):
        return [f"{path}.kind: expected string, got {type(kind).__name__}"]
    if kind not in _KINDS:
        return [f"{path}: unknown kind '{kind}' (valid: {', '.join(predicate_kinds())})"]
    validator, _ = _KINDS[kind]
    return validator(predicate, path)


def evaluate_predicate(predicate: Mapping, unit: SourceUnit) -> list[PredicateMatch]:
    """Run a validated predicate against one unit. Matches come back in line order."""
    _, evaluator = _KINDS[predicate["kind"]]
    return evaluator(predicate, unit)


# --- pattern ---

def _validate_pattern(predicate: dict, path: str) -> list[str]:
    errors: list[str] = []
    has_regex = "regex" in predicate
    has_substring = "substring" in predicate
    if has_regex == has_substring:
        errors.append(f"{path}: pattern needs exactly one of 'regex' or 'substring'")
    if has_regex:
        errors.extend(_check_regex(predicate["regex"], f"{path}.regex"))
    if has_substring and not (isinstance(predicate["substring"], str) and predicate["substring"]):
        errors.append(f"{path}.substring: expected non-empty string")
    errors.extend(_check_bool(predicate, "ignore_case", path))
    return errors


def _evaluate_pattern(predicate: dict, unit: SourceUnit) -> list[PredicateMatch]:
    if "regex" in predicate:
        regex = _compile(predicate, "regex")
    else:
        flags = re.IGNORECASE if predicate.get("ignore_case", False) else 0
        regex = re.compile(re.escape(predicate["substring"]), flags)

    matches: list[PredicateMatch] = []
    for n, text in enumerate(unit.lines, start=1):
        m = regex.search(text)
        if m:
            matches.append(PredicateMatch(n, n, m.group(0)))
    return matches


# --- structural ---

def _validate_structural(predicate: dict, path: str) -> list[str]:
    errors: list[str] = []
    if "anchor" not in predicate:
        errors.append(f"{path}: missing required key 'anchor'")
    else:
        errors.extend(_check_regex(predicate["anchor"], f"{path}.anchor"))

    has_require = "require" in predicate
    has_forbid = "forbid" in predicate
    if has_require == has_forbid:
        errors.append(f"{path}: structural needs exactly one of 'require' or 'forbid'")
    for key in ("require", "forbid"):
        if key in predicate:
            errors.extend(_check_regex(predicate[key], f"{path}.{key}"))

    within = predicate.get("within")
    if within is None:
        errors.append(f"{path}: missing required key 'within'")
    elif isinstance(within, bool) or not isinstance(within, int) or within < 0:
        errors.append(f"{path}.within: expected non-negative int, got {within!r}")

    direction = predicate.get("direction", "around")
    if not isinstance(direction, str):
        errors.append(f"{path}.direction: expected string, got {type(direction).__name__}")
    elif direction not in _DIRECTIONS:
        errors.append(f"{path}.direction: unknown direction '{direction}' (valid: {sorted(_DIRECTIONS)})")
    errors.extend(_check_bool(predicate, "ignore_case", path))
    return errors


def _evaluate_structural(predicate: dict, unit: SourceUnit) -> list[PredicateMatch]:
    anchor = _compile(predicate, "anchor")
    within = predicate["within"]
    direction = predicate.get("direction", "around")

    if "require" in predicate:
        required = _compile(predicate, "require")
        matches: list[PredicateMatch] = []
        for n, text in enumerate(unit.lines, start=1):
            m = anchor.search(text)
            if not m:
                continue
            lo, hi = _window(n, within, direction, unit.line_count)
            if not any(required.search(unit.lines[i - 1]) for i in range(lo, hi + 1)):
                matches.append(PredicateMatch(n, n, m.group(0)))
        return matches

    forbidden = _compile(predicate, "forbid")
    hits: dict[int, PredicateMatch] = {}
    for n, text in enumerate(unit.lines, start=1):
        if not anchor.search(text):
            continue
        lo, hi = _window(n, within, direction, unit.line_count)
        for i in range(lo, hi + 1):
            if i in hits:
                continue
            m = forbidden.search(unit.lines[i - 1])
            if m:
                hits[i] = PredicateMatch(i, i, m.group(0))
    return [hits[i] for i in sorted(hits)]


def _window(n: int, within: int, direction: str, line_count: int) -> tuple[int, int]:
    """Inclusive line window around an anchor line, clamped to the unit."""
    lo = n - within if direction in ("before", "around") else n
    hi = n + within if direction in ("after", "around") else n
    return max(lo, 1), min(hi, line_count)


# --- helpers ---

def _compile(predicate: dict, key: str) -> re.Pattern:
    flags = re.IGNORECASE if predicate.get("ignore_case", False) else 0
    return re.compile(predicate[key], flags)


def _check_regex(value: Any, path: str) -> list[str]:
    if not isinstance(value, str) or not value:
        return [f"{path}: expected non-empty string"]
    try:
        re.compile(value)
    except re.error as e:
        return [f"{path}: invalid regex: {e}"]
    return []


def _check_bool(predicate: dict, key: str, path: str) -> list[str]:
    if key in predicate and not isinstance(predicate[key], bool):
        return [f"{path}.{key}: expected bool, got {type(predicate[key]).__name__}"]
    return []


register_predicate("pattern", _validate_pattern, _evaluate_pattern)
register_predicate("structural", _validate_structural, _evaluate_structural)
