from __future__ import annotations

import os
import string
from pathlib import Path
from typing import Iterable, Iterator, Mapping

import yaml

from .errors import InvalidSeverityForCategoryError, MalformedRuleError
from .models import CATEGORIES, SEVERITIES, Rule
from .predicate import validate_predicate

_REQUIRED_RULE_KEYS = ("id", "category", "severity", "predicate")
_TEMPLATE_FIELDS = {"rule_id", "path", "line", "end_line", "match"}

# Severities a category may never use
_FORBIDDEN_SEVERITIES = {"style": {"block"}}


class RuleCatalog:
    """An immutable, ordered set of review rules.

    Build one with ``RuleCatalog.load``; loading again means building a new
    catalog.
    """

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules: tuple[Rule, ...] = tuple(rules)
        _check_rules(self._rules)
        self._by_id = {r.id: r for r in self._rules}

    @classmethod
    def load(cls, definitions: Iterable[Mapping]) -> RuleCatalog:
        definitions = list(definitions)
        errors = _validate_definitions(definitions)
        if errors:
            joined = "\n  ".join(errors)
            raise MalformedRuleError(f"rule validation failed:\n  {joined}")

        violations = [
            f"rules[{i}] (id={d['id']}): category '{d['category']}' may not use severity '{d['severity']}'"
            for i, d in enumerate(definitions)
            if d["severity"] in _FORBIDDEN_SEVERITIES.get(d["category"], ())
        ]
        if violations:
            raise InvalidSeverityForCategoryError("\n".join(violations))

        return cls(_build_rule(d) for d in definitions)

    def rules_for(self, category: str | None = None) -> _RuleView:
        """Rules in definition order, optionally restricted to one category."""
        if category is not None and category not in CATEGORIES:
            raise ValueError(f"unknown category '{category}' (valid: {', '.join(CATEGORIES)})")
        return _RuleView(self._rules, category)

    def get(self, rule_id: str) -> Rule | None:
        return self._by_id.get(rule_id)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id


class _RuleView:
    """Lazy, restartable filter over a catalog's rules."""

    def __init__(self, rules: tuple[Rule, ...], category: str | None) -> None:
        self._rules = rules
        self._category = category

    def __iter__(self) -> Iterator[Rule]:
        return (r for r in self._rules if self._category is None or r.category == self._category)


def load_catalog(path: Path) -> RuleCatalog:
    """Load a YAML rulebook with a top-level ``rules`` list."""
    with open(path, encoding="utf-8") as f:
        try:
            document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise MalformedRuleError(f"{path}: invalid YAML: {e}") from e

    if not isinstance(document, dict):
        raise MalformedRuleError(f"{path}: expected a YAML mapping at top level")

    rules = document.get("rules", [])
    if not isinstance(rules, list):
        raise MalformedRuleError(f"{path}: 'rules' must be a list")

    try:
        return RuleCatalog.load(rules)
    except MalformedRuleError as e:
        raise MalformedRuleError(f"{path}: {e}") from e
    except InvalidSeverityForCategoryError as e:
        raise InvalidSeverityForCategoryError(f"{path}: {e}") from e


def default_catalog_path() -> Path:
    """The rulebook used when none is given: $REVIEWGATE_POLICY, else the bundled one."""
    env_path = os.environ.get("REVIEWGATE_POLICY")
    if env_path:
        return Path(env_path)
    return Path(__file__).resolve().parent.parent / "policies" / "default.yaml"


def _build_rule(definition: Mapping) -> Rule:
    rationale = definition.get("rationale") or ""
    message = definition.get("message")
    if not message:
        # Plain text falls back to being the message, so escape template braces
        plain = rationale or definition.get("title") or definition["id"]
        message = plain.replace("{", "{{").replace("}", "}}")
    return Rule(
        id=definition["id"],
        category=definition["category"],
        severity=definition["severity"],
        predicate=definition["predicate"],
        rationale=rationale,
        message=message,
        title=definition.get("title") or "",
        fix=definition.get("fix"),
    )


def _check_rules(rules: tuple[Rule, ...]) -> None:
    """Enforce catalog invariants on already-built rules."""
    errors: list[str] = []
    violations: list[str] = []
    seen: set[str] = set()
    for rule in rules:
        if not isinstance(rule.id, str) or not rule.id:
            errors.append(f"rule {rule.id!r}: 'id' must be a non-empty string")
        elif rule.id in seen:
            errors.append(f"rule {rule.id}: duplicate id")
        else:
            seen.add(rule.id)
        if rule.category not in CATEGORIES:
            errors.append(f"rule {rule.id}: unknown category '{rule.category}'")
        if rule.severity not in SEVERITIES:
            errors.append(f"rule {rule.id}: unknown severity '{rule.severity}'")
        elif rule.category in CATEGORIES and rule.severity in _FORBIDDEN_SEVERITIES.get(rule.category, ()):
            violations.append(
                f"rule {rule.id}: category '{rule.category}' may not use severity '{rule.severity}'"
            )
        errors.extend(f"rule {rule.id}: {err}" for err in validate_predicate(rule.predicate))

    if errors:
        joined = "\n  ".join(errors)
        raise MalformedRuleError(f"rule validation failed:\n  {joined}")
    if violations:
        raise InvalidSeverityForCategoryError("\n".join(violations))


def _validate_definitions(definitions: list) -> list[str]:
    """Validate every definition; collect all problems instead of stopping at the first."""
    errors: list[str] = []
    seen: dict[str, int] = {}
    for i, rule in enumerate(definitions):
        if not isinstance(rule, Mapping):
            errors.append(f"rules[{i}]: expected dict, got {type(rule).__name__}")
            continue
        label = f"rules[{i}] (id={rule.get('id', '?')})"

        missing = [k for k in _REQUIRED_RULE_KEYS if k not in rule]
        if missing:
            errors.append(f"{label}: missing keys: {', '.join(missing)}")

        rule_id = rule.get("id")
        if "id" in rule:
            if not isinstance(rule_id, str) or not rule_id:
                errors.append(f"{label}: 'id' must be a non-empty string")
            elif rule_id in seen:
                errors.append(f"{label}: duplicate id (first defined at rules[{seen[rule_id]}])")
            else:
                seen[rule_id] = i

        if "category" in rule and rule["category"] not in CATEGORIES:
            errors.append(f"{label}: unknown category '{rule['category']}' (valid: {', '.join(CATEGORIES)})")
        if "severity" in rule and rule["severity"] not in SEVERITIES:
            errors.append(f"{label}: unknown severity '{rule['severity']}' (valid: {', '.join(SEVERITIES)})")

        if "predicate" in rule:
            for err in validate_predicate(rule["predicate"]):
                errors.append(f"{label}: {err}")

        for key in ("message", "fix", "rationale", "title"):
            if key in rule and rule[key] is not None:
                errors.extend(f"{label}: {err}" for err in _validate_template(rule[key], key))
    return errors


def _validate_template(template: object, key: str) -> list[str]:
    if not isinstance(template, str):
        return [f"'{key}' must be a string, got {type(template).__name__}"]
    if key in ("rationale", "title"):
        return []
    try:
        fields = {name for _, name, _, _ in string.Formatter().parse(template) if name is not None}
    except ValueError as e:
        return [f"'{key}' is not a valid template: {e}"]
    unknown = sorted(f"{{{f}}}" for f in fields if f not in _TEMPLATE_FIELDS)
    if unknown:
        return [
            f"'{key}' uses unknown placeholder(s): {', '.join(unknown)} "
            f"(valid: {', '.join(sorted(_TEMPLATE_FIELDS))})"
        ]
    return []
