from __future__ import annotations

from .errors import RuleEvaluationError
from .models import Finding, Rule
from .predicate import PredicateMatch, evaluate_predicate
from .source import SourceUnit


class Matcher:
    """Applies one rule's predicate to one source unit.

    Evaluation is side-effect free: the same (rule, unit, diff_only) input
    always yields the same findings, in line order.
    """

    def evaluate(self, rule: Rule, unit: SourceUnit, diff_only: bool = False) -> list[Finding]:
        try:
            matches = evaluate_predicate(rule.predicate, unit)
            return [
                _render(rule, unit, m)
                for m in matches
                if not diff_only or _touches_added_line(unit, m)
            ]
        except Exception as e:
            raise RuleEvaluationError(rule.id, unit.path, e) from e


def _touches_added_line(unit: SourceUnit, match: PredicateMatch) -> bool:
    return any(unit.is_added_line(n) for n in range(match.start_line, match.end_line + 1))


def _render(rule: Rule, unit: SourceUnit, match: PredicateMatch) -> Finding:
    # Raises OutOfBoundsError for a range the unit does not have
    snippet = unit.line_range(match.start_line, match.end_line)
    fields = {
        "rule_id": rule.id,
        "path": unit.path,
        "line": match.start_line,
        "end_line": match.end_line,
        "match": match.text,
    }
    return Finding(
        rule_id=rule.id,
        category=rule.category,
        severity=rule.severity,
        path=unit.path,
        start_line=match.start_line,
        end_line=match.end_line,
        message=rule.message.format_map(fields),
        fix=rule.fix.format_map(fields) if rule.fix else None,
        snippet=snippet,
    )
