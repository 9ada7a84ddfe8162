from __future__ import annotations

from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

CATEGORIES = ("security", "reliability", "style", "performance")

# Ordered most to least severe
SEVERITIES = ("block", "warn", "suggest")
SEVERITY_RANK = {"suggest": 0, "warn": 1, "block": 2}

VERDICT_CLEAN = "clean"
VERDICT_WARNED = "warned"
VERDICT_BLOCKED = "blocked"
VERDICT_CANCELLED = "cancelled"


@dataclass(frozen=True)
class Rule:
    id: str
    category: str
    severity: str
    # Frozen into a read-only view on construction; mappings are unhashable so it stays out of the hash
    predicate: Mapping[str, Any] = field(hash=False)
    rationale: str
    message: str
    title: str = ""
    fix: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "predicate", _freeze(self.predicate))


@dataclass(frozen=True)
class Finding:
    rule_id: str
    category: str
    severity: str
    path: str
    start_line: int
    end_line: int
    message: str
    fix: str | None = None
    snippet: str = ""

    @property
    def key(self) -> tuple[str, str, int, int]:
        """Identity used for deduplication."""
        return (self.rule_id, self.path, self.start_line, self.end_line)

    def sort_key(self) -> tuple:
        return (-SEVERITY_RANK[self.severity], self.path, self.start_line, self.end_line, self.rule_id)


@dataclass(frozen=True)
class Diagnostic:
    """A rule evaluation that failed without aborting the review."""
    rule_id: str
    path: str
    message: str


@dataclass(frozen=True)
class ReviewStats:
    units: int = 0
    rules: int = 0
    evaluations: int = 0
    failed_evaluations: int = 0


@dataclass(frozen=True)
class ReviewReport:
    findings: tuple[Finding, ...]
    verdict: str
    diagnostics: tuple[Diagnostic, ...] = ()
    stats: ReviewStats = field(default_factory=ReviewStats)

    @classmethod
    def build(
        cls,
        findings: list[Finding],
        diagnostics: list[Diagnostic] | None = None,
        stats: ReviewStats | None = None,
    ) -> ReviewReport:
        """Order findings and derive the verdict."""
        ordered = tuple(sorted(findings, key=Finding.sort_key))
        return cls(
            findings=ordered,
            verdict=compute_verdict(ordered),
            diagnostics=tuple(diagnostics or ()),
            stats=stats or ReviewStats(),
        )

    @classmethod
    def cancelled(cls, stats: ReviewStats | None = None) -> ReviewReport:
        return cls(findings=(), verdict=VERDICT_CANCELLED, stats=stats or ReviewStats())

    def findings_by_severity(self, level: str) -> tuple[Finding, ...]:
        if level not in SEVERITY_RANK:
            raise ValueError(f"unknown severity '{level}' (valid: {', '.join(SEVERITIES)})")
        return tuple(f for f in self.findings if f.severity == level)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _freeze(value: Any) -> Any:
    """Recursively turn dicts into read-only mappings and lists into tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    return value


def compute_verdict(findings: tuple[Finding, ...] | list[Finding]) -> str:
    severities = {f.severity for f in findings}
    if "block" in severities:
        return VERDICT_BLOCKED
    if "warn" in severities:
        return VERDICT_WARNED
    return VERDICT_CLEAN
