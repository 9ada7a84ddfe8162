from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Sequence

from .catalog import RuleCatalog
from .errors import NoRulesApplicableError, RuleEvaluationError
from .matcher import Matcher
from .models import CATEGORIES, Diagnostic, Finding, ReviewReport, ReviewStats, Rule
from .source import SourceUnit

logger = logging.getLogger(__name__)

# How often the dispatcher wakes up to check for cancellation (seconds)
_POLL_INTERVAL = 0.05


@dataclass
class ReviewOptions:
    """Per-invocation settings.

    ``deadline`` is an absolute ``time.monotonic()`` value; reaching it has the
    same effect as setting ``cancel_event``.
    """
    enabled_categories: set[str] | None = None
    diff_only: bool = False
    max_parallelism: int | None = None
    cancel_event: threading.Event | None = None
    deadline: float | None = None

    def validate(self) -> None:
        if self.enabled_categories is not None:
            unknown = sorted(set(self.enabled_categories) - set(CATEGORIES))
            if unknown:
                raise ValueError(f"unknown categories: {', '.join(unknown)} (valid: {', '.join(CATEGORIES)})")
        if self.max_parallelism is not None and self.max_parallelism < 1:
            raise ValueError(f"max_parallelism must be >= 1, got {self.max_parallelism}")

    def cancelled(self) -> bool:
        if self.cancel_event is not None and self.cancel_event.is_set():
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline


class AnalysisEngine:
    """Runs every enabled rule against every source unit and reduces the results into a report."""

    def __init__(self, catalog: RuleCatalog, matcher: Matcher | None = None) -> None:
        self._catalog = catalog
        self._matcher = matcher or Matcher()

    def run(self, units: Sequence[SourceUnit], options: ReviewOptions | None = None) -> ReviewReport:
        options = options or ReviewOptions()
        options.validate()

        rules = [
            r for r in self._catalog.rules_for()
            if options.enabled_categories is None or r.category in options.enabled_categories
        ]
        if not rules:
            raise NoRulesApplicableError("no rules left to evaluate after category filtering")

        units = list(units)
        stats = ReviewStats(units=len(units), rules=len(rules))
        if options.cancelled():
            logger.info("review cancelled before dispatch")
            return ReviewReport.cancelled(stats)

        # Slot i holds the outcome for unit i // len(rules), rule i % len(rules)
        work = [(unit, rule) for unit in units for rule in rules]
        results = self._dispatch(work, options)
        if results is None:
            logger.info("review cancelled; discarding in-flight evaluations")
            return ReviewReport.cancelled(stats)

        return _reduce(results, stats)

    def _dispatch(
        self, work: list[tuple[SourceUnit, Rule]], options: ReviewOptions
    ) -> list[list[Finding] | RuleEvaluationError] | None:
        """Evaluate the work list on a bounded pool. Returns None if cancelled."""
        results: list = [None] * len(work)
        if not work:
            return results

        workers = options.max_parallelism or os.cpu_count() or 1
        logger.debug("dispatching %d evaluations to %d workers", len(work), workers)

        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reviewgate")
        pending: dict[Future, int] = {}
        next_item = 0
        cancelled = False
        try:
            while next_item < len(work) or pending:
                if options.cancelled():
                    cancelled = True
                    for fut in pending:
                        fut.cancel()
                    return None

                while next_item < len(work) and len(pending) < workers:
                    unit, rule = work[next_item]
                    fut = pool.submit(self._evaluate, rule, unit, options.diff_only)
                    pending[fut] = next_item
                    next_item += 1

                done, _ = wait(pending, timeout=_POLL_INTERVAL, return_when=FIRST_COMPLETED)
                for fut in done:
                    results[pending.pop(fut)] = fut.result()
        finally:
            pool.shutdown(wait=not cancelled, cancel_futures=True)
        return results

    def _evaluate(self, rule: Rule, unit: SourceUnit, diff_only: bool) -> list[Finding] | RuleEvaluationError:
        try:
            return self._matcher.evaluate(rule, unit, diff_only=diff_only)
        except RuleEvaluationError as e:
            return e


def _reduce(results: list[list[Finding] | RuleEvaluationError], stats: ReviewStats) -> ReviewReport:
    """Deduplicate, collect diagnostics, then order and judge. Runs after every evaluation is in."""
    findings: list[Finding] = []
    diagnostics: list[Diagnostic] = []
    seen: set[tuple[str, str, int, int]] = set()

    for outcome in results:
        if isinstance(outcome, RuleEvaluationError):
            logger.warning("%s", outcome)
            diagnostics.append(Diagnostic(rule_id=outcome.rule_id, path=outcome.path, message=str(outcome)))
            continue
        for finding in outcome:
            if finding.key in seen:
                continue
            seen.add(finding.key)
            findings.append(finding)

    if results and len(diagnostics) == len(results):
        raise NoRulesApplicableError(f"all {len(results)} rule evaluations failed")

    stats = ReviewStats(
        units=stats.units,
        rules=stats.rules,
        evaluations=len(results),
        failed_evaluations=len(diagnostics),
    )
    report = ReviewReport.build(findings, diagnostics, stats)
    logger.debug("review finished: verdict=%s findings=%d diagnostics=%d",
                 report.verdict, len(report.findings), len(report.diagnostics))
    return report


def review(
    catalog: RuleCatalog,
    units: Sequence[SourceUnit],
    options: ReviewOptions | None = None,
) -> ReviewReport:
    """Review ``units`` against ``catalog``. Blocks until the report is ready."""
    return AnalysisEngine(catalog).run(units, options)
