"""Entry point: python -m reviewgate [--json] [--fail-on LEVEL] [--diff FILE | PATH ...]"""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from . import __version__
from .core.catalog import default_catalog_path, load_catalog
from .core.engine import ReviewOptions, review
from .core.errors import NoRulesApplicableError, RuleLoadError, SourceUnavailableError
from .core.models import CATEGORIES, SEVERITIES, SEVERITY_RANK, VERDICT_CANCELLED, ReviewReport
from .sources.diff import load_diff
from .sources.files import load_units

logger = logging.getLogger("reviewgate")

EXIT_OK = 0
EXIT_FINDINGS = 1
EXIT_ERROR = 2


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="reviewgate",
        description="Policy-driven code review for files and diffs",
    )
    parser.add_argument("paths", nargs="*", type=Path, help="Files or directories to review")
    parser.add_argument("--diff", type=Path, help="Review a unified diff file instead of paths")
    parser.add_argument("--policy", type=Path, help="Path to a rulebook YAML (default: $REVIEWGATE_POLICY or bundled)")
    parser.add_argument(
        "--category",
        action="append",
        choices=list(CATEGORIES),
        dest="categories",
        help="Only run rules of this category (repeatable)",
    )
    parser.add_argument("--diff-only", action="store_true", help="Only report findings on added lines")
    parser.add_argument("--jobs", type=int, default=None, help="Maximum parallel rule evaluations")
    parser.add_argument("--timeout", type=float, default=None, help="Cancel the review after this many seconds")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Output the report as JSON")
    parser.add_argument(
        "--fail-on",
        choices=list(SEVERITIES),
        default="block",
        help="Minimum severity that causes a non-zero exit code (default: block)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not args.paths and args.diff is None:
        parser.print_usage(sys.stderr)
        print("error: give at least one path or --diff FILE", file=sys.stderr)
        return EXIT_ERROR
    if args.jobs is not None and args.jobs < 1:
        print("error: --jobs must be >= 1", file=sys.stderr)
        return EXIT_ERROR

    policy_path = args.policy or default_catalog_path()

    # Load rules
    try:
        catalog = load_catalog(policy_path)
    except OSError as e:
        print(f"error: cannot read policy {policy_path}: {e}", file=sys.stderr)
        return EXIT_ERROR
    except RuleLoadError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    logger.debug("loaded %d rules from %s", len(catalog), policy_path)

    # Collect source units
    try:
        units = load_diff(args.diff) if args.diff is not None else load_units(args.paths, root=Path.cwd())
    except SourceUnavailableError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    options = ReviewOptions(
        enabled_categories=set(args.categories) if args.categories else None,
        diff_only=args.diff_only,
        max_parallelism=args.jobs,
        deadline=time.monotonic() + args.timeout if args.timeout is not None else None,
    )
    try:
        report = review(catalog, units, options)
    except NoRulesApplicableError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    # Diagnostics go to stderr in all modes
    for d in report.diagnostics:
        print(f"warning: {d.message}", file=sys.stderr)

    if args.json_output:
        meta: dict = {"schema_version": "0.1", "tool_version": __version__, "policy_path": str(policy_path)}
        print(json.dumps({"meta": meta, "report": report.to_dict()}, indent=2))
    else:
        _print_text(report)

    if report.verdict == VERDICT_CANCELLED:
        return EXIT_FINDINGS

    # Exit code based on --fail-on threshold
    threshold = SEVERITY_RANK[args.fail_on]
    failing = any(SEVERITY_RANK[f.severity] >= threshold for f in report.findings)
    return EXIT_FINDINGS if failing else EXIT_OK


def _print_text(report: ReviewReport) -> None:
    if report.verdict == VERDICT_CANCELLED:
        print("Review cancelled before completion; no results reported.")
        return

    if not report.findings:
        print(f"Review complete ({report.stats.units} files, {report.stats.rules} rules). No issues found.")
        return

    for finding in report.findings:
        location = f"{finding.path}:{finding.start_line}"
        if finding.end_line != finding.start_line:
            location += f"-{finding.end_line}"
        print(f"[{finding.severity.upper()}] {finding.rule_id} {location}: {finding.message}")
        if finding.snippet:
            for line in finding.snippet.splitlines():
                print(f"  | {line.strip()}")
        if finding.fix:
            print(f"  fix: {finding.fix}")
        print()
    print(f"verdict: {report.verdict}")


if __name__ == "__main__":
    sys.exit(main())
