"""Builds source units from a unified diff using the unidiff library."""
from __future__ import annotations

from pathlib import Path

from unidiff import PatchSet
from unidiff.errors import UnidiffParseError

from ..core.errors import SourceUnavailableError
from ..core.source import SourceUnit


def units_from_diff(diff_text: str) -> list[SourceUnit]:
    """Parse a unified diff into one unit per added or modified file.

    Each unit is laid out in target-file coordinates: hunk lines (added and
    context) sit at their real line numbers and lines outside any hunk are
    left blank. Added lines are recorded as diff metadata. Deleted files
    have nothing left to review and are skipped.
    """
    try:
        patch_set = PatchSet(diff_text)
    except UnidiffParseError as e:
        raise SourceUnavailableError(f"could not parse diff: {e}") from e

    units: list[SourceUnit] = []
    for patched_file in patch_set:
        if patched_file.is_removed_file or patched_file.is_binary_file:
            continue

        content: dict[int, str] = {}
        added: set[int] = set()
        for hunk in patched_file:
            for line in hunk:
                if line.target_line_no is None:
                    continue
                content[line.target_line_no] = line.value.rstrip("\r\n")
                if line.is_added:
                    added.add(line.target_line_no)

        line_count = max(content, default=0)
        units.append(SourceUnit(
            path=patched_file.path,
            lines=tuple(content.get(n, "") for n in range(1, line_count + 1)),
            added_lines=frozenset(added),
        ))
    return units


def load_diff(path: Path) -> list[SourceUnit]:
    """Read a diff file and parse it with ``units_from_diff``."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise SourceUnavailableError(f"{path}: {e}") from e
    return units_from_diff(text)
