from __future__ import annotations

from dataclasses import dataclass

from .errors import OutOfBoundsError


@dataclass(frozen=True)
class SourceUnit:
    """One file (or the reviewable part of one diffed file), addressed by 1-based line numbers.

    When ``added_lines`` is None the unit carries no diff metadata and every
    line counts as added.
    """
    path: str
    lines: tuple[str, ...]
    added_lines: frozenset[int] | None = None

    @classmethod
    def from_text(cls, path: str, text: str, added_lines: set[int] | None = None) -> SourceUnit:
        return cls(
            path=path,
            lines=_split_lines(text),
            added_lines=frozenset(added_lines) if added_lines is not None else None,
        )

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def has_diff(self) -> bool:
        return self.added_lines is not None

    def line(self, n: int) -> str:
        self._check_bounds(n, n)
        return self.lines[n - 1]

    def line_range(self, start: int, end: int) -> str:
        """Return lines start..end (inclusive) joined with newlines."""
        self._check_bounds(start, end)
        return "\n".join(self.lines[start - 1:end])

    def is_added_line(self, n: int) -> bool:
        if self.added_lines is None:
            return True
        return n in self.added_lines

    def _check_bounds(self, start: int, end: int) -> None:
        if start < 1 or end > self.line_count or start > end:
            raise OutOfBoundsError(
                f"{self.path}: line range {start}-{end} outside [1, {self.line_count}]"
            )


def _split_lines(text: str) -> tuple[str, ...]:
    """Split on \n only, the way git and editors number lines; a trailing \r is dropped."""
    if not text:
        return ()
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return tuple(line[:-1] if line.endswith("\r") else line for line in lines)
