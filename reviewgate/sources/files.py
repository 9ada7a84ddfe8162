"""Builds source units from files on disk.

Directories are walked recursively in sorted order; hidden entries and binary
files are skipped. A file named explicitly is always read.
"""
from __future__ import annotations

import logging
from pathlib import Path

from ..core.errors import SourceUnavailableError
from ..core.source import SourceUnit

logger = logging.getLogger(__name__)

# Bytes sniffed for NUL when deciding whether a file is binary
_SNIFF_BYTES = 8192


def load_units(paths: list[Path], root: Path | None = None) -> list[SourceUnit]:
    """Read every file under ``paths``. Unit paths are relative to ``root`` when given."""
    units: list[SourceUnit] = []
    for path in paths:
        if path.is_dir():
            files = sorted(p for p in path.rglob("*") if p.is_file() and not _is_hidden(p, path))
            files = [p for p in files if not _is_binary(p)]
        elif path.is_file():
            files = [path]
        else:
            raise SourceUnavailableError(f"{path}: no such file or directory")

        for file_path in files:
            units.append(SourceUnit.from_text(_display_path(file_path, root), _read(file_path)))
    return units


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise SourceUnavailableError(f"{path}: {e}") from e


def _is_binary(path: Path) -> bool:
    try:
        with open(path, "rb") as f:
            head = f.read(_SNIFF_BYTES)
    except OSError as e:
        raise SourceUnavailableError(f"{path}: {e}") from e
    if b"\0" in head:
        logger.debug("Skipping binary file %s", path)
        return True
    return False


def _display_path(path: Path, root: Path | None) -> str:
    if root is not None:
        try:
            return path.relative_to(root).as_posix()
        except ValueError:
            pass
    return path.as_posix()


def _is_hidden(path: Path, base: Path) -> bool:
    return any(part.startswith(".") for part in path.relative_to(base).parts)
