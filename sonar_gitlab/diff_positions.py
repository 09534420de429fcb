"""Unified diff parsing into the set of commentable new-revision lines per file."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

logger = logging.getLogger(__name__)

# http://en.wikipedia.org/wiki/Diff_utility#Unified_format
HUNK_HEADER_PATTERN = re.compile(
    r"@@\s-\d+(?:,\d+)?\s\+(?P<new_start>\d+)(?:,\d+)?\s@@.*",
    re.ASCII,
)
GIT_DIFF_HEADER_PATTERN = re.compile(r"^diff --git a/(?P<old_path>.+) b/(?P<new_path>.+)$")
LINE_BREAK_PATTERN = re.compile(r"\r\n|\r|\n")
DEV_NULL = "/dev/null"


class PatchParseError(ValueError):
    """Raised when a hunk header line does not follow the unified diff grammar."""

    def __init__(self, line: str, patch: str) -> None:
        super().__init__(f"Unable to parse patch line {line}\nFull patch: \n{patch}")
        self.line = line
        self.patch = patch


@dataclass(frozen=True, slots=True)
class FilePatch:
    """Patch text for one file of a commit, keyed by its new-revision path."""

    path: str
    patch: str | None


@dataclass(frozen=True, slots=True)
class PositionIndex:
    """Read-only mapping of file path to new-revision line numbers visible in the diff."""

    lines_by_path: Mapping[str, frozenset[int]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __contains__(self, path: object) -> bool:
        return path in self.lines_by_path

    def __len__(self) -> int:
        return len(self.lines_by_path)

    def __iter__(self) -> Iterator[str]:
        return iter(self.lines_by_path)

    @property
    def paths(self) -> tuple[str, ...]:
        """Return every indexed path, in input order."""
        return tuple(self.lines_by_path)

    def has_file(self, path: str) -> bool:
        """Return whether the file is part of the commit diff."""
        return path in self.lines_by_path

    def has_line(self, path: str, line: int) -> bool:
        """Return whether the new-revision line is displayed in the file's diff."""
        return line in self.lines_by_path.get(path, frozenset())

    def lines_for(self, path: str) -> frozenset[int]:
        """Return the visible lines of a file, empty when the file is unknown."""
        return self.lines_by_path.get(path, frozenset())


def _split_lines(text: str) -> list[str]:
    """Split on CRLF, CR or LF only, keeping other control characters in content."""
    lines = LINE_BREAK_PATTERN.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def parse_visible_lines(patch: str) -> frozenset[int]:
    """Return new-revision line numbers of added and context lines in a patch."""
    visible: set[int] = set()
    current_line = -1
    for line in _split_lines(patch):
        if line.startswith("@@"):
            header_match = HUNK_HEADER_PATTERN.fullmatch(line)
            if header_match is None:
                raise PatchParseError(line, patch)
            current_line = int(header_match.group("new_start"))
        elif line.startswith("-"):
            continue
        elif line.startswith(("+", " ")):
            visible.add(current_line)
            current_line += 1
        # "\ No newline at end of file" and anything else carry no position.
    return frozenset(visible)


def build_position_index(files: Iterable[FilePatch | tuple[str, str | None]]) -> PositionIndex:
    """Build the position index of a commit from its per-file patches."""
    lines_by_path: dict[str, frozenset[int]] = {}
    for entry in files:
        file_patch = entry if isinstance(entry, FilePatch) else FilePatch(*entry)
        if not file_patch.patch:
            lines_by_path[file_patch.path] = frozenset()
            continue
        lines_by_path[file_patch.path] = parse_visible_lines(file_patch.patch)

    logger.debug(
        "Indexed %d file(s) with %d visible line(s)",
        len(lines_by_path),
        sum(len(lines) for lines in lines_by_path.values()),
    )
    return PositionIndex(lines_by_path=MappingProxyType(lines_by_path))


def _strip_diff_path(raw_path: str) -> str:
    """Drop the a/ or b/ prefix and any trailing timestamp from a ---/+++ path."""
    path = raw_path.split("\t", 1)[0].strip()
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def split_unified_diff(diff_text: str) -> tuple[FilePatch, ...]:
    """Split a multi-file unified diff (``git diff`` or ``diff -u``) into file patches.

    Deleted files keep their old path with a patch that has no visible lines.
    Files without hunks (binary or mode-only changes) get a ``None`` patch.
    """
    lines = _split_lines(diff_text)
    git_style = any(line.startswith("diff --git ") for line in lines)

    patches: list[FilePatch] = []
    path: str | None = None
    old_path: str | None = None
    body: list[str] = []
    in_hunk = False

    def flush() -> None:
        target = path if path is not None else old_path
        if target is None:
            return
        patches.append(FilePatch(path=target, patch="\n".join(body) if body else None))

    for index, line in enumerate(lines):
        if git_style:
            starts_file = line.startswith("diff --git ")
        else:
            starts_file = (
                line.startswith("--- ")
                and index + 1 < len(lines)
                and lines[index + 1].startswith("+++ ")
            )

        if starts_file:
            flush()
            path = None
            old_path = None
            body = []
            in_hunk = False
            header_match = GIT_DIFF_HEADER_PATTERN.match(line)
            if header_match is not None:
                old_path = header_match.group("old_path")
                path = header_match.group("new_path")
            if git_style:
                continue

        if not in_hunk:
            if line.startswith("--- "):
                source = _strip_diff_path(line[4:])
                if source != DEV_NULL:
                    old_path = source
                continue
            if line.startswith("+++ "):
                target = _strip_diff_path(line[4:])
                path = None if target == DEV_NULL else target
                continue
            if not line.startswith("@@"):
                continue
            in_hunk = True
        body.append(line)

    flush()
    return tuple(patches)
