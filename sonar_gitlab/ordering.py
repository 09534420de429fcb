"""Deterministic ordering of findings: most severe first, grouped by file and line."""

from __future__ import annotations

from collections.abc import Iterable
from functools import cmp_to_key

from sonar_gitlab.schema import Finding


def _compare_lines(left: int | None, right: int | None) -> int:
    """Compare optional line numbers; a missing line sorts first."""
    if left == right:
        return 0
    if left is None:
        return -1
    if right is None:
        return 1
    return -1 if left < right else 1


def compare_findings(left: Finding, right: Finding) -> int:
    """Return -1, 0 or 1 ordering two findings for display."""
    if left.severity != right.severity:
        return -1 if left.severity > right.severity else 1
    if left.component_key != right.component_key:
        return -1 if left.component_key < right.component_key else 1
    return _compare_lines(left.line, right.line)


finding_sort_key = cmp_to_key(compare_findings)


def sort_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Return findings in display order; ties keep their input order."""
    return sorted(findings, key=finding_sort_key)
