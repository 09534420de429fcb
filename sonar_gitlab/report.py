"""Aggregation of findings into the global commit comment and commit status."""

from __future__ import annotations

from sonar_gitlab.output import MarkdownRenderer, glyph_for, label_for
from sonar_gitlab.schema import SEVERITIES_MOST_SEVERE_FIRST, CommitStatus, Finding, Severity

WATCH_COMMENTS_HINT = "Watch the comments in this conversation to review them."
NOT_REPORTED_NOTE = (
    "Note: the following issues could not be reported as comments because they are "
    "located on lines that are not displayed in this commit:"
)


def _pluralize_issues(count: int) -> str:
    return f"{count} issue" if count == 1 else f"{count} issues"


class GlobalReport:
    """Severity counters and not-inline findings for one analysis run.

    ``process`` is called once per finding, in display order. Once any summary
    has been read the report is frozen and further ``process`` calls fail.
    """

    def __init__(self, max_global_issues: int, renderer: MarkdownRenderer) -> None:
        if max_global_issues < 0:
            raise ValueError("max_global_issues must be zero or positive.")
        self.max_global_issues = max_global_issues
        self.renderer = renderer
        self._counts = [0] * len(Severity)
        self._not_reported: dict[Severity, list[str]] = {}
        self._not_reported_count = 0
        self._finalized = False

    def process(self, finding: Finding, link: str | None, reported_inline: bool) -> None:
        """Count a finding and keep it for the global comment when not shown inline."""
        if self._finalized:
            raise RuntimeError("Cannot process findings after the report has been read.")

        self._counts[finding.severity] += 1
        if reported_inline:
            return

        self._not_reported_count += 1
        rendered = self.renderer.global_issue(
            finding.severity,
            finding.message,
            finding.rule_key,
            link,
            finding.component_key,
        )
        self._not_reported.setdefault(finding.severity, []).append(f"* {rendered}")

    @property
    def counts(self) -> tuple[int, ...]:
        """Finding counts indexed by severity value."""
        return tuple(self._counts)

    def count(self, severity: Severity) -> int:
        return self._counts[severity]

    @property
    def total_count(self) -> int:
        return sum(self._counts)

    @property
    def overflow_count(self) -> int:
        """Number of findings that could not be anchored to a diff line."""
        return self._not_reported_count

    def overflow_lines(self, severity: Severity) -> tuple[str, ...]:
        return tuple(self._not_reported.get(severity, ()))

    def has_new_issue(self) -> bool:
        self._finalized = True
        return self.total_count > 0

    def status(self) -> CommitStatus:
        """Fail the commit when any blocker or critical finding was reported."""
        self._finalized = True
        if self.count(Severity.BLOCKER) + self.count(Severity.CRITICAL) > 0:
            return CommitStatus.FAILED
        return CommitStatus.SUCCESS

    def global_summary_text(self) -> str:
        """Render the markdown body of the global commit comment."""
        self._finalized = True
        parts = [self._counts_markdown()]
        if self.has_new_issue():
            parts.append(f"\n{WATCH_COMMENTS_HINT}")
        if self._not_reported_count > 0:
            parts.append(f"\n{NOT_REPORTED_NOTE}\n")
            parts.append(self._not_reported_markdown())
        return "".join(parts)

    def _counts_markdown(self) -> str:
        total = self.total_count
        if total == 0:
            return "SonarQube analysis reported no issues."

        lines = [f"SonarQube analysis reported {_pluralize_issues(total)}:\n"]
        for severity in SEVERITIES_MOST_SEVERE_FIRST:
            issue_count = self.count(severity)
            if issue_count > 0:
                lines.append(f"* {glyph_for(severity)} {issue_count} {label_for(severity)}\n")
        return "".join(lines)

    def _not_reported_markdown(self) -> str:
        shown: list[str] = []
        for severity in SEVERITIES_MOST_SEVERE_FIRST:
            for rendered in self._not_reported.get(severity, ()):
                if len(shown) == self.max_global_issues:
                    break
                shown.append(f"{rendered}\n")

        hidden_count = self._not_reported_count - len(shown)
        if hidden_count > 0:
            shown.append(f"* ... {hidden_count} more\n")
        return "".join(shown)

    def status_description_text(self) -> str:
        """Render the short description attached to the commit status."""
        self._finalized = True
        total = self.total_count
        if total == 0:
            return "SonarQube reported no issues"

        description = f"SonarQube reported {_pluralize_issues(total)},"
        blocking = [
            (severity, self.count(severity))
            for severity in (Severity.CRITICAL, Severity.BLOCKER)
            if self.count(severity) > 0
        ]
        if not blocking:
            return f"{description} no critical nor blocker"

        clauses = [
            f"{'with' if position == 0 else 'and'} {issue_count} {label_for(severity)}"
            for position, (severity, issue_count) in enumerate(blocking)
        ]
        return f"{description} {' '.join(clauses)}"
