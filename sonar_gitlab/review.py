"""Commit review orchestration: index the diff, place findings, publish results."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar

import httpx

from sonar_gitlab.config import ReviewConfig
from sonar_gitlab.diff_positions import FilePatch, PositionIndex, build_position_index
from sonar_gitlab.gitlab_client import GitLabApiError
from sonar_gitlab.ordering import sort_findings
from sonar_gitlab.output import MarkdownRenderer
from sonar_gitlab.report import GlobalReport
from sonar_gitlab.schema import CommitStatus, Finding

logger = logging.getLogger(__name__)

T = TypeVar("T")

PENDING_DESCRIPTION = "SonarQube analysis in progress"

LinkResolver = Callable[[str, int | None], str | None]


class CommitPublishError(RuntimeError):
    """Raised when review output cannot be published to the commit."""


class CommitPublisher(Protocol):
    """Capabilities the review job needs from the code-hosting service."""

    def fetch_file_patches(self) -> Sequence[FilePatch]:
        """Return the per-file patches of the analysed commit."""

    def blob_url(self, path: str, line: int | None) -> str | None:
        """Return a web link to a file line of the analysed commit, if any."""

    def set_commit_status(self, status: CommitStatus, description: str) -> None:
        """Create or update the analysis status of the commit."""

    def add_review_comment(self, path: str, line: int, body: str) -> None:
        """Comment on one new-revision line of the commit."""

    def add_global_comment(self, body: str) -> None:
        """Comment on the commit as a whole."""


@dataclass(frozen=True, slots=True)
class CommitReview:
    """Everything a run publishes, computed before any write happens."""

    inline_comments: dict[tuple[str, int], str]
    global_summary: str
    status: CommitStatus
    status_description: str
    has_new_issue: bool
    findings_reported: int
    overflow_count: int


def filter_findings(
    findings: Iterable[Finding],
    index: PositionIndex,
    *,
    ignore_file_not_in_commit: bool,
) -> list[Finding]:
    """Keep new findings, dropping those on files outside the commit when asked to."""
    kept: list[Finding] = []
    for finding in findings:
        if not finding.is_new:
            continue
        if (
            ignore_file_not_in_commit
            and finding.file_path is not None
            and not index.has_file(finding.file_path)
        ):
            continue
        kept.append(finding)
    return kept


def _inline_location(finding: Finding, index: PositionIndex) -> tuple[str, int] | None:
    if finding.file_path is None or finding.line is None:
        return None
    if not index.has_line(finding.file_path, finding.line):
        return None
    return finding.file_path, finding.line


def build_commit_review(
    findings: Iterable[Finding],
    index: PositionIndex,
    config: ReviewConfig,
    *,
    renderer: MarkdownRenderer | None = None,
    link_for: LinkResolver | None = None,
) -> CommitReview:
    """Place each finding inline or in the global summary and render the results."""
    renderer = renderer or MarkdownRenderer(config.sonar_base_url)
    report = GlobalReport(config.max_global_issues, renderer)
    lines_by_location: dict[tuple[str, int], list[str]] = {}

    selected = sort_findings(
        filter_findings(
            findings,
            index,
            ignore_file_not_in_commit=config.ignore_file_not_in_commit,
        )
    )
    for finding in selected:
        location = _inline_location(finding, index)
        if location is not None:
            lines_by_location.setdefault(location, []).append(
                renderer.inline_issue(finding.severity, finding.message, finding.rule_key)
            )

        link = None
        if link_for is not None and finding.file_path is not None:
            link = link_for(finding.file_path, finding.line)
        report.process(finding, link, location is not None)

    return CommitReview(
        inline_comments={
            location: "\n".join(lines) for location, lines in lines_by_location.items()
        },
        global_summary=report.global_summary_text(),
        status=report.status(),
        status_description=report.status_description_text(),
        has_new_issue=report.has_new_issue(),
        findings_reported=len(selected),
        overflow_count=report.overflow_count,
    )


class CommitReviewJob:
    """Run the two publishing steps around an analysis.

    ``start`` indexes the commit diff and marks the commit as pending;
    ``finish`` places the analysis findings and publishes comments and status.
    """

    def __init__(
        self,
        config: ReviewConfig,
        publisher: CommitPublisher,
        renderer: MarkdownRenderer | None = None,
    ) -> None:
        self.config = config
        self.publisher = publisher
        self.renderer = renderer or MarkdownRenderer(config.sonar_base_url)
        self.index: PositionIndex | None = None

    def start(self) -> PositionIndex:
        patches = _publishing(
            "Unable to fetch commit diff",
            self.publisher.fetch_file_patches,
        )
        self.index = build_position_index(patches)
        logger.info("Commit diff covers %d file(s)", len(self.index))
        self._set_status(CommitStatus.PENDING, PENDING_DESCRIPTION)
        return self.index

    def finish(self, findings: Iterable[Finding]) -> CommitReview:
        if self.index is None:
            raise RuntimeError("CommitReviewJob.start() must run before finish().")

        review = build_commit_review(
            findings,
            self.index,
            self.config,
            renderer=self.renderer,
            link_for=self.publisher.blob_url,
        )
        logger.info(
            "%d finding(s) reported: %d inline comment(s), %d in global summary",
            review.findings_reported,
            len(review.inline_comments),
            review.overflow_count,
        )
        for (path, line), body in review.inline_comments.items():
            _publishing(
                f"Unable to create or update review comment in file {path} at line {line}",
                self.publisher.add_review_comment,
                path,
                line,
                body,
            )
        if review.has_new_issue:
            _publishing(
                "Unable to comment the commit",
                self.publisher.add_global_comment,
                review.global_summary,
            )
        self._set_status(review.status, review.status_description)
        return review

    def _set_status(self, status: CommitStatus, description: str) -> None:
        _publishing(
            "Unable to update commit status",
            self.publisher.set_commit_status,
            status,
            description,
        )


def _publishing(message: str, operation: Callable[..., T], *args: object) -> T:
    """Call a publisher operation, wrapping transport and API failures."""
    try:
        return operation(*args)
    except (GitLabApiError, httpx.HTTPError) as error:
        raise CommitPublishError(f"{message}: {error}") from error
