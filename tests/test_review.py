"""Unit tests for placing findings and driving the publishing steps."""

from __future__ import annotations

from collections.abc import Sequence

import httpx
import pytest
from sonar_gitlab.config import ReviewConfig
from sonar_gitlab.diff_positions import FilePatch, build_position_index
from sonar_gitlab.gitlab_client import GitLabApiError
from sonar_gitlab.review import (
    PENDING_DESCRIPTION,
    CommitPublishError,
    CommitReviewJob,
    build_commit_review,
    filter_findings,
)
from sonar_gitlab.schema import CommitStatus, Finding, Severity

RULE_LINK = "[:blue_book:](https://sonar.example.com/coding_rules#rule_key=python%3AS1)"
PATCHES = [
    FilePatch(path="src/a.py", patch="@@ -1,3 +1,3 @@\n one\n+two\n three"),
    FilePatch(path="src/b.py", patch=None),
]


def make_config(**overrides: object) -> ReviewConfig:
    values: dict[str, object] = {
        "user_token": "token",
        "project_id": "acme/rocket",
        "commit_sha": "abc123",
        "ref_name": "main",
        "sonar_base_url": "https://sonar.example.com/",
    }
    values.update(overrides)
    return ReviewConfig.model_validate(values)


def make_finding(
    severity: Severity,
    message: str,
    *,
    file_path: str | None = "src/a.py",
    line: int | None = 2,
    is_new: bool = True,
) -> Finding:
    component_key = "acme:rocket" if file_path is None else f"acme:rocket:{file_path}"
    return Finding(
        severity=severity,
        message=message,
        rule_key="python:S1",
        component_key=component_key,
        file_path=file_path,
        line=line,
        is_new=is_new,
    )


def make_findings() -> list[Finding]:
    return [
        make_finding(Severity.MAJOR, "Major on a visible line"),
        make_finding(Severity.BLOCKER, "Blocker on the same line"),
        make_finding(Severity.MINOR, "Minor on a hidden line", file_path="src/b.py", line=5),
        make_finding(Severity.INFO, "Info outside the commit", file_path="src/c.py", line=1),
        make_finding(Severity.CRITICAL, "Old critical", is_new=False),
        make_finding(Severity.MAJOR, "Project level", file_path=None, line=None),
    ]


def link_for(path: str, line: int | None) -> str:
    return f"https://gitlab.example.com/acme/rocket/blob/abc123/{path}#L{line}"


class FakePublisher:
    """Publisher double that records every call."""

    def __init__(self, patches: Sequence[FilePatch] = PATCHES, fail_on: str | None = None) -> None:
        self.patches = patches
        self.fail_on = fail_on
        self.calls: list[tuple[object, ...]] = []

    def _maybe_fail(self, operation: str) -> None:
        if operation == self.fail_on:
            raise httpx.ConnectError("connection refused")

    def fetch_file_patches(self) -> Sequence[FilePatch]:
        self._maybe_fail("fetch_file_patches")
        self.calls.append(("fetch_file_patches",))
        return self.patches

    def blob_url(self, path: str, line: int | None) -> str | None:
        return link_for(path, line)

    def set_commit_status(self, status: CommitStatus, description: str) -> None:
        self._maybe_fail("set_commit_status")
        self.calls.append(("set_commit_status", status, description))

    def add_review_comment(self, path: str, line: int, body: str) -> None:
        self._maybe_fail("add_review_comment")
        self.calls.append(("add_review_comment", path, line, body))

    def add_global_comment(self, body: str) -> None:
        self._maybe_fail("add_global_comment")
        self.calls.append(("add_global_comment", body))


@pytest.mark.unit
def test_filter_findings_drops_old_findings_and_files_outside_commit() -> None:
    index = build_position_index(PATCHES)

    kept = filter_findings(make_findings(), index, ignore_file_not_in_commit=True)
    kept_all_files = filter_findings(make_findings(), index, ignore_file_not_in_commit=False)

    assert [finding.message for finding in kept] == [
        "Major on a visible line",
        "Blocker on the same line",
        "Minor on a hidden line",
        "Project level",
    ]
    assert "Info outside the commit" in [finding.message for finding in kept_all_files]
    assert "Old critical" not in [finding.message for finding in kept_all_files]


@pytest.mark.unit
def test_build_commit_review_places_findings_inline_or_in_summary() -> None:
    review = build_commit_review(
        make_findings(),
        build_position_index(PATCHES),
        make_config(),
        link_for=link_for,
    )

    assert review.inline_comments == {
        ("src/a.py", 2): (
            f":no_entry: Blocker on the same line {RULE_LINK}\n"
            f":warning: Major on a visible line {RULE_LINK}"
        )
    }
    assert review.status == CommitStatus.FAILED
    assert review.status_description == "SonarQube reported 4 issues, with 1 blocker"
    assert review.has_new_issue is True
    assert review.findings_reported == 4
    assert review.overflow_count == 2
    assert (
        "* :warning: Project level (acme:rocket) " f"{RULE_LINK}\n"
    ) in review.global_summary
    assert (
        "* :arrow_down_small: [Minor on a hidden line]"
        "(https://gitlab.example.com/acme/rocket/blob/abc123/src/b.py#L5) "
        f"{RULE_LINK}\n"
    ) in review.global_summary


@pytest.mark.unit
def test_findings_outside_commit_go_to_summary_when_kept() -> None:
    review = build_commit_review(
        [make_finding(Severity.INFO, "Info outside the commit", file_path="src/c.py", line=1)],
        build_position_index(PATCHES),
        make_config(ignore_file_not_in_commit=False),
    )

    assert review.inline_comments == {}
    assert review.overflow_count == 1
    assert "Info outside the commit (acme:rocket:src/c.py)" in review.global_summary
    assert review.status == CommitStatus.SUCCESS


@pytest.mark.unit
def test_job_publishes_pending_then_comments_then_final_status() -> None:
    publisher = FakePublisher()
    job = CommitReviewJob(make_config(), publisher)

    index = job.start()
    review = job.finish(make_findings())

    assert index.paths == ("src/a.py", "src/b.py")
    assert [call[0] for call in publisher.calls] == [
        "fetch_file_patches",
        "set_commit_status",
        "add_review_comment",
        "add_global_comment",
        "set_commit_status",
    ]
    assert publisher.calls[1] == ("set_commit_status", CommitStatus.PENDING, PENDING_DESCRIPTION)
    assert publisher.calls[2][1:3] == ("src/a.py", 2)
    assert publisher.calls[3] == ("add_global_comment", review.global_summary)
    assert publisher.calls[4] == (
        "set_commit_status",
        CommitStatus.FAILED,
        "SonarQube reported 4 issues, with 1 blocker",
    )


@pytest.mark.unit
def test_job_without_findings_skips_global_comment() -> None:
    publisher = FakePublisher()
    job = CommitReviewJob(make_config(), publisher)

    job.start()
    review = job.finish([])

    assert review.has_new_issue is False
    assert publisher.calls[-1] == (
        "set_commit_status",
        CommitStatus.SUCCESS,
        "SonarQube reported no issues",
    )
    assert "add_global_comment" not in [call[0] for call in publisher.calls]


@pytest.mark.unit
def test_finish_before_start_fails() -> None:
    job = CommitReviewJob(make_config(), FakePublisher())

    with pytest.raises(RuntimeError):
        job.finish([])


@pytest.mark.unit
@pytest.mark.parametrize(
    ("fail_on", "message"),
    [
        ("add_global_comment", "Unable to comment the commit: connection refused"),
        (
            "add_review_comment",
            "Unable to create or update review comment in file src/a.py at line 2: "
            "connection refused",
        ),
    ],
)
def test_publishing_failures_are_wrapped(fail_on: str, message: str) -> None:
    job = CommitReviewJob(make_config(), FakePublisher(fail_on=fail_on))
    job.start()

    with pytest.raises(CommitPublishError) as exc_info:
        job.finish(make_findings())

    assert str(exc_info.value) == message
    assert isinstance(exc_info.value.__cause__, httpx.ConnectError)


@pytest.mark.unit
def test_status_and_diff_failures_are_wrapped() -> None:
    with pytest.raises(CommitPublishError, match="^Unable to fetch commit diff: "):
        CommitReviewJob(make_config(), FakePublisher(fail_on="fetch_file_patches")).start()

    with pytest.raises(CommitPublishError, match="^Unable to update commit status: "):
        CommitReviewJob(make_config(), FakePublisher(fail_on="set_commit_status")).start()


@pytest.mark.unit
def test_api_errors_are_wrapped() -> None:
    class RejectingPublisher(FakePublisher):
        def set_commit_status(self, status: CommitStatus, description: str) -> None:
            raise GitLabApiError("forbidden", status_code=403, endpoint="/projects/1/statuses/abc")

    with pytest.raises(CommitPublishError) as exc_info:
        CommitReviewJob(make_config(), RejectingPublisher()).start()

    assert str(exc_info.value) == "Unable to update commit status: forbidden"
