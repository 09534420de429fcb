"""Logging setup and run telemetry."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sonar_gitlab.review import CommitReview

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(verbose: bool = False) -> None:
    """Initialise root logging once per process."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)


@dataclass(slots=True)
class RunTelemetry:
    """Counters summarising one publishing run."""

    files_in_diff: int = 0
    findings_received: int = 0
    findings_reported: int = 0
    inline_comments: int = 0
    overflow_count: int = 0
    status: str = ""

    def record_review(self, review: CommitReview) -> None:
        self.findings_reported = review.findings_reported
        self.inline_comments = len(review.inline_comments)
        self.overflow_count = review.overflow_count
        self.status = str(review.status)

    def summary_line(self) -> str:
        return (
            f"files_in_diff={self.files_in_diff} findings_received={self.findings_received} "
            f"findings_reported={self.findings_reported} inline_comments={self.inline_comments} "
            f"overflow={self.overflow_count} status={self.status}"
        )
