"""Finding and severity contracts shared by the review pipeline."""

from __future__ import annotations

import json
from enum import IntEnum, StrEnum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class Severity(IntEnum):
    """Sonar issue severities, ordered from least to most severe.

    The value doubles as the counter index used by the report aggregator.
    """

    INFO = 0
    MINOR = 1
    MAJOR = 2
    CRITICAL = 3
    BLOCKER = 4

    @property
    def label(self) -> str:
        """Return the lowercase display word for this severity."""
        return self.name.lower()

    @classmethod
    def parse(cls, value: object) -> Severity:
        """Parse a severity from an enum member or a Sonar label such as ``"MAJOR"``."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool) and value in cls._value2member_map_:
            return cls(value)
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise ValueError(f"Unknown severity '{value}'. Expected one of: {_SEVERITY_NAMES}.")


_SEVERITY_NAMES = ", ".join(severity.name for severity in Severity)

SEVERITIES_MOST_SEVERE_FIRST: tuple[Severity, ...] = tuple(sorted(Severity, reverse=True))


class CommitStatus(StrEnum):
    """Commit status values published to GitLab."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class Finding(BaseModel):
    """One static-analysis issue raised against the analysed commit."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    severity: Severity
    message: str
    rule_key: str = Field(min_length=1)
    component_key: str = Field(min_length=1)
    file_path: str | None = None
    line: int | None = Field(default=None, ge=1)
    is_new: bool = True

    @field_validator("severity", mode="before")
    @classmethod
    def parse_severity(cls, value: object) -> Severity:
        """Accept Sonar severity labels as well as enum members."""
        return Severity.parse(value)


class FindingsReportError(ValueError):
    """Raised when a Sonar issues report cannot be read."""


class SonarReportIssue(BaseModel):
    """Issue entry of a Sonar preview/issues-mode JSON report."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    component: str
    message: str = ""
    severity: Severity
    rule: str
    line: int | None = None
    is_new: bool = Field(default=True, alias="isNew")

    @field_validator("severity", mode="before")
    @classmethod
    def parse_severity(cls, value: object) -> Severity:
        """Accept Sonar severity labels."""
        return Severity.parse(value)


class SonarReportComponent(BaseModel):
    """Component entry of a Sonar JSON report; files carry a ``path``."""

    model_config = ConfigDict(extra="ignore")

    key: str
    path: str | None = None


class SonarIssuesReport(BaseModel):
    """Sonar preview/issues-mode JSON report."""

    model_config = ConfigDict(extra="ignore")

    issues: list[SonarReportIssue] = Field(default_factory=list)
    components: list[SonarReportComponent] = Field(default_factory=list)

    def to_findings(self) -> list[Finding]:
        """Convert report issues to findings, resolving file paths from components."""
        paths = {component.key: component.path for component in self.components}
        return [
            Finding(
                severity=issue.severity,
                message=issue.message,
                rule_key=issue.rule,
                component_key=issue.component,
                file_path=paths.get(issue.component),
                line=issue.line,
                is_new=issue.is_new,
            )
            for issue in self.issues
        ]


def load_findings_report(path: Path | str) -> list[Finding]:
    """Read a Sonar JSON issues report and return its findings."""
    report_path = Path(path)
    try:
        payload = json.loads(report_path.read_text(encoding="utf-8"))
    except OSError as error:
        raise FindingsReportError(f"Unable to read findings report '{report_path}'.") from error
    except json.JSONDecodeError as error:
        raise FindingsReportError(
            f"Findings report '{report_path}' is not valid JSON: {error.msg}."
        ) from error

    try:
        return SonarIssuesReport.model_validate(payload).to_findings()
    except ValidationError as error:
        raise FindingsReportError(
            f"Findings report '{report_path}' has an unexpected shape: {error}"
        ) from error
