"""Markdown rendering of findings for GitLab commit comments."""

from __future__ import annotations

from urllib.parse import quote_plus

from sonar_gitlab.schema import Severity

UNKNOWN_SEVERITY_GLYPH = ":grey_question:"
UNKNOWN_SEVERITY_LABEL = "undefined"
RULE_LINK_GLYPH = ":blue_book:"

SEVERITY_GLYPHS: dict[Severity, str] = {
    Severity.BLOCKER: ":no_entry:",
    Severity.CRITICAL: ":no_entry_sign:",
    Severity.MAJOR: ":warning:",
    Severity.MINOR: ":arrow_down_small:",
    Severity.INFO: ":information_source:",
}


def glyph_for(severity: object) -> str:
    """Return the emoji code shown in front of a finding of this severity."""
    if not isinstance(severity, Severity):
        return UNKNOWN_SEVERITY_GLYPH
    return SEVERITY_GLYPHS.get(severity, UNKNOWN_SEVERITY_GLYPH)


def label_for(severity: object) -> str:
    """Return the lowercase word used for a severity in summaries."""
    if not isinstance(severity, Severity):
        return UNKNOWN_SEVERITY_LABEL
    return severity.label


class MarkdownRenderer:
    """Render inline and global finding lines with links to Sonar rule pages."""

    def __init__(self, base_url: str) -> None:
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"

    def rule_link(self, rule_key: str) -> str:
        """Return a markdown link to the rule description on the Sonar server."""
        target = f"{self.base_url}coding_rules#rule_key={quote_plus(rule_key)}"
        return f"[{RULE_LINK_GLYPH}]({target})"

    def inline_issue(self, severity: Severity, message: str, rule_key: str) -> str:
        """Render one finding for a comment anchored to a diff line."""
        return f"{glyph_for(severity)} {message} {self.rule_link(rule_key)}"

    def global_issue(
        self,
        severity: Severity,
        message: str,
        rule_key: str,
        link: str | None,
        component_key: str,
    ) -> str:
        """Render one finding for the global summary comment."""
        if link is not None:
            described = f"[{message}]({link})"
        else:
            described = f"{message} ({component_key})"
        return f"{glyph_for(severity)} {described} {self.rule_link(rule_key)}"
