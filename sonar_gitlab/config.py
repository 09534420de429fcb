"""Run configuration loaded from the environment, a .env file and CLI overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_GITLAB_URL = "https://gitlab.com"
DEFAULT_SONAR_BASE_URL = "http://localhost:9000/"
DEFAULT_MAX_GLOBAL_ISSUES = 10

GITLAB_URL_ENV_VAR = "SONAR_GITLAB_URL"
GITLAB_USER_TOKEN_ENV_VAR = "SONAR_GITLAB_USER_TOKEN"
GITLAB_TOKEN_FALLBACK_ENV_VAR = "GITLAB_TOKEN"
GITLAB_PROJECT_ID_ENV_VAR = "SONAR_GITLAB_PROJECT_ID"
GITLAB_COMMIT_SHA_ENV_VAR = "SONAR_GITLAB_COMMIT_SHA"
GITLAB_REF_NAME_ENV_VAR = "SONAR_GITLAB_REF_NAME"
GITLAB_IGNORE_CERT_ENV_VAR = "SONAR_GITLAB_IGNORE_CERTIFICATE"
GITLAB_MAX_GLOBAL_ISSUES_ENV_VAR = "SONAR_GITLAB_MAX_GLOBAL_ISSUES"
GITLAB_IGNORE_FILE_ENV_VAR = "SONAR_GITLAB_IGNORE_FILE"
SONAR_HOST_URL_ENV_VAR = "SONAR_HOST_URL"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ReviewConfigError(ValueError):
    """Raised when configuration values are missing or invalid."""


class ReviewConfig(BaseModel):
    """Settings for one publishing run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    gitlab_url: str = Field(default=DEFAULT_GITLAB_URL, min_length=1)
    user_token: str | None = None
    project_id: str | None = None
    commit_sha: str | None = None
    ref_name: str | None = None
    ignore_certificate: bool = False
    max_global_issues: int = Field(default=DEFAULT_MAX_GLOBAL_ISSUES, ge=0)
    ignore_file_not_in_commit: bool = True
    sonar_base_url: str = Field(default=DEFAULT_SONAR_BASE_URL, min_length=1)

    @field_validator("sonar_base_url")
    @classmethod
    def ensure_trailing_slash(cls, value: str) -> str:
        """Rule links are built by appending paths to the base URL."""
        return value if value.endswith("/") else f"{value}/"

    @field_validator("gitlab_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def is_enabled(self) -> bool:
        """Publishing is enabled once the commit, its ref and the project are known."""
        return bool(self.commit_sha and self.ref_name and self.project_id)

    def require_publishing_settings(self) -> None:
        """Fail fast when a setting needed to talk to GitLab is missing."""
        required = {
            GITLAB_USER_TOKEN_ENV_VAR: self.user_token,
            GITLAB_PROJECT_ID_ENV_VAR: self.project_id,
            GITLAB_COMMIT_SHA_ENV_VAR: self.commit_sha,
            GITLAB_REF_NAME_ENV_VAR: self.ref_name,
        }
        missing = [name for name, value in required.items() if not value]
        if missing:
            raise ReviewConfigError(f"Missing required setting(s): {', '.join(missing)}.")


def _parse_bool(name: str, raw_value: str) -> bool:
    normalized = raw_value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ReviewConfigError(f"{name} must be a boolean, got '{raw_value}'.")


def _parse_int(name: str, raw_value: str) -> int:
    try:
        return int(raw_value)
    except ValueError as error:
        raise ReviewConfigError(f"{name} must be an integer, got '{raw_value}'.") from error


def _read_environment() -> dict[str, Any]:
    """Collect configuration values present in the environment."""
    values: dict[str, Any] = {}
    string_settings = {
        "gitlab_url": GITLAB_URL_ENV_VAR,
        "project_id": GITLAB_PROJECT_ID_ENV_VAR,
        "commit_sha": GITLAB_COMMIT_SHA_ENV_VAR,
        "ref_name": GITLAB_REF_NAME_ENV_VAR,
        "sonar_base_url": SONAR_HOST_URL_ENV_VAR,
    }
    for field_name, env_var in string_settings.items():
        raw_value = os.getenv(env_var)
        if raw_value:
            values[field_name] = raw_value

    token = os.getenv(GITLAB_USER_TOKEN_ENV_VAR) or os.getenv(GITLAB_TOKEN_FALLBACK_ENV_VAR)
    if token:
        values["user_token"] = token

    for field_name, env_var in (
        ("ignore_certificate", GITLAB_IGNORE_CERT_ENV_VAR),
        ("ignore_file_not_in_commit", GITLAB_IGNORE_FILE_ENV_VAR),
    ):
        raw_value = os.getenv(env_var)
        if raw_value:
            values[field_name] = _parse_bool(env_var, raw_value)

    raw_max_issues = os.getenv(GITLAB_MAX_GLOBAL_ISSUES_ENV_VAR)
    if raw_max_issues:
        values["max_global_issues"] = _parse_int(GITLAB_MAX_GLOBAL_ISSUES_ENV_VAR, raw_max_issues)
    return values


def load_review_config(**overrides: Any) -> ReviewConfig:
    """Build configuration from .env, the environment and explicit overrides.

    Overrides set to ``None`` are ignored so CLI options can be passed through as-is.
    """
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    values = _read_environment()
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return ReviewConfig.model_validate(values)
    except ValidationError as error:
        raise ReviewConfigError(f"Invalid configuration: {error}") from error
