"""Unit tests for run configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from sonar_gitlab.config import ReviewConfig, ReviewConfigError, load_review_config


@pytest.mark.unit
def test_defaults_without_environment(isolated_env: Path) -> None:
    config = load_review_config()

    assert config.gitlab_url == "https://gitlab.com"
    assert config.user_token is None
    assert config.max_global_issues == 10
    assert config.ignore_file_not_in_commit is True
    assert config.ignore_certificate is False
    assert config.sonar_base_url == "http://localhost:9000/"
    assert config.is_enabled is False


@pytest.mark.unit
def test_environment_values_are_parsed(
    isolated_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("SONAR_GITLAB_URL", "https://gitlab.example.com/")
    monkeypatch.setenv("SONAR_GITLAB_USER_TOKEN", "secret")
    monkeypatch.setenv("SONAR_GITLAB_PROJECT_ID", "acme/rocket")
    monkeypatch.setenv("SONAR_GITLAB_COMMIT_SHA", "abc123")
    monkeypatch.setenv("SONAR_GITLAB_REF_NAME", "main")
    monkeypatch.setenv("SONAR_GITLAB_IGNORE_CERTIFICATE", "yes")
    monkeypatch.setenv("SONAR_GITLAB_MAX_GLOBAL_ISSUES", "3")
    monkeypatch.setenv("SONAR_GITLAB_IGNORE_FILE", "false")
    monkeypatch.setenv("SONAR_HOST_URL", "https://sonar.example.com")

    config = load_review_config()

    assert config.gitlab_url == "https://gitlab.example.com"
    assert config.user_token == "secret"
    assert config.project_id == "acme/rocket"
    assert config.commit_sha == "abc123"
    assert config.ref_name == "main"
    assert config.ignore_certificate is True
    assert config.max_global_issues == 3
    assert config.ignore_file_not_in_commit is False
    assert config.sonar_base_url == "https://sonar.example.com/"
    assert config.is_enabled is True


@pytest.mark.unit
def test_token_falls_back_to_generic_variable(
    isolated_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("GITLAB_TOKEN", "fallback")

    assert load_review_config().user_token == "fallback"

    monkeypatch.setenv("SONAR_GITLAB_USER_TOKEN", "preferred")

    assert load_review_config().user_token == "preferred"


@pytest.mark.unit
def test_dotenv_file_is_loaded_without_overriding_environment(
    isolated_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    (isolated_env / ".env").write_text(
        "SONAR_GITLAB_PROJECT_ID=acme/from-dotenv\nSONAR_GITLAB_REF_NAME=develop\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("SONAR_GITLAB_REF_NAME", "main")

    config = load_review_config()

    assert config.project_id == "acme/from-dotenv"
    assert config.ref_name == "main"


@pytest.mark.unit
def test_explicit_overrides_win_and_none_is_ignored(
    isolated_env: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("SONAR_GITLAB_PROJECT_ID", "acme/rocket")
    monkeypatch.setenv("SONAR_GITLAB_MAX_GLOBAL_ISSUES", "3")

    config = load_review_config(project_id=None, max_global_issues=0, commit_sha="def456")

    assert config.project_id == "acme/rocket"
    assert config.max_global_issues == 0
    assert config.commit_sha == "def456"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("env_var", "raw_value", "message"),
    [
        ("SONAR_GITLAB_IGNORE_CERTIFICATE", "sometimes", "must be a boolean"),
        ("SONAR_GITLAB_MAX_GLOBAL_ISSUES", "ten", "must be an integer"),
        ("SONAR_GITLAB_MAX_GLOBAL_ISSUES", "-1", "Invalid configuration"),
    ],
)
def test_invalid_environment_values_fail(
    isolated_env: Path,
    monkeypatch: pytest.MonkeyPatch,
    env_var: str,
    raw_value: str,
    message: str,
) -> None:
    monkeypatch.setenv(env_var, raw_value)

    with pytest.raises(ReviewConfigError, match=message):
        load_review_config()


@pytest.mark.unit
def test_require_publishing_settings_lists_missing_names() -> None:
    config = ReviewConfig(project_id="acme/rocket")

    with pytest.raises(ReviewConfigError) as exc_info:
        config.require_publishing_settings()

    assert str(exc_info.value) == (
        "Missing required setting(s): SONAR_GITLAB_USER_TOKEN, "
        "SONAR_GITLAB_COMMIT_SHA, SONAR_GITLAB_REF_NAME."
    )


@pytest.mark.unit
def test_require_publishing_settings_accepts_complete_config() -> None:
    config = ReviewConfig(
        user_token="secret",
        project_id="acme/rocket",
        commit_sha="abc123",
        ref_name="main",
    )

    config.require_publishing_settings()
    assert config.is_enabled is True
