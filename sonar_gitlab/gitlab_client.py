"""GitLab REST API wrapper used to read commit diffs and publish review results."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from sonar_gitlab.config import GITLAB_USER_TOKEN_ENV_VAR, ReviewConfig
from sonar_gitlab.diff_positions import FilePatch
from sonar_gitlab.schema import CommitStatus

logger = logging.getLogger(__name__)

GITLAB_API_PATH = "/api/v4"
GITLAB_MAX_RETRIES = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5
DEFAULT_PER_PAGE = 100
COMMIT_STATUS_CONTEXT = "sonarqube"
NEXT_PAGE_HEADER = "X-Next-Page"


class GitLabAuthError(RuntimeError):
    """Raised when required GitLab authentication is missing."""


class GitLabInputError(ValueError):
    """Raised when project, commit or path input values are invalid."""


class ProjectResolutionError(RuntimeError):
    """Raised when the configured project id matches no project or several."""


class GitLabApiError(RuntimeError):
    """Raised when a GitLab API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class GitLabRateLimitError(GitLabApiError):
    """Raised when GitLab API rate limiting prevents request completion."""


@dataclass(frozen=True, slots=True)
class GitLabProject:
    """Project fields used to match the configured project id and build links."""

    id: int
    path_with_namespace: str
    name_with_namespace: str
    web_url: str
    http_url_to_repo: str | None
    ssh_url_to_repo: str | None

    def matches(self, project_id: str) -> bool:
        """Return whether the configured id designates this project."""
        candidates = (
            str(self.id),
            self.path_with_namespace,
            self.http_url_to_repo,
            self.ssh_url_to_repo,
            self.web_url,
            self.name_with_namespace,
        )
        return project_id in candidates


@dataclass(frozen=True, slots=True)
class CommitDiff:
    """One file entry of a GitLab commit diff."""

    old_path: str
    new_path: str
    diff: str | None
    new_file: bool = False
    renamed_file: bool = False
    deleted_file: bool = False

    def to_file_patch(self) -> FilePatch:
        return FilePatch(path=self.new_path, patch=self.diff)


def _ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise GitLabApiError(
            f"Expected JSON object for {context}.",
            status_code=500,
            endpoint=context,
        )
    return value


def _require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise GitLabApiError(
            f"Expected string field '{key}' in GitLab response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _optional_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str | None:
    """Read an optional string field from payload."""
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise GitLabApiError(
            f"Expected '{key}' to be a string or null in GitLab response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise GitLabApiError(
            f"Expected integer field '{key}' in GitLab response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _is_retryable_status(status_code: int) -> bool:
    """Return whether a status code is retryable under policy."""
    return status_code == 429 or 500 <= status_code < 600


def _parse_retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse Retry-After header as seconds if present and valid."""
    retry_after = response.headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        parsed_value = float(retry_after)
    except ValueError:
        return None
    if parsed_value < 0:
        return None
    return parsed_value


def _compute_retry_delay_seconds(response: httpx.Response, *, attempt_number: int) -> float:
    """Compute retry delay from Retry-After header or exponential backoff."""
    retry_after_seconds = _parse_retry_after_seconds(response)
    if retry_after_seconds is not None:
        return retry_after_seconds
    return DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt_number - 1))


def _sleep_for_retry(seconds: float) -> None:
    """Sleep helper for retry delays (wrapped for deterministic tests)."""
    time.sleep(seconds)


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success GitLab API response."""
    message = f"GitLab API request failed with status {response.status_code} for '{endpoint}'."
    if response.status_code == 429:
        raise GitLabRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise GitLabApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


def _request_with_retries(
    client: httpx.Client,
    endpoint: str,
    *,
    params: dict[str, str | int] | None = None,
    max_attempts: int = GITLAB_MAX_RETRIES,
) -> httpx.Response:
    """Perform a GET request with retry handling for 429/5xx responses."""
    for attempt_number in range(1, max_attempts + 1):
        response = client.get(endpoint, params=params)
        if response.status_code < 400:
            return response

        should_retry = _is_retryable_status(response.status_code) and attempt_number < max_attempts
        if not should_retry:
            _raise_http_error(response, endpoint)

        delay_seconds = _compute_retry_delay_seconds(response, attempt_number=attempt_number)
        logger.warning(
            "GitLab returned %d for %s (attempt %d/%d), retrying in %.1fs",
            response.status_code,
            endpoint,
            attempt_number,
            max_attempts,
            delay_seconds,
        )
        _sleep_for_retry(delay_seconds)

    raise RuntimeError("Unexpected retry loop exit without a response.")


def _request_json(client: httpx.Client, endpoint: str) -> dict[str, Any]:
    """Perform a JSON request against GitLab API."""
    response = _request_with_retries(client, endpoint)
    return _ensure_mapping(response.json(), context=endpoint)


def _request_paginated(
    client: httpx.Client,
    endpoint: str,
    *,
    params: dict[str, str | int] | None = None,
) -> list[dict[str, Any]]:
    """Fetch every page of a list endpoint, following the next-page header."""
    rows: list[dict[str, Any]] = []
    page: str | None = "1"
    while page:
        response = _request_with_retries(
            client,
            endpoint,
            params={**(params or {}), "per_page": DEFAULT_PER_PAGE, "page": page},
        )
        payload = response.json()
        if not isinstance(payload, list):
            raise GitLabApiError(
                "Expected JSON array in GitLab response.",
                status_code=500,
                endpoint=endpoint,
            )
        for item in payload:
            rows.append(_ensure_mapping(item, context=endpoint))
        page = response.headers.get(NEXT_PAGE_HEADER, "").strip() or None
    return rows


def _post(client: httpx.Client, endpoint: str, data: dict[str, str | int]) -> dict[str, Any]:
    """Perform one POST request; write operations are not retried."""
    response = client.post(endpoint, data=data)
    if response.status_code >= 400:
        _raise_http_error(response, endpoint)
    return _ensure_mapping(response.json(), context=endpoint)


def _project_endpoint(project_id: int | str) -> str:
    return f"/projects/{quote(str(project_id), safe='')}"


def validate_commit_sha(commit_sha: str | None) -> str:
    """Validate commit SHA input."""
    if not commit_sha or not commit_sha.strip():
        raise GitLabInputError("Invalid commit SHA ''. Expected a non-empty commit SHA.")
    return commit_sha.strip()


def _parse_project(payload: dict[str, Any], *, endpoint: str) -> GitLabProject:
    return GitLabProject(
        id=_require_int(payload, key="id", endpoint=endpoint),
        path_with_namespace=_require_str(payload, key="path_with_namespace", endpoint=endpoint),
        name_with_namespace=_require_str(payload, key="name_with_namespace", endpoint=endpoint),
        web_url=_require_str(payload, key="web_url", endpoint=endpoint),
        http_url_to_repo=_optional_str(payload, key="http_url_to_repo", endpoint=endpoint),
        ssh_url_to_repo=_optional_str(payload, key="ssh_url_to_repo", endpoint=endpoint),
    )


def resolve_project(*, client: httpx.Client, project_id: str | None) -> GitLabProject:
    """Find the single project designated by the configured project id."""
    if project_id is None:
        raise ProjectResolutionError(
            "Unable found project for null project name. "
            "Set Configuration SONAR_GITLAB_PROJECT_ID."
        )

    endpoint = "/projects"
    rows = _request_paginated(client, endpoint, params={"membership": "true"})
    matches = [
        project
        for project in (_parse_project(row, endpoint=endpoint) for row in rows)
        if project.matches(project_id)
    ]
    if not matches:
        raise ProjectResolutionError(
            f"Unable found project for {project_id}. Verify Configuration "
            f"SONAR_GITLAB_PROJECT_ID or {GITLAB_USER_TOKEN_ENV_VAR} access project."
        )
    if len(matches) > 1:
        raise ProjectResolutionError(f"Multiple found projects for {project_id}")
    logger.info("Resolved GitLab project %s (id=%d)", matches[0].path_with_namespace, matches[0].id)
    return matches[0]


def fetch_commit_diffs(
    *,
    client: httpx.Client,
    project_id: int | str,
    commit_sha: str,
) -> tuple[CommitDiff, ...]:
    """Fetch all file diffs of a commit with pagination."""
    sha = validate_commit_sha(commit_sha)
    endpoint = f"{_project_endpoint(project_id)}/repository/commits/{quote(sha, safe='')}/diff"

    diffs: list[CommitDiff] = []
    for row in _request_paginated(client, endpoint):
        diffs.append(
            CommitDiff(
                old_path=_require_str(row, key="old_path", endpoint=endpoint),
                new_path=_require_str(row, key="new_path", endpoint=endpoint),
                diff=_optional_str(row, key="diff", endpoint=endpoint),
                new_file=bool(row.get("new_file", False)),
                renamed_file=bool(row.get("renamed_file", False)),
                deleted_file=bool(row.get("deleted_file", False)),
            )
        )
    logger.info("Fetched %d file diff(s) for commit %s", len(diffs), sha)
    return tuple(diffs)


def post_commit_status(
    *,
    client: httpx.Client,
    project_id: int | str,
    commit_sha: str,
    status: CommitStatus,
    ref_name: str | None,
    description: str,
) -> None:
    """Create or update the ``sonarqube`` status of a commit."""
    sha = validate_commit_sha(commit_sha)
    endpoint = f"{_project_endpoint(project_id)}/statuses/{quote(sha, safe='')}"
    data: dict[str, str | int] = {
        "state": str(status),
        "name": COMMIT_STATUS_CONTEXT,
        "description": description,
    }
    if ref_name:
        data["ref"] = ref_name
    _post(client, endpoint, data)


def post_commit_comment(
    *,
    client: httpx.Client,
    project_id: int | str,
    commit_sha: str,
    note: str,
    path: str | None = None,
    line: int | None = None,
) -> None:
    """Comment on a commit, anchored to a new-revision line when path and line are given."""
    sha = validate_commit_sha(commit_sha)
    endpoint = f"{_project_endpoint(project_id)}/repository/commits/{quote(sha, safe='')}/comments"
    data: dict[str, str | int] = {"note": note}
    if path is not None and line is not None:
        data.update({"path": path, "line": line, "line_type": "new"})
    _post(client, endpoint, data)


def build_blob_url(project: GitLabProject, commit_sha: str, path: str, line: int | None) -> str:
    """Return the web URL of a file at a commit, pointing at a line when known."""
    url = f"{project.web_url}/blob/{commit_sha}/{path}"
    if line is not None:
        url = f"{url}#L{line}"
    return url


def fetch_authenticated_user(*, client: httpx.Client) -> str:
    """Fetch authenticated GitLab username for token validation."""
    endpoint = "/user"
    payload = _request_json(client, endpoint)
    return _require_str(payload, key="username", endpoint=endpoint)


def build_gitlab_client(
    config: ReviewConfig,
    timeout_seconds: int = 20,
    *,
    trust_env: bool = True,
) -> httpx.Client:
    """Build an authenticated GitLab HTTP client."""
    if not config.user_token:
        raise GitLabAuthError(
            f"Missing GitLab token. Set {GITLAB_USER_TOKEN_ENV_VAR} (preferred) or GITLAB_TOKEN."
        )
    return httpx.Client(
        base_url=f"{config.gitlab_url}{GITLAB_API_PATH}",
        headers={"PRIVATE-TOKEN": config.user_token, "Accept": "application/json"},
        timeout=timeout_seconds,
        trust_env=trust_env,
        verify=not config.ignore_certificate,
    )


class GitLabCommitPublisher:
    """Read the diff of the configured commit and publish review output to it."""

    def __init__(self, *, client: httpx.Client, config: ReviewConfig) -> None:
        self._client = client
        self._config = config
        self._project: GitLabProject | None = None

    @property
    def commit_sha(self) -> str:
        return validate_commit_sha(self._config.commit_sha)

    @property
    def project(self) -> GitLabProject:
        if self._project is None:
            self._project = resolve_project(client=self._client, project_id=self._config.project_id)
        return self._project

    def fetch_file_patches(self) -> Sequence[FilePatch]:
        diffs = fetch_commit_diffs(
            client=self._client,
            project_id=self.project.id,
            commit_sha=self.commit_sha,
        )
        return [commit_diff.to_file_patch() for commit_diff in diffs]

    def blob_url(self, path: str, line: int | None) -> str | None:
        return build_blob_url(self.project, self.commit_sha, path, line)

    def set_commit_status(self, status: CommitStatus, description: str) -> None:
        post_commit_status(
            client=self._client,
            project_id=self.project.id,
            commit_sha=self.commit_sha,
            status=status,
            ref_name=self._config.ref_name,
            description=description,
        )

    def add_review_comment(self, path: str, line: int, body: str) -> None:
        post_commit_comment(
            client=self._client,
            project_id=self.project.id,
            commit_sha=self.commit_sha,
            note=body,
            path=path,
            line=line,
        )

    def add_global_comment(self, body: str) -> None:
        post_commit_comment(
            client=self._client,
            project_id=self.project.id,
            commit_sha=self.commit_sha,
            note=body,
        )
