"""Typer CLI for publishing Sonar findings to GitLab commits."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import httpx
import typer

from sonar_gitlab.config import ReviewConfigError, load_review_config
from sonar_gitlab.diff_positions import PatchParseError, build_position_index, split_unified_diff
from sonar_gitlab.gitlab_client import (
    GitLabApiError,
    GitLabAuthError,
    GitLabCommitPublisher,
    ProjectResolutionError,
    build_gitlab_client,
    fetch_authenticated_user,
    resolve_project,
)
from sonar_gitlab.observability import RunTelemetry, configure_logging
from sonar_gitlab.review import (
    CommitPublishError,
    CommitReview,
    CommitReviewJob,
    build_commit_review,
)
from sonar_gitlab.schema import Finding, FindingsReportError, load_findings_report
from sonar_gitlab.workspace import (
    RepositoryRootNotFoundError,
    find_repository_root,
    relative_repository_path,
)

app = typer.Typer(help="Publish Sonar analysis findings as GitLab commit comments and status.")


def _echo_review(review: CommitReview) -> None:
    """Print everything a run would publish."""
    for (path, line), body in review.inline_comments.items():
        typer.echo(f"--- {path}:{line}")
        typer.echo(body)
    typer.echo("--- global summary")
    typer.echo(review.global_summary)
    typer.echo(f"--- status: {review.status} ({review.status_description})")


def _relativize_findings(findings: list[Finding], root: Path, project_dir: Path) -> list[Finding]:
    """Rewrite finding paths relative to the repository root."""
    relocated: list[Finding] = []
    for finding in findings:
        if finding.file_path is None:
            relocated.append(finding)
            continue
        path = relative_repository_path(root, project_dir.resolve() / finding.file_path)
        if path is None:
            relocated.append(finding)
            continue
        relocated.append(finding.model_copy(update={"file_path": path}))
    return relocated


@app.command("preview")
def preview_command(
    diff: Annotated[Path, typer.Option(help="Unified diff of the commit (git diff output).")],
    findings: Annotated[Path, typer.Option(help="Sonar JSON issues report.")],
    max_global_issues: Annotated[
        int | None, typer.Option(help="Maximum not-inline issues listed in the summary.")
    ] = None,
    ignore_file_not_in_commit: Annotated[
        bool | None,
        typer.Option(
            "--ignore-file-not-in-commit/--keep-file-not-in-commit",
            help="Drop findings on files the commit does not touch.",
        ),
    ] = None,
    sonar_url: Annotated[str | None, typer.Option(help="Sonar server base URL.")] = None,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging.")] = False,
) -> None:
    """Render the review of a local diff without contacting GitLab."""
    configure_logging(verbose)
    try:
        config = load_review_config(
            max_global_issues=max_global_issues,
            ignore_file_not_in_commit=ignore_file_not_in_commit,
            sonar_base_url=sonar_url,
        )
        diff_text = diff.read_text(encoding="utf-8")
        index = build_position_index(split_unified_diff(diff_text))
        review = build_commit_review(load_findings_report(findings), index, config)
    except (ReviewConfigError, FindingsReportError, PatchParseError) as error:
        typer.echo(f"Preview failed: {error}")
        raise typer.Exit(code=1) from error
    except OSError as error:
        typer.echo(f"Preview failed: unable to read diff '{diff}' ({error}).")
        raise typer.Exit(code=1) from error

    _echo_review(review)


@app.command("publish")
def publish_command(
    findings: Annotated[Path, typer.Option(help="Sonar JSON issues report.")],
    project_dir: Annotated[
        Path, typer.Option(help="Analysed project directory; report paths are relative to it.")
    ] = Path("."),
    gitlab_url: Annotated[str | None, typer.Option(help="GitLab base URL.")] = None,
    project_id: Annotated[str | None, typer.Option(help="GitLab project id or path.")] = None,
    commit_sha: Annotated[str | None, typer.Option(help="Analysed commit SHA.")] = None,
    ref_name: Annotated[str | None, typer.Option(help="Branch or tag of the commit.")] = None,
    max_global_issues: Annotated[
        int | None, typer.Option(help="Maximum not-inline issues listed in the summary.")
    ] = None,
    ignore_file_not_in_commit: Annotated[
        bool | None,
        typer.Option(
            "--ignore-file-not-in-commit/--keep-file-not-in-commit",
            help="Drop findings on files the commit does not touch.",
        ),
    ] = None,
    dry_run: Annotated[bool, typer.Option(help="Read the commit diff but post nothing.")] = False,
    timeout_seconds: Annotated[int, typer.Option(help="GitLab API timeout in seconds.")] = 20,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
    verbose: Annotated[bool, typer.Option(help="Print progress and run telemetry.")] = False,
) -> None:
    """Publish inline comments, a global summary and a commit status to GitLab."""
    configure_logging(verbose)
    telemetry = RunTelemetry()
    try:
        config = load_review_config(
            gitlab_url=gitlab_url,
            project_id=project_id,
            commit_sha=commit_sha,
            ref_name=ref_name,
            max_global_issues=max_global_issues,
            ignore_file_not_in_commit=ignore_file_not_in_commit,
        )
        config.require_publishing_settings()
        root = find_repository_root(project_dir)
        report_findings = _relativize_findings(load_findings_report(findings), root, project_dir)
        telemetry.findings_received = len(report_findings)

        with build_gitlab_client(
            config, timeout_seconds=timeout_seconds, trust_env=trust_env
        ) as client:
            publisher = GitLabCommitPublisher(client=client, config=config)
            if dry_run:
                index = build_position_index(publisher.fetch_file_patches())
                review = build_commit_review(
                    report_findings, index, config, link_for=publisher.blob_url
                )
            else:
                job = CommitReviewJob(config, publisher)
                index = job.start()
                review = job.finish(report_findings)
    except (
        ReviewConfigError,
        FindingsReportError,
        RepositoryRootNotFoundError,
        GitLabAuthError,
        ProjectResolutionError,
        PatchParseError,
        CommitPublishError,
    ) as error:
        typer.echo(f"Publishing failed: {error}")
        raise typer.Exit(code=1) from error
    except GitLabApiError as error:
        typer.echo(
            f"Publishing failed: status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"Publishing failed: network error ({error}).")
        raise typer.Exit(code=1) from error

    telemetry.files_in_diff = len(index)
    telemetry.record_review(review)
    if dry_run:
        _echo_review(review)
    else:
        typer.echo(f"Published {review.status} status: {review.status_description}.")
    if verbose:
        typer.echo(telemetry.summary_line())


@app.command("auth-check")
def auth_check_command(
    project_id: Annotated[
        str | None,
        typer.Option(help="Optional GitLab project id or path to resolve with the token."),
    ] = None,
    gitlab_url: Annotated[str | None, typer.Option(help="GitLab base URL.")] = None,
    timeout_seconds: Annotated[
        int, typer.Option(help="GitLab API timeout in seconds for the validation call.")
    ] = 20,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
) -> None:
    """Validate GitLab token setup and optional project access."""
    try:
        config = load_review_config(gitlab_url=gitlab_url, project_id=project_id)
        client = build_gitlab_client(
            config, timeout_seconds=timeout_seconds, trust_env=trust_env
        )
    except (ReviewConfigError, GitLabAuthError) as error:
        typer.echo(f"GitLab auth check failed: {error}")
        raise typer.Exit(code=1) from error

    try:
        with client:
            username = fetch_authenticated_user(client=client)
            typer.echo(f"Authenticated as GitLab user '{username}'.")

            if project_id is not None:
                project = resolve_project(client=client, project_id=project_id)
                typer.echo(
                    f"Project access check passed for {project.path_with_namespace} "
                    f"(id={project.id})."
                )
    except ProjectResolutionError as error:
        typer.echo(f"GitLab auth check failed: {error}")
        raise typer.Exit(code=1) from error
    except GitLabApiError as error:
        typer.echo(
            "GitLab auth check failed: "
            f"status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"GitLab auth check failed: network error ({error}).")
        raise typer.Exit(code=1) from error

    typer.echo("GitLab token setup is valid.")
