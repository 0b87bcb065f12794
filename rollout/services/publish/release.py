"""GitHub release creation and the post-release follow-up.

Release creation is retried only for the tag propagation race: right after a
push, GitHub may answer "not found" for a tag it will see seconds later.
Every other failure is returned as-is on the first attempt.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from time import sleep

from rollout.core.result import Err, Ok, Result
from rollout.output.console import ConsoleProtocol, Style
from rollout.output.prompt import ConfirmProtocol
from rollout.services.publish.content import ReleaseNotes, ReleaseNotesWriter
from rollout.services.publish.errors import PublishError
from rollout.services.publish.gh import GitHubProtocol
from rollout.services.publish.model import ReleaseInfo, WorkflowDef, WorkflowRun
from rollout.services.publish.polling import (
    Done,
    Empty,
    Observation,
    Pending,
    PollPolicy,
    PollResult,
    poll_until,
)
from rollout.services.publish.semver import strip_v
from rollout.services.publish.timeouts import (
    RELEASE_CREATE_ATTEMPTS,
    RELEASE_CREATE_RETRY_DELAY_SECONDS,
    RUN_WINDOW_AFTER_SECONDS,
    RUN_WINDOW_BEFORE_SECONDS,
    WORKFLOWS_INITIAL_DELAY_SECONDS,
    WORKFLOWS_POLL_INTERVAL_SECONDS,
)
from rollout.services.publish.triggers import detect_release_workflows

RELEASE_NOTES_FILENAME = "RELEASE_NOTES.md"
RELEASE_TITLE_FILENAME = "RELEASE_TITLE.md"

_TAG_NOT_FOUND_MARKERS = ("not found", "does not exist", "Reference does not exist")


def workflows_policy(timeout: float) -> PollPolicy:
    return PollPolicy(
        interval=WORKFLOWS_POLL_INTERVAL_SECONDS,
        timeout=timeout,
        initial_delay=WORKFLOWS_INITIAL_DELAY_SECONDS,
    )


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8").strip() or None
    except FileNotFoundError:
        return None


def prepare_release_content(
    *,
    output_directory: Path,
    version: str,
    from_ref: str | None,
    to_ref: str,
    notes_writer: ReleaseNotesWriter,
    dry_run: bool,
    console: ConsoleProtocol,
) -> Result[ReleaseNotes, PublishError]:
    """Use RELEASE_TITLE.md / RELEASE_NOTES.md, generating what is missing."""
    notes_path = output_directory / RELEASE_NOTES_FILENAME
    title_path = output_directory / RELEASE_TITLE_FILENAME
    try:
        body = _read_text(notes_path)
        title = _read_text(title_path)
    except (OSError, UnicodeDecodeError) as e:
        return Err(PublishError(kind="io_failed", message="cannot read release notes", hint=str(e)))

    if body is not None and title is not None:
        return Ok(ReleaseNotes(title=title, body=body))

    generated = notes_writer.release_notes(version=version, from_ref=from_ref, to_ref=to_ref)
    if isinstance(generated, Err):
        return generated
    notes = ReleaseNotes(title=title or generated.value.title, body=body or generated.value.body)

    if dry_run:
        console.print(f"DRY RUN: would write release notes to {output_directory}", Style.DIM)
        return Ok(notes)
    try:
        output_directory.mkdir(parents=True, exist_ok=True)
        notes_path.write_text(notes.body + "\n", encoding="utf-8")
        title_path.write_text(notes.title + "\n", encoding="utf-8")
    except OSError as e:
        return Err(PublishError(kind="io_failed", message="cannot write release notes", hint=str(e)))
    console.print(f"wrote {notes_path} and {title_path}", Style.DIM)
    return Ok(notes)


def is_tag_not_found(error: PublishError) -> bool:
    text = f"{error.message}\n{error.hint or ''}"
    return any(marker in text for marker in _TAG_NOT_FOUND_MARKERS)


def create_release_with_retry(
    github: GitHubProtocol,
    *,
    tag: str,
    notes: ReleaseNotes,
    console: ConsoleProtocol,
    target_commitish: str | None = None,
    attempts: int = RELEASE_CREATE_ATTEMPTS,
    delay: float = RELEASE_CREATE_RETRY_DELAY_SECONDS,
) -> Result[ReleaseInfo, PublishError]:
    for attempt in range(1, attempts + 1):
        created = github.create_release(
            tag=tag, name=notes.title, body=notes.body, target_commitish=target_commitish
        )
        if isinstance(created, Ok):
            console.success(f"created release {tag}: {created.value.url}")
            return created

        if not is_tag_not_found(created.error):
            return created
        if attempt < attempts:
            console.print(
                f"tag {tag} not yet visible on GitHub; retrying in {delay:.0f}s "
                f"({attempts - attempt} left)",
                Style.DIM,
            )
            sleep(delay)

    return Err(
        PublishError(
            kind="tag_not_found",
            message=f"Tag {tag} was not found on GitHub after {attempts} attempts",
            hint="Check that the tag was pushed: git ls-remote origin refs/tags/" + tag,
        )
    )


def _in_window(run: WorkflowRun, created_at: datetime) -> bool:
    if run.created_at is None:
        return False
    delta = (run.created_at - created_at).total_seconds()
    return -RUN_WINDOW_BEFORE_SECONDS <= delta <= RUN_WINDOW_AFTER_SECONDS


def correlate_runs(
    runs: list[WorkflowRun],
    *,
    tag: str,
    released_at: datetime | None,
    commit_sha: str | None,
) -> list[WorkflowRun]:
    """Runs triggered by this release, newest first."""
    matched: list[WorkflowRun] = []
    for run in runs:
        if run.event != "release" or not run.head_sha or run.created_at is None:
            continue
        if released_at is not None and not _in_window(run, released_at):
            continue
        if commit_sha and run.head_sha != commit_sha:
            continue
        if released_at is None and run.head_branch and strip_v(tag) not in run.head_branch:
            continue
        matched.append(run)
    return sorted(matched, key=lambda r: r.created_at or datetime.min, reverse=True)


def resolve_watched_workflows(
    github: GitHubProtocol,
    *,
    names: tuple[str, ...],
    ref: str,
    console: ConsoleProtocol,
) -> Result[list[WorkflowDef], PublishError]:
    workflows = github.list_workflows()
    if isinstance(workflows, Err):
        return workflows

    if names:
        return Ok([w for w in workflows.value if w.name in names])

    detected = detect_release_workflows(github, workflows=workflows.value, ref=ref, console=console)
    if isinstance(detected, Err):
        console.warning(f"{detected.error.message}; watching all workflows")
        return Ok(workflows.value)
    return detected


def wait_for_release_workflows(
    github: GitHubProtocol,
    *,
    release: ReleaseInfo,
    workflows: list[WorkflowDef],
    commit_sha: str | None,
    policy: PollPolicy,
    skip_confirmation: bool,
    confirm: ConfirmProtocol,
    console: ConsoleProtocol,
) -> Result[PollResult[list[WorkflowRun]], PublishError]:
    def observe() -> Result[Observation[list[WorkflowRun]], PublishError]:
        runs: list[WorkflowRun] = []
        for workflow in workflows:
            listed = github.list_workflow_runs(workflow.id)
            if isinstance(listed, Err):
                console.warning(f"cannot list runs for {workflow.name}: {listed.error.message}")
                continue
            runs.extend(
                correlate_runs(
                    listed.value,
                    tag=release.tag,
                    released_at=release.created_at,
                    commit_sha=commit_sha,
                )
            )
        if not runs:
            return Ok(Empty())

        failed = [r for r in runs if r.failed]
        if failed:
            return Err(
                PublishError(
                    kind="workflow_failed",
                    message=f"Release workflows for {release.tag} failed",
                    hint="Fix the workflow and re-run it from the Actions tab",
                    details=tuple(f"{r.name}: {r.conclusion} {r.url or ''}".strip() for r in failed),
                )
            )

        completed = [r for r in runs if r.completed]
        if len(completed) == len(runs):
            return Ok(Done(runs))
        running = sum(1 for r in runs if r.status == "in_progress")
        queued = len(runs) - len(completed) - running
        return Ok(
            Pending(
                f"release workflows: {len(completed)} completed, {running} running, "
                f"{queued} queued ({len(runs)} total)"
            )
        )

    if not workflows:
        console.print("no workflows trigger on releases; not waiting", Style.DIM)
        return Ok(PollResult(value=None, reason="no_signal", cycles=0))

    console.print(
        f"watching {len(workflows)} workflow(s) for release {release.tag}", Style.DIM
    )
    result = poll_until(
        policy=policy,
        observe=observe,
        label=f"workflow runs for {release.tag}",
        console=console,
        confirm=confirm,
        skip_confirmation=skip_confirmation,
        timeout_kind="workflow_timeout",
    )
    if isinstance(result, Ok) and result.value.reason == "done":
        console.success(f"all {len(result.value.value or [])} release workflow run(s) succeeded")
    return result


def close_release_milestone(
    github: GitHubProtocol, *, version: str, console: ConsoleProtocol
) -> Result[bool, PublishError]:
    """Close the open milestone titled ``version`` (or ``v<version>``)."""
    titles = {strip_v(version), f"v{strip_v(version)}"}
    milestones = github.list_milestones(state="open")
    if isinstance(milestones, Err):
        return milestones

    for milestone in milestones.value:
        if milestone.title in titles:
            closed = github.close_milestone(milestone.number)
            if isinstance(closed, Err):
                return closed
            console.success(f"closed milestone {milestone.title}")
            return Ok(True)

    console.print(f"no open milestone for {version}", Style.DIM)
    return Ok(False)
