from __future__ import annotations

from dataclasses import dataclass

from rollout.core.config import PublishConfig
from rollout.core.result import Err, Ok, Result
from rollout.git import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.platform.process import run_with_dry_run
from rollout.services.publish.content import CommitMessageWriter
from rollout.services.publish.errors import PublishError
from rollout.services.publish.manifest import LOCKFILE_FILENAME, MANIFEST_FILENAME, PREPUBLISH_SCRIPT
from rollout.services.publish.timeouts import NPM_UPDATE_TIMEOUT_SECONDS


@dataclass(frozen=True, slots=True)
class BuildReport:
    committed: bool
    staged_files: tuple[str, ...] = ()


def run_build_stage(
    *,
    repo: Repository,
    config: PublishConfig,
    console: ConsoleProtocol,
    commit_writer: CommitMessageWriter,
) -> Result[BuildReport, PublishError]:
    """Refresh dependencies, run the prepublish gate, commit what changed.

    A failing prepublish script is a real defect and is never retried.
    """
    update_cmd = ["npm", "update", *config.dependency_update_patterns]
    console.print(" ".join(update_cmd), Style.DIM)
    updated = run_with_dry_run(
        update_cmd,
        repo.path,
        dry_run=config.dry_run,
        console=console,
        timeout=NPM_UPDATE_TIMEOUT_SECONDS,
    )
    if isinstance(updated, Err):
        return Err(
            PublishError(
                kind="build_failed",
                message="npm update failed",
                hint=updated.error.output or None,
            )
        )

    staged = _stage_manifest_files(repo)
    if isinstance(staged, Err):
        return staged

    console.print(f"npm run {PREPUBLISH_SCRIPT}", Style.DIM)
    built = run_with_dry_run(
        ["npm", "run", PREPUBLISH_SCRIPT],
        repo.path,
        dry_run=config.dry_run,
        console=console,
        inherit_output=True,
    )
    if isinstance(built, Err):
        return Err(
            PublishError(
                kind="build_failed",
                message=f"npm run {PREPUBLISH_SCRIPT} failed",
                hint="Fix the lint/build/test failures above, then re-run publish",
            )
        )

    committed = commit_staged_changes(repo=repo, console=console, commit_writer=commit_writer)
    if isinstance(committed, Err):
        return committed
    if committed.value is None:
        return Ok(BuildReport(committed=False))
    return Ok(BuildReport(committed=True, staged_files=committed.value))


def _stage_manifest_files(repo: Repository) -> Result[None, PublishError]:
    to_stage = [
        name for name in (MANIFEST_FILENAME, LOCKFILE_FILENAME) if (repo.path / name).exists()
    ]
    if not to_stage:
        return Ok(None)
    staged = repo.add(to_stage)
    if isinstance(staged, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message=f"git add {' '.join(to_stage)} failed",
                hint=staged.error.message or None,
            )
        )
    return Ok(None)


def commit_staged_changes(
    *,
    repo: Repository,
    console: ConsoleProtocol,
    commit_writer: CommitMessageWriter,
) -> Result[tuple[str, ...] | None, PublishError]:
    """Commit whatever is staged; returns the committed paths, None when nothing was staged."""
    has_changes = repo.has_staged_changes()
    if isinstance(has_changes, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message="cannot inspect staged changes",
                hint=has_changes.error.message or None,
            )
        )
    if not has_changes.value:
        console.print("no staged changes; nothing to commit", Style.DIM)
        return Ok(None)

    files = repo.staged_files()
    staged_files = files.value if isinstance(files, Ok) else ()
    message = commit_writer.commit_message(staged_files=staged_files)
    if isinstance(message, Err):
        return message

    committed = repo.commit(message.value)
    if isinstance(committed, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message="git commit failed",
                hint=committed.error.message or None,
            )
        )
    console.success(f"committed: {message.value.splitlines()[0]}")
    return Ok(staged_files)


def refresh_after_merge(
    *,
    repo: Repository,
    console: ConsoleProtocol,
    commit_writer: CommitMessageWriter,
) -> Result[bool, PublishError]:
    """``npm install`` after merging the target branch and commit the lockfile drift."""
    console.print("npm install", Style.DIM)
    installed = run_with_dry_run(
        ["npm", "install"],
        repo.path,
        dry_run=repo.dry_run,
        console=console,
        timeout=NPM_UPDATE_TIMEOUT_SECONDS,
    )
    if isinstance(installed, Err):
        return Err(
            PublishError(
                kind="build_failed",
                message="npm install failed after merging the target branch",
                hint=installed.error.output or None,
            )
        )

    entries = repo.status_entries()
    if isinstance(entries, Ok) and not entries.value:
        return Ok(False)

    staged = _stage_manifest_files(repo)
    if isinstance(staged, Err):
        return staged
    committed = commit_staged_changes(repo=repo, console=console, commit_writer=commit_writer)
    if isinstance(committed, Err):
        return committed
    return Ok(committed.value is not None)
