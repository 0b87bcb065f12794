from __future__ import annotations

from rollout.core.result import Err, Ok, Result
from rollout.git import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.services.publish.errors import PublishError
from rollout.services.publish.gh import GitHubProtocol
from rollout.services.publish.manifest import load_manifest
from rollout.services.publish.semver import next_patch, release_branch_name


def roll_to_next_cycle(
    *,
    repo: Repository,
    console: ConsoleProtocol,
) -> Result[str, PublishError]:
    """Create and push ``release/<next patch>`` from the released manifest.

    Runs on the target branch after the merge, so the manifest already holds
    the released version.
    """
    manifest = load_manifest(repo.path)
    if isinstance(manifest, Err):
        return Err(
            PublishError(
                kind=manifest.error.kind,
                message=f"cannot re-read package.json after release: {manifest.error.message}",
                hint="The release is published; create the next release branch manually",
            )
        )

    version = next_patch(manifest.value.version)
    if isinstance(version, Err):
        return version
    branch = release_branch_name(version.value)

    created = repo.checkout_new_branch(branch)
    if isinstance(created, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message=f"git checkout -b {branch} failed",
                hint=created.error.message or None,
            )
        )
    pushed = repo.push(branch, set_upstream=True)
    if isinstance(pushed, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message=f"git push -u origin {branch} failed",
                hint=pushed.error.message or None,
            )
        )
    console.success(f"next cycle: {branch}")
    return Ok(branch)


def ensure_milestone(
    github: GitHubProtocol, *, version: str, console: ConsoleProtocol
) -> Result[None, PublishError]:
    milestones = github.list_milestones(state="all")
    if isinstance(milestones, Err):
        return milestones
    if any(m.title in (version, f"v{version}") for m in milestones.value):
        console.print(f"milestone {version} already exists", Style.DIM)
        return Ok(None)

    created = github.create_milestone(version)
    if isinstance(created, Err):
        return created
    console.success(f"created milestone {version}")
    return Ok(None)
