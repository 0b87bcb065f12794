"""Target version resolution and the version bump commit."""

from __future__ import annotations

from rollout.core.result import Err, Ok, Result
from rollout.git import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.output.prompt import ConfirmProtocol
from rollout.services.publish.errors import PublishError
from rollout.services.publish.manifest import (
    LOCKFILE_FILENAME,
    MANIFEST_FILENAME,
    write_manifest_version,
)
from rollout.services.publish.model import Manifest
from rollout.services.publish.semver import (
    calculate_target_version,
    next_patch,
    tag_name,
    version_from_branch,
)


def resolve_target_version(
    *,
    current_version: str,
    current_branch: str,
    target: str | None,
) -> Result[str, PublishError]:
    """Pick the release version.

    An explicit ``target`` wins; otherwise a ``release/x.y.z`` branch names
    the version; otherwise the patch number is bumped.
    """
    if target:
        return calculate_target_version(current_version, target)
    from_branch = version_from_branch(current_branch)
    if from_branch is not None:
        return Ok(from_branch)
    return next_patch(current_version)


def tag_exists_locally(repo: Repository, tag: str) -> bool:
    # A failed listing counts as "absent".
    listed = repo.list_tags(tag)
    return isinstance(listed, Ok) and tag in listed.value


def _tag_exists_error(tag: str) -> PublishError:
    return PublishError(
        kind="tag_exists",
        message=f"Tag {tag} already exists",
        hint="Choose another version (--target-version) or delete the tag",
    )


def confirm_version(
    *,
    current_version: str,
    proposed: str,
    target_input: str | None,
    confirm: ConfirmProtocol,
    console: ConsoleProtocol,
) -> Result[str, PublishError]:
    console.header("Version confirmation")
    console.print(f"current version:  {current_version}")
    console.print(f"proposed version: {proposed}")
    if target_input:
        console.print(f"target input:     {target_input}", Style.DIM)

    choice = confirm.choose(
        "Confirm the version for this release:",
        [("c", f"Confirm {proposed}"), ("e", "Enter custom version"), ("a", "Abort publish")],
    )
    if choice == "a":
        return Err(PublishError(kind="aborted", message="Publish aborted by user"))
    if choice != "e":
        return Ok(proposed)

    entered = confirm.text("Version (x.y.z)")
    return calculate_target_version(current_version, entered)


def choose_release_version(
    *,
    repo: Repository,
    manifest: Manifest,
    current_branch: str,
    target: str | None,
    interactive: bool,
    confirm: ConfirmProtocol,
    console: ConsoleProtocol,
) -> Result[str, PublishError]:
    proposed = resolve_target_version(
        current_version=manifest.version, current_branch=current_branch, target=target
    )
    if isinstance(proposed, Err):
        return proposed

    if tag_exists_locally(repo, tag_name(proposed.value)) and not interactive:
        return Err(_tag_exists_error(tag_name(proposed.value)))

    version = proposed.value
    if interactive and confirm.interactive:
        chosen = confirm_version(
            current_version=manifest.version,
            proposed=proposed.value,
            target_input=target,
            confirm=confirm,
            console=console,
        )
        if isinstance(chosen, Err):
            return chosen
        version = chosen.value

    # Re-checked after confirmation: the operator may have typed a tagged version.
    if tag_exists_locally(repo, tag_name(version)):
        return Err(_tag_exists_error(tag_name(version)))
    return Ok(version)


def commit_version_bump(
    *,
    repo: Repository,
    manifest: Manifest,
    version: str,
    console: ConsoleProtocol,
) -> Result[Manifest, PublishError]:
    """Write ``version`` into the manifest and commit it (no-op when unchanged)."""
    if manifest.version == version:
        return Ok(manifest)

    console.print(f"version: {manifest.version} -> {version}", Style.INFO)
    if repo.dry_run:
        console.print(f"DRY RUN: would set {MANIFEST_FILENAME} version to {version}", Style.DIM)
        return Ok(manifest)

    written = write_manifest_version(manifest, version)
    if isinstance(written, Err):
        return written

    files = [MANIFEST_FILENAME]
    if (repo.path / LOCKFILE_FILENAME).exists():
        files.append(LOCKFILE_FILENAME)
    staged = repo.add(files)
    if isinstance(staged, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message=f"git add {' '.join(files)} failed",
                hint=staged.error.message or None,
            )
        )
    committed = repo.commit(f"chore(release): {tag_name(version)}")
    if isinstance(committed, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message="cannot commit the version bump",
                hint=committed.error.message or None,
            )
        )
    return written
