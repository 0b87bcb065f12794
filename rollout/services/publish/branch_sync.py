"""Branch synchronisation around a publish.

``check_branch_sync`` compares the local target branch with its remote
counterpart. ``stash_guard`` protects uncommitted work around a checkout.
``checkout_target`` switches to the target branch and pulls it.
``sync_target`` is the explicit recovery entry point (``--sync-target``).

Before the PR: ``sync_current_branch`` pulls the release branch,
``ensure_target_branch`` creates a missing target branch,
``merge_target_into_current`` merges the target into the release branch so
the PR cannot conflict, and ``push_release_branch`` publishes the result.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from rollout.core.result import Err, Ok, Result
from rollout.git import GitError, Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.services.publish.errors import PublishError
from rollout.services.publish.manifest import LOCKFILE_FILENAME, MANIFEST_FILENAME
from rollout.services.publish.model import BranchSyncResult

STASH_MARKER = "rollout: auto-stash before target branch checkout"

_CONFLICT_MARKERS = ("CONFLICT", "Automatic merge failed", "fix conflicts")
_VERSION_FILES = frozenset({MANIFEST_FILENAME, LOCKFILE_FILENAME})


def _git_failure(message: str, error: GitError) -> PublishError:
    return PublishError(kind="git_failed", message=message, hint=error.message or error.command)


def check_branch_sync(
    repo: Repository,
    branch: str,
    *,
    console: ConsoleProtocol,
    remote: str = "origin",
) -> Result[BranchSyncResult, PublishError]:
    """Compare ``branch`` with ``<remote>/<branch>``.

    A branch that does not exist locally is reported in sync: there is
    nothing local to diverge yet.
    """
    if not repo.local_branch_exists(branch):
        return Ok(BranchSyncResult(in_sync=True, local_exists=False, remote_exists=False))

    fetched = repo.fetch(remote)
    if isinstance(fetched, Err):
        console.warning(f"git fetch {remote} failed; comparing against cached remote refs")

    local_sha = repo.rev_parse(branch)
    if isinstance(local_sha, Err):
        return Err(_git_failure(f"cannot resolve {branch}", local_sha.error))

    if not repo.remote_tracking_branch_exists(branch, remote):
        return Ok(
            BranchSyncResult(
                in_sync=True,
                local_exists=True,
                remote_exists=False,
                local_sha=local_sha.value,
            )
        )

    remote_sha = repo.rev_parse(f"{remote}/{branch}")
    if isinstance(remote_sha, Err):
        return Err(_git_failure(f"cannot resolve {remote}/{branch}", remote_sha.error))

    return Ok(
        BranchSyncResult(
            in_sync=local_sha.value == remote_sha.value,
            local_exists=True,
            remote_exists=True,
            local_sha=local_sha.value,
            remote_sha=remote_sha.value,
        )
    )


def require_in_sync(
    repo: Repository, branch: str, *, console: ConsoleProtocol
) -> Result[BranchSyncResult, PublishError]:
    result = check_branch_sync(repo, branch, console=console)
    if isinstance(result, Err):
        return result

    sync = result.value
    if not sync.local_exists:
        console.print(f"target branch {branch} does not exist locally; skipping sync check", Style.DIM)
        return result
    if not sync.in_sync:
        return Err(
            PublishError(
                kind="branch_out_of_sync",
                message=(
                    f"Target branch '{branch}' is not in sync with remote "
                    f"(local {sync.short_local}, remote {sync.short_remote})"
                ),
                hint="Run: rollout publish --sync-target",
            )
        )
    return result


@contextmanager
def stash_guard(repo: Repository, *, console: ConsoleProtocol) -> Iterator[bool]:
    """Stash uncommitted changes for the duration of the block.

    Yields whether a stash was pushed. The stash is popped on every exit path;
    a failed pop only warns, the stash entry stays available.
    """
    entries = repo.status_entries()
    dirty = isinstance(entries, Ok) and len(entries.value) > 0
    if isinstance(entries, Err):
        console.warning(f"cannot read working tree status: {entries.error.message}")

    stashed = False
    if dirty:
        pushed = repo.stash_push(STASH_MARKER)
        if isinstance(pushed, Err):
            console.warning(f"git stash failed: {pushed.error.message}")
        else:
            stashed = True
            console.print("stashed uncommitted changes", Style.DIM)

    try:
        yield stashed
    finally:
        if stashed:
            popped = repo.stash_pop()
            if isinstance(popped, Err):
                console.warning(
                    f"git stash pop failed; your changes are kept in the stash "
                    f"('{STASH_MARKER}'): {popped.error.message}"
                )
            else:
                console.print("restored stashed changes", Style.DIM)


def _is_conflict(error: GitError) -> bool:
    return any(marker in error.message for marker in _CONFLICT_MARKERS)


def checkout_target(
    repo: Repository, branch: str, *, console: ConsoleProtocol
) -> Result[None, PublishError]:
    """Switch to ``branch`` and pull it, protecting uncommitted work."""
    with stash_guard(repo, console=console):
        checked_out = repo.checkout(branch)
        if isinstance(checked_out, Err):
            return Err(_git_failure(f"git checkout {branch} failed", checked_out.error))

        if not repo.remote_has_branch(branch):
            console.print(f"{branch} has no remote counterpart yet; skipping pull", Style.DIM)
            return Ok(None)

        pulled = repo.pull(branch)
        if isinstance(pulled, Err):
            if _is_conflict(pulled.error):
                return Err(
                    PublishError(
                        kind="sync_conflict",
                        message=f"Merge conflicts while pulling {branch}",
                        hint=(
                            "Resolve the conflicts manually (git status, edit, git add, "
                            "git commit), then re-run publish"
                        ),
                        details=tuple(
                            line for line in pulled.error.message.splitlines() if "CONFLICT" in line
                        ),
                    )
                )
            return Err(_git_failure(f"git pull origin {branch} failed", pulled.error))
    return Ok(None)


def sync_target(
    repo: Repository, branch: str, *, console: ConsoleProtocol, remote: str = "origin"
) -> Result[str, PublishError]:
    """Bring the local target branch up to date with the remote.

    Creates the local branch when missing, otherwise fast-forwards it.
    Divergence is never resolved automatically.
    """
    fetched = repo.fetch(remote)
    if isinstance(fetched, Err):
        return Err(_git_failure(f"git fetch {remote} failed", fetched.error))

    if not repo.remote_tracking_branch_exists(branch, remote):
        return Err(
            PublishError(
                kind="git_failed",
                message=f"{remote}/{branch} does not exist",
                hint="Push the target branch first or configure target_branch",
            )
        )

    if not repo.local_branch_exists(branch):
        created = repo.create_branch(branch, f"{remote}/{branch}")
        if isinstance(created, Err):
            return Err(_git_failure(f"cannot create {branch}", created.error))
        return Ok(f"created {branch} from {remote}/{branch}")

    state = check_branch_sync(repo, branch, console=console, remote=remote)
    if isinstance(state, Err):
        return state
    if state.value.in_sync:
        return Ok(f"{branch} already in sync with {remote}")

    current = repo.current_branch()
    on_branch = isinstance(current, Ok) and current.value == branch
    if on_branch:
        forwarded = repo.pull(branch, remote=remote, ff_only=True)
    else:
        forwarded = repo.fast_forward_branch(branch, remote=remote)
    if isinstance(forwarded, Err):
        return Err(
            PublishError(
                kind="sync_diverged",
                message=(
                    f"Local '{branch}' has diverged from {remote}/{branch}; "
                    "manual conflict resolution required"
                ),
                hint=(
                    f"git checkout {branch} && git pull {remote} {branch}, resolve the "
                    "conflicts, then re-run publish"
                ),
                details=(forwarded.error.message,) if forwarded.error.message else (),
            )
        )
    return Ok(f"fast-forwarded {branch} to {remote}/{branch}")


def sync_current_branch(
    repo: Repository, branch: str, *, console: ConsoleProtocol, remote: str = "origin"
) -> Result[None, PublishError]:
    """Pull ``<remote>/<branch>`` into the release branch before any work.

    Fetch and pull failures only warn; a conflicting pull is fatal and left
    in place for manual resolution.
    """
    fetched = repo.fetch(remote)
    if isinstance(fetched, Err):
        console.warning(f"git fetch {remote} failed: {fetched.error.message}")

    if not repo.remote_has_branch(branch, remote):
        console.print(f"{remote}/{branch} does not exist yet; it is created on first push", Style.DIM)
        return Ok(None)

    pulled = repo.pull(branch, remote=remote)
    if isinstance(pulled, Ok):
        console.print(f"synced {branch} with {remote}", Style.DIM)
        return Ok(None)
    if _is_conflict(pulled.error):
        return Err(
            PublishError(
                kind="sync_conflict",
                message=f"Merge conflicts while syncing {branch} with {remote}",
                hint="Resolve the conflicts, git add the files, git commit, then re-run publish",
                details=tuple(
                    line for line in pulled.error.message.splitlines() if "CONFLICT" in line
                ),
            )
        )
    console.warning(f"could not sync {branch} with {remote}: {pulled.error.message}")
    return Ok(None)


def ensure_target_branch(
    repo: Repository, branch: str, *, console: ConsoleProtocol, remote: str = "origin"
) -> Result[bool, PublishError]:
    """Make sure the target branch exists locally; ``True`` when created.

    A branch that only exists on the remote is created from it. A branch that
    exists nowhere is created from HEAD and pushed.
    """
    if repo.local_branch_exists(branch):
        return Ok(False)

    if repo.remote_tracking_branch_exists(branch, remote):
        created = repo.create_branch(branch, f"{remote}/{branch}")
        if isinstance(created, Err):
            return Err(_git_failure(f"cannot create {branch} from {remote}/{branch}", created.error))
        console.print(f"created {branch} from {remote}/{branch}", Style.DIM)
        return Ok(True)

    console.info(f"target branch {branch} does not exist; creating it from HEAD")
    created = repo.create_branch(branch, "HEAD")
    if isinstance(created, Err):
        return Err(_git_failure(f"Failed to create target branch '{branch}'", created.error))
    pushed = repo.push(branch, remote=remote)
    if isinstance(pushed, Err):
        return Err(_git_failure(f"Failed to push new target branch '{branch}'", pushed.error))
    console.success(f"created and pushed {branch}")
    return Ok(True)


def merge_target_into_current(
    repo: Repository,
    target: str,
    *,
    console: ConsoleProtocol,
    remote: str = "origin",
) -> Result[bool, PublishError]:
    """Merge the freshest target branch into HEAD; ``True`` when a merge happened.

    Conflicts limited to the manifest and lockfile are resolved in favour of
    the release branch. Any other conflict is fatal and left for the operator.
    """
    refreshed = repo.fast_forward_branch(target, remote=remote)
    if isinstance(refreshed, Err):
        console.warning(f"could not refresh {target} from {remote}: {refreshed.error.message}")

    base = repo.merge_base("HEAD", target)
    tip = repo.rev_parse(target)
    if isinstance(tip, Err):
        return Err(_git_failure(f"cannot resolve {target}", tip.error))
    if isinstance(base, Ok) and base.value == tip.value:
        console.print(f"already up to date with {target}", Style.DIM)
        return Ok(False)

    message = f"Merge {target} to sync before version bump"
    merged = repo.merge(target, message=message)
    if isinstance(merged, Ok):
        console.success(f"merged {target} into the release branch")
        return Ok(True)
    if not _is_conflict(merged.error):
        return Err(_git_failure(f"git merge {target} failed", merged.error))

    conflicts = repo.conflicted_files()
    if isinstance(conflicts, Err):
        return Err(_git_failure("cannot list conflicted files", conflicts.error))
    blocking = [path for path in conflicts.value if path not in _VERSION_FILES]
    if blocking:
        return Err(
            PublishError(
                kind="sync_conflict",
                message=f"Merging {target} conflicts outside the version files",
                hint="Resolve the conflicts, git add the files, git commit, then re-run publish",
                details=tuple(blocking),
            )
        )

    console.warning(f"version file conflicts with {target}; keeping the release branch side")
    for path in conflicts.value:
        for step in (repo.checkout_ours(path), repo.add([path])):
            if isinstance(step, Err):
                return Err(_git_failure(f"cannot resolve {path}", step.error))
    committed = repo.commit(f"{message} (auto-resolved version conflicts)")
    if isinstance(committed, Err):
        return Err(_git_failure("cannot complete the merge", committed.error))
    console.success(f"merged {target} with auto-resolved version conflicts")
    return Ok(True)


def push_release_branch(
    repo: Repository, branch: str, *, console: ConsoleProtocol, remote: str = "origin"
) -> Result[bool, PublishError]:
    """Push the release branch unless the remote already has HEAD."""
    if not repo.dry_run:
        head = repo.rev_parse("HEAD")
        pushed_head = repo.rev_parse(f"{remote}/{branch}")
        if isinstance(head, Ok) and isinstance(pushed_head, Ok):
            if head.value and head.value == pushed_head.value:
                console.print(f"{remote}/{branch} is already at HEAD", Style.DIM)
                return Ok(False)

    pushed = repo.push(branch, remote=remote)
    if isinstance(pushed, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message=f"git push {remote} {branch} failed",
                hint=pushed.error.message or None,
            )
        )
    if not repo.dry_run:
        console.success(f"pushed {branch}")
    return Ok(True)
