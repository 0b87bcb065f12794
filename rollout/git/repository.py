"""Git repository abstraction.

All reads go through ``run_process``; every command that changes the working
tree, refs or the remote goes through ``run_with_dry_run`` so a dry run can
walk the whole pipeline without touching anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from rollout.core.result import Err, Ok, Result
from rollout.output.console import ConsoleProtocol
from rollout.platform.process import ProcessError, run_with_dry_run
from rollout.platform.process import run as run_process

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
_NETWORK_COMMANDS = frozenset({"fetch", "pull", "push", "ls-remote"})

__all__ = ["GitError", "Repository", "StatusEntry"]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git subcommand line that failed (without ``git -C``).
        message: stderr and stdout of the failed command.
        returncode: Process return code.
    """

    command: str
    message: str
    returncode: int = 1


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """One line of ``git status --porcelain``."""

    xy: str
    path: str

    @property
    def is_untracked(self) -> bool:
        return self.xy == "??"

    def pretty_xy(self) -> str:
        """Format XY with dots for spaces (". M" instead of " M")."""
        return self.xy.replace(" ", ".")


def _to_git_error(args: list[str], e: ProcessError) -> GitError:
    return GitError(
        command=" ".join(args),
        message=e.output or f"git {args[0] if args else ''} failed",
        returncode=e.returncode,
    )


class Repository:
    """The git working copy being released.

    Attributes:
        path: Repository root.
        dry_run: When True, mutating commands are only echoed.
    """

    def __init__(self, path: Path, *, console: ConsoleProtocol, dry_run: bool = False) -> None:
        self.path = path
        self.dry_run = dry_run
        self._console = console

    # -- reads -----------------------------------------------------------

    def git_dir(self) -> Result[str, GitError]:
        """``rev-parse --git-dir``; fails outside a repository."""
        return self._read(["rev-parse", "--git-dir"])

    def current_branch(self) -> Result[str, GitError]:
        return self._read(["rev-parse", "--abbrev-ref", "HEAD"])

    def status_entries(self) -> Result[tuple[StatusEntry, ...], GitError]:
        result = self._run(["status", "--porcelain"])
        if isinstance(result, Err):
            return Err(_to_git_error(["status", "--porcelain"], result.error))
        return Ok(self._parse_porcelain(result.value))

    def remote_url(self, remote: str = "origin") -> Result[str, GitError]:
        return self._read(["remote", "get-url", remote])

    def rev_parse(self, ref: str) -> Result[str, GitError]:
        return self._read(["rev-parse", ref])

    def ref_exists(self, ref: str) -> bool:
        return isinstance(self._run(["rev-parse", "--verify", "--quiet", ref]), Ok)

    def local_branch_exists(self, branch: str) -> bool:
        return self.ref_exists(f"refs/heads/{branch}")

    def remote_tracking_branch_exists(self, branch: str, remote: str = "origin") -> bool:
        return self.ref_exists(f"refs/remotes/{remote}/{branch}")

    def remote_has_branch(self, branch: str, remote: str = "origin") -> bool:
        """Ask the remote directly (``ls-remote --exit-code --heads``)."""
        result = self._run(["ls-remote", "--exit-code", "--heads", remote, branch])
        return isinstance(result, Ok)

    def fetch(self, remote: str = "origin") -> Result[str, GitError]:
        return self._read(["fetch", remote, "--quiet"])

    def list_tags(self, pattern: str) -> Result[tuple[str, ...], GitError]:
        out = self._read(["tag", "-l", pattern])
        if isinstance(out, Err):
            return out
        return Ok(tuple(line.strip() for line in out.value.splitlines() if line.strip()))

    def remote_tag_ref(self, tag: str, remote: str = "origin") -> Result[str, GitError]:
        """``ls-remote <remote> refs/tags/<tag>``; empty output means absent."""
        return self._read(["ls-remote", remote, f"refs/tags/{tag}"])

    def has_staged_changes(self) -> Result[bool, GitError]:
        args = ["diff", "--cached", "--quiet"]
        result = self._run(args)
        if isinstance(result, Ok):
            return Ok(False)
        if result.error.returncode == 1:
            return Ok(True)
        return Err(_to_git_error(args, result.error))

    def staged_files(self) -> Result[tuple[str, ...], GitError]:
        out = self._read(["diff", "--cached", "--name-only"])
        if isinstance(out, Err):
            return out
        return Ok(tuple(line.strip() for line in out.value.splitlines() if line.strip()))

    def last_commit_message(self) -> Result[str, GitError]:
        return self._read(["log", "-1", "--pretty=%B"])

    def log_subjects(
        self, base: str | None, head: str = "HEAD", *, limit: int = 200
    ) -> Result[tuple[str, ...], GitError]:
        span = f"{base}..{head}" if base else head
        out = self._read(["log", "--pretty=%s", f"--max-count={limit}", span])
        if isinstance(out, Err):
            return out
        return Ok(tuple(line for line in out.value.splitlines() if line.strip()))

    def changed_files(self, base: str, head: str) -> Result[tuple[str, ...], GitError]:
        out = self._read(["diff", "--name-only", f"{base}..{head}"])
        if isinstance(out, Err):
            return out
        return Ok(tuple(line.strip() for line in out.value.splitlines() if line.strip()))

    def show_file(self, ref: str, path: str) -> Result[str, GitError]:
        args = ["show", f"{ref}:{path}"]
        result = self._run(args)
        if isinstance(result, Err):
            return Err(_to_git_error(args, result.error))
        return Ok(result.value)

    def merge_base(self, a: str, b: str) -> Result[str, GitError]:
        return self._read(["merge-base", a, b])

    def conflicted_files(self) -> Result[tuple[str, ...], GitError]:
        """Paths left unmerged by a conflicting merge."""
        out = self._read(["diff", "--name-only", "--diff-filter=U"])
        if isinstance(out, Err):
            return out
        return Ok(tuple(line.strip() for line in out.value.splitlines() if line.strip()))

    # -- mutations (dry-run aware) ----------------------------------------

    def create_tag(self, tag: str) -> Result[str, GitError]:
        return self._mutate(["tag", tag])

    def push(self, ref: str, *, remote: str = "origin", set_upstream: bool = False) -> Result[str, GitError]:
        args = ["push", "-u", remote, ref] if set_upstream else ["push", remote, ref]
        return self._mutate(args)

    def checkout(self, branch: str) -> Result[str, GitError]:
        return self._mutate(["checkout", branch])

    def checkout_new_branch(self, branch: str) -> Result[str, GitError]:
        return self._mutate(["checkout", "-b", branch])

    def create_branch(self, branch: str, start_point: str) -> Result[str, GitError]:
        return self._mutate(["branch", branch, start_point])

    def pull(self, branch: str, *, remote: str = "origin", ff_only: bool = False) -> Result[str, GitError]:
        args = ["pull", remote, branch, "--ff-only" if ff_only else "--no-edit"]
        return self._mutate(args)

    def fast_forward_branch(self, branch: str, *, remote: str = "origin") -> Result[str, GitError]:
        """Fast-forward a branch that is not checked out; fails on divergence."""
        return self._mutate(["fetch", remote, f"{branch}:{branch}"])

    def stash_push(self, message: str) -> Result[str, GitError]:
        return self._mutate(["stash", "push", "-m", message])

    def stash_pop(self) -> Result[str, GitError]:
        return self._mutate(["stash", "pop"])

    def add(self, paths: list[str]) -> Result[str, GitError]:
        return self._mutate(["add", *paths])

    def commit(self, message: str) -> Result[str, GitError]:
        return self._mutate(["commit", "-m", message])

    def merge(self, branch: str, *, message: str) -> Result[str, GitError]:
        return self._mutate(["merge", branch, "--no-edit", "-m", message])

    def checkout_ours(self, path: str) -> Result[str, GitError]:
        return self._mutate(["checkout", "--ours", path])

    # -- plumbing ----------------------------------------------------------

    def _timeout(self, args: list[str]) -> float:
        command = args[0] if args else ""
        return _GIT_NETWORK_TIMEOUT_SECONDS if command in _NETWORK_COMMANDS else _GIT_TIMEOUT_SECONDS

    def _run(self, args: list[str]) -> Result[str, ProcessError]:
        return run_process(
            ["git", "-C", str(self.path), *args], cwd=self.path, timeout=self._timeout(args)
        )

    def _read(self, args: list[str]) -> Result[str, GitError]:
        result = self._run(args)
        if isinstance(result, Err):
            return Err(_to_git_error(args, result.error))
        return Ok(result.value.strip())

    def _mutate(self, args: list[str]) -> Result[str, GitError]:
        result = run_with_dry_run(
            ["git", "-C", str(self.path), *args],
            self.path,
            dry_run=self.dry_run,
            console=self._console,
            timeout=self._timeout(args),
        )
        if isinstance(result, Err):
            return Err(_to_git_error(args, result.error))
        return Ok(result.value.strip())

    def _parse_porcelain(self, output: str) -> tuple[StatusEntry, ...]:
        entries: list[StatusEntry] = []
        for line in output.splitlines():
            if len(line) < 4:
                continue
            if line.startswith("?? "):
                entries.append(StatusEntry(xy="??", path=line[3:]))
                continue
            entries.append(StatusEntry(xy=line[:2], path=line[3:]))
        return tuple(entries)
