"""Shared helpers for CLI commands."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

import typer

from rollout.core.errors import ErrorCode
from rollout.core.result import Err, Result
from rollout.output.console import Style

if TYPE_CHECKING:
    from rollout.cli.context import CLIContext


T = TypeVar("T")
E = TypeVar("E")

_USER_ERRORS = frozenset(
    {
        "dirty_tree",
        "on_target_branch",
        "invalid_branch",
        "manifest_missing",
        "manifest_invalid",
        "script_missing",
        "invalid_version",
        "invalid_tag",
        "tag_exists",
        "aborted",
        "branch_out_of_sync",
        "merge_conflict",
        "sync_conflict",
        "sync_diverged",
    }
)
_ENV_ERRORS = frozenset({"not_a_repository", "env_missing", "auth_required", "invalid_remote"})
_BUILD_ERRORS = frozenset({"build_failed", "checks_failed", "checks_timeout", "workflow_failed", "workflow_timeout"})
_NETWORK_ERRORS = frozenset({"github_failed", "pr_missing", "merge_failed", "release_failed", "tag_not_found"})


def error_code_for(kind: str) -> ErrorCode:
    """Map a publish error kind to a stable exit code."""
    if kind in _USER_ERRORS:
        return ErrorCode.USER_ERROR
    if kind in _ENV_ERRORS:
        return ErrorCode.ENV_ERROR
    if kind in _BUILD_ERRORS:
        return ErrorCode.BUILD_ERROR
    if kind in _NETWORK_ERRORS:
        return ErrorCode.NETWORK_ERROR
    if kind == "io_failed":
        return ErrorCode.IO_ERROR
    return ErrorCode.BUILD_ERROR


def exit_on_error(
    result: Result[T, E],
    ctx: CLIContext,
    error_code: ErrorCode | None = None,
) -> None:
    """Exit with error if result is Err, otherwise return.

    Prints ``message``, each of ``details`` and ``hint`` when the error has
    them. Without an explicit ``error_code`` the code is derived from the
    error's ``kind``.
    """
    if isinstance(result, Err):
        error = result.error
        message: str = getattr(error, "message", str(error))
        hint: str | None = getattr(error, "hint", None)
        details: tuple[str, ...] = getattr(error, "details", ())
        kind: str = getattr(error, "kind", "")

        ctx.console.error(message)
        for line in details:
            ctx.console.print(f"  - {line}", Style.DIM)
        if hint:
            ctx.console.print(f"hint: {hint}", Style.DIM)
        code = error_code if error_code is not None else error_code_for(kind)
        raise typer.Exit(code=int(code))
