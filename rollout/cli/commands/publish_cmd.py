"""Publish command - drive the current release branch to a GitHub release."""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import typer

from rollout.cli.commands._helpers import exit_on_error
from rollout.cli.context import build_context
from rollout.core.config import MergeMethod, PublishConfig
from rollout.core.errors import ErrorCode
from rollout.core.result import Err
from rollout.output.console import Style
from rollout.output.prompt import AutoConfirm, ConfirmProtocol, TyperConfirm
from rollout.services.publish import run_publish

_MERGE_METHODS = ("merge", "squash", "rebase")


def _apply_overrides(
    config: PublishConfig,
    *,
    dry_run: bool,
    sync_target: bool,
    target_version: str | None,
    target_branch: str | None,
    merge_method: str | None,
    interactive: bool,
    sendit: bool,
    skip_user_confirmation: bool,
    no_milestones: bool,
    no_wait_workflows: bool,
    checks_timeout: float | None,
) -> PublishConfig:
    updated = replace(
        config,
        dry_run=dry_run or config.dry_run,
        sync_target=sync_target,
        interactive=interactive or config.interactive,
        sendit=sendit or config.sendit,
        skip_user_confirmation=skip_user_confirmation or config.skip_user_confirmation,
        no_milestones=no_milestones or config.no_milestones,
        wait_for_release_workflows=config.wait_for_release_workflows and not no_wait_workflows,
    )
    if target_version is not None:
        updated = replace(updated, target_version=target_version)
    if target_branch is not None:
        # An explicit flag beats per-branch targets from the config file.
        updated = replace(updated, target_branch=target_branch, branch_targets={})
    if merge_method is not None:
        method: MergeMethod = merge_method  # type: ignore[assignment]
        updated = replace(updated, merge_method=method)
    if checks_timeout is not None:
        updated = replace(updated, checks_timeout=checks_timeout)
    return updated


def _confirmer(config: PublishConfig) -> ConfirmProtocol:
    if config.skip_confirmation or not sys.stdin.isatty():
        return AutoConfirm()
    return TyperConfirm()


def publish(
    dry_run: bool = typer.Option(False, "--dry-run", help="Print mutations without running them"),
    sync_target: bool = typer.Option(
        False, "--sync-target", help="Only bring the target branch up to date with origin"
    ),
    target_version: str | None = typer.Option(
        None, "--target-version", help="patch | minor | major | x.y.z"
    ),
    target_branch: str | None = typer.Option(
        None, "--target-branch", help="Branch the release PR is merged into"
    ),
    merge_method: str | None = typer.Option(
        None, "--merge-method", help="merge | squash | rebase (default: squash)"
    ),
    interactive: bool = typer.Option(False, "--interactive", help="Confirm the version"),
    sendit: bool = typer.Option(False, "--sendit", help="Never prompt (implies --skip-user-confirmation)"),
    skip_user_confirmation: bool = typer.Option(
        False, "--skip-user-confirmation", help="Never prompt while waiting on GitHub"
    ),
    no_milestones: bool = typer.Option(False, "--no-milestones", help="Do not close/create milestones"),
    no_wait_workflows: bool = typer.Option(
        False, "--no-wait-workflows", help="Do not wait for release workflows"
    ),
    checks_timeout: float | None = typer.Option(
        None, "--checks-timeout", help="Seconds to wait for PR checks"
    ),
    cwd: Path | None = typer.Option(None, "--cwd", help="Package root (default: current directory)"),
) -> None:
    """Publish the current release branch."""
    if merge_method is not None and merge_method not in _MERGE_METHODS:
        typer.echo(f"error: --merge-method must be one of {', '.join(_MERGE_METHODS)}", err=True)
        raise typer.Exit(code=int(ErrorCode.USER_ERROR))

    ctx = build_context(cwd)
    config = _apply_overrides(
        ctx.config,
        dry_run=dry_run,
        sync_target=sync_target,
        target_version=target_version,
        target_branch=target_branch,
        merge_method=merge_method,
        interactive=interactive,
        sendit=sendit,
        skip_user_confirmation=skip_user_confirmation,
        no_milestones=no_milestones,
        no_wait_workflows=no_wait_workflows,
        checks_timeout=checks_timeout,
    )

    result = run_publish(
        root=ctx.root, config=config, console=ctx.console, confirm=_confirmer(config)
    )
    exit_on_error(result, ctx)
    if isinstance(result, Err):
        return

    outcome = result.value
    ctx.console.newline()
    match outcome.status:
        case "skipped":
            ctx.console.success("no release needed")
        case "synced":
            ctx.console.success("target branch synced")
        case "dry_run":
            ctx.console.success(f"dry run complete for {outcome.tag or outcome.version}")
        case _:
            ctx.console.success(f"released {outcome.tag}")
            if outcome.release_url:
                ctx.console.print(outcome.release_url, Style.DIM)
            if outcome.next_branch:
                ctx.console.print(f"now on {outcome.next_branch}", Style.DIM)
