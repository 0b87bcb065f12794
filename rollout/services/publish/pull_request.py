"""Release pull request: discover or create, wait for checks, merge."""

from __future__ import annotations

from rollout.core.result import Err, Ok, Result
from rollout.git import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.output.prompt import ConfirmProtocol
from rollout.services.publish.errors import PublishError
from rollout.services.publish.gh import GitHubProtocol
from rollout.services.publish.model import CheckRun, PullRequestRef
from rollout.services.publish.polling import (
    Done,
    Empty,
    Observation,
    Pending,
    PollPolicy,
    PollResult,
    poll_until,
)
from rollout.services.publish.timeouts import CHECKS_POLL_INTERVAL_SECONDS

PR_BODY = "Automated release PR."

_TEST_MARKERS = ("test", "spec", "jest", "vitest", "mocha", "coverage")
_LINT_MARKERS = ("lint", "eslint", "prettier", "format", "style")
_BUILD_MARKERS = ("build", "compile", "tsc", "bundle", "typecheck")
_CONFLICT_MARKERS = ("not mergeable", "merge conflict")


def checks_policy(timeout: float) -> PollPolicy:
    return PollPolicy(interval=CHECKS_POLL_INTERVAL_SECONDS, timeout=timeout)


def find_pull_request(
    github: GitHubProtocol, *, head: str, console: ConsoleProtocol
) -> Result[PullRequestRef | None, PublishError]:
    found = github.find_open_pull_request(head)
    if isinstance(found, Err):
        return found
    if found.value is not None:
        console.info(f"found open PR #{found.value.number}: {found.value.url}")
    return found


def open_pull_request(
    github: GitHubProtocol,
    *,
    repo: Repository,
    head: str,
    base: str,
    console: ConsoleProtocol,
) -> Result[PullRequestRef, PublishError]:
    """Open ``head`` -> ``base`` titled after the latest commit."""
    message = repo.last_commit_message()
    if isinstance(message, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message="cannot read the latest commit message",
                hint=message.error.message or None,
            )
        )
    lines = message.value.strip().splitlines()
    title = lines[0].strip() if lines else f"Release {head}"

    created = github.create_pull_request(head=head, base=base, title=title, body=PR_BODY)
    if isinstance(created, Err):
        return created
    if created.value is None:
        return Err(
            PublishError(
                kind="pr_missing",
                message=f"GitHub did not return a pull request for {head} -> {base}",
                hint=f"Check https://github.com/{github.slug}/pulls",
            )
        )
    console.success(f"opened PR #{created.value.number}: {created.value.url}")
    return Ok(created.value)


def _category_hint(names: list[str]) -> list[str]:
    lowered = [n.lower() for n in names]
    hints: list[str] = []
    if any(m in n for n in lowered for m in _TEST_MARKERS):
        hints.append("Tests are failing: run `npm test` locally and fix the failures.")
    if any(m in n for n in lowered for m in _LINT_MARKERS):
        hints.append("Lint is failing: run `npm run lint` locally and fix the reported issues.")
    if any(m in n for n in lowered for m in _BUILD_MARKERS):
        hints.append("The build is failing: run `npm run build` locally and fix the errors.")
    return hints


def failed_checks_error(
    failed: list[CheckRun], *, pr: PullRequestRef, branch: str
) -> PublishError:
    details: list[str] = []
    for check in failed:
        line = f"{check.name}: {check.conclusion}"
        if check.summary:
            line += f" ({check.summary})"
        if check.details_url:
            line += f" {check.details_url}"
        details.append(line)

    hints = _category_hint([c.name for c in failed])
    hints.append(
        f"Push fixes to {branch}; PR #{pr.number} is reused when publish is re-run."
    )
    return PublishError(
        kind="checks_failed",
        message=f"{len(failed)} check(s) failed on PR #{pr.number}",
        hint=" ".join(hints),
        details=tuple(details),
    )


def wait_for_checks(
    github: GitHubProtocol,
    *,
    pr: PullRequestRef,
    branch: str,
    policy: PollPolicy,
    skip_confirmation: bool,
    confirm: ConfirmProtocol,
    console: ConsoleProtocol,
) -> Result[PollResult[list[CheckRun]], PublishError]:
    """Poll the check runs of the PR head until they all complete.

    The head commit is re-read on every cycle: a fix pushed while waiting
    moves the head, and only the checks of the new head count. A failing
    conclusion aborts immediately. Check lists are eventually consistent:
    a run seen queued may already be complete on the next poll.
    """
    seen: list[str] = []

    def observe() -> Result[Observation[list[CheckRun]], PublishError]:
        head = github.get_pull_request(pr.number)
        if isinstance(head, Err):
            return head
        sha = head.value.head_sha or pr.head_sha
        if seen and seen[-1] != sha:
            console.info(f"PR #{pr.number} head moved to {sha[:8]}; watching its checks")
        seen.append(sha)

        runs = github.list_check_runs(sha)
        if isinstance(runs, Err):
            return runs
        if not runs.value:
            return Ok(Empty())

        failed = [c for c in runs.value if c.failed]
        if failed:
            return Err(failed_checks_error(failed, pr=pr, branch=branch))

        pending = [c for c in runs.value if not c.completed]
        if not pending:
            return Ok(Done(runs.value))
        done = len(runs.value) - len(pending)
        names = ", ".join(c.name for c in pending[:5])
        return Ok(Pending(f"checks: {done}/{len(runs.value)} complete; waiting on {names}"))

    def workflows_configured() -> Result[bool, PublishError]:
        workflows = github.list_workflows()
        if isinstance(workflows, Err):
            return workflows
        if workflows.value:
            console.print(
                f"{len(workflows.value)} workflow(s) configured; still waiting for checks",
                Style.DIM,
            )
        return Ok(bool(workflows.value))

    console.print(f"waiting for checks on PR #{pr.number}", Style.DIM)
    result = poll_until(
        policy=policy,
        observe=observe,
        label="PR checks",
        console=console,
        confirm=confirm,
        skip_confirmation=skip_confirmation,
        timeout_kind="checks_timeout",
        empty_signal=workflows_configured,
    )
    if isinstance(result, Ok) and result.value.reason == "done":
        console.success(f"all {len(result.value.value or [])} check(s) passed")
    return result


def merge_pull_request(
    github: GitHubProtocol,
    *,
    pr: PullRequestRef,
    method: str,
    console: ConsoleProtocol,
) -> Result[None, PublishError]:
    merged = github.merge_pull_request(pr.number, method=method)
    if isinstance(merged, Err):
        text = f"{merged.error.message}\n{merged.error.hint or ''}".lower()
        if any(marker in text for marker in _CONFLICT_MARKERS):
            return Err(
                PublishError(
                    kind="merge_conflict",
                    message=f"PR #{pr.number} cannot be merged because of conflicts",
                    hint=(
                        f"Merge the target branch into {pr.head_ref or 'the release branch'}, "
                        "resolve the conflicts, push, then re-run publish"
                    ),
                    details=(merged.error.hint,) if merged.error.hint else (),
                )
            )
        return merged
    console.success(f"merged PR #{pr.number} ({method})")

    if pr.head_ref:
        deleted = github.delete_branch(pr.head_ref)
        if isinstance(deleted, Err):
            console.warning(f"could not delete {pr.head_ref}: {deleted.error.message}")
        else:
            console.print(f"deleted remote branch {pr.head_ref}", Style.DIM)
    return Ok(None)
