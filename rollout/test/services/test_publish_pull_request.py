from __future__ import annotations

from pathlib import Path

import pytest

from rollout.core.result import Err, Ok
from rollout.git import Repository
from rollout.output.console import MockConsole
from rollout.output.prompt import AutoConfirm
from rollout.services.publish import polling as polling_mod
from rollout.services.publish.errors import PublishError
from rollout.services.publish.model import CheckRun, WorkflowDef
from rollout.services.publish.polling import PollPolicy
from rollout.services.publish.pull_request import (
    PR_BODY,
    merge_pull_request,
    open_pull_request,
    wait_for_checks,
)
from rollout.test.fakes import FakeGitHub, FakeProcess, make_pr


def _no_sleep(seconds: float) -> None:
    del seconds


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(polling_mod, "sleep", _no_sleep)


POLICY = PollPolicy(interval=10, timeout=300, empty_threshold=2)


def _check(name: str, status: str = "completed", conclusion: str | None = "success") -> CheckRun:
    return CheckRun(name=name, status=status, conclusion=conclusion)


def _wait(github: FakeGitHub, console: MockConsole | None = None, *, skip: bool = True):
    return wait_for_checks(
        github,
        pr=make_pr(),
        branch="release/0.0.4",
        policy=POLICY,
        skip_confirmation=skip,
        confirm=AutoConfirm(),
        console=console or MockConsole(),
    )


class TestOpenPullRequest:
    def test_title_from_latest_commit(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        git = FakeProcess().install(monkeypatch)
        git.ok("log", "-1", "--pretty=%B", out="chore(release): v0.0.4\n\nbody text\n")
        titles: list[str] = []
        github = FakeGitHub()
        original = github.create_pull_request

        def recording_create(*, head: str, base: str, title: str, body: str):
            titles.append(title)
            assert body == PR_BODY
            return original(head=head, base=base, title=title, body=body)

        monkeypatch.setattr(github, "create_pull_request", recording_create)

        result = open_pull_request(
            github,
            repo=Repository(tmp_path, console=MockConsole()),
            head="release/0.0.4",
            base="main",
            console=MockConsole(),
        )

        assert isinstance(result, Ok)
        assert result.value.number == 7
        assert titles == ["chore(release): v0.0.4"]

    def test_missing_pr_in_response(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        FakeProcess().install(monkeypatch)

        result = open_pull_request(
            FakeGitHub(created_pr=None),
            repo=Repository(tmp_path, console=MockConsole()),
            head="release/0.0.4",
            base="main",
            console=MockConsole(),
        )

        assert isinstance(result, Err)
        assert result.error.kind == "pr_missing"


class TestWaitForChecks:
    def test_waits_until_all_complete(self) -> None:
        github = FakeGitHub(
            check_snapshots=[
                [],
                [_check("build", "in_progress", None), _check("lint")],
                [_check("build"), _check("lint")],
            ]
        )

        result = _wait(github)

        assert isinstance(result, Ok)
        assert result.value.reason == "done"
        assert github.calls[0] == "get_pull_request"
        assert github.calls.count("list_check_runs") == 3

    def test_failing_check_aborts_with_hints(self) -> None:
        github = FakeGitHub(
            check_snapshots=[
                [
                    CheckRun(
                        name="unit tests",
                        status="completed",
                        conclusion="failure",
                        details_url="https://github.com/acme/widget/runs/1",
                    ),
                    _check("build", "in_progress", None),
                ]
            ]
        )

        result = _wait(github)

        assert isinstance(result, Err)
        assert result.error.kind == "checks_failed"
        assert result.error.details == ("unit tests: failure https://github.com/acme/widget/runs/1",)
        assert result.error.hint is not None
        assert "npm test" in result.error.hint
        assert "PR #7 is reused" in result.error.hint

    def test_no_checks_and_no_workflows_proceeds(self) -> None:
        github = FakeGitHub(check_snapshots=[[]])

        result = _wait(github)

        assert isinstance(result, Ok)
        assert result.value.reason == "no_signal"
        assert "list_workflows" in github.calls

    def test_follows_a_moving_head(self) -> None:
        old, new = "1" * 40, "2" * 40
        github = FakeGitHub(
            head_shas=[old, new],
            checks_by_sha={
                old: [_check("build", "in_progress", None)],
                new: [_check("build", conclusion="failure")],
            },
        )
        console = MockConsole()

        result = _wait(github, console)

        assert isinstance(result, Err)
        assert result.error.kind == "checks_failed"
        assert github.checked_shas == [old, new]
        assert console.find("head moved to 22222222")

    def test_completes_on_the_checks_of_the_new_head(self) -> None:
        old, new = "1" * 40, "2" * 40
        github = FakeGitHub(
            head_shas=[old, new],
            checks_by_sha={
                old: [_check("build", "in_progress", None)],
                new: [_check("build"), _check("lint")],
            },
        )

        result = _wait(github)

        assert isinstance(result, Ok)
        assert result.value.reason == "done"
        assert [c.name for c in result.value.value or []] == ["build", "lint"]
        assert github.calls.count("get_pull_request") == 2

    def test_configured_workflows_keep_waiting(self) -> None:
        github = FakeGitHub(
            check_snapshots=[[], [], [], [_check("ci")]],
            workflows=[WorkflowDef(id=1, name="CI", path=".github/workflows/ci.yml")],
        )

        result = _wait(github)

        assert isinstance(result, Ok)
        assert result.value.reason == "done"


class TestMerge:
    def test_merge_deletes_head_branch(self) -> None:
        github = FakeGitHub()

        result = merge_pull_request(github, pr=make_pr(), method="squash", console=MockConsole())

        assert result == Ok(None)
        assert github.calls == ["merge_pull_request", "delete_branch"]

    def test_conflict_is_reported_as_merge_conflict(self) -> None:
        github = FakeGitHub(
            merge_error=PublishError(
                kind="merge_failed",
                message="failed to merge PR #7",
                hint="HTTP 405: Pull Request is not mergeable",
            )
        )

        result = merge_pull_request(github, pr=make_pr(), method="squash", console=MockConsole())

        assert isinstance(result, Err)
        assert result.error.kind == "merge_conflict"
        assert "delete_branch" not in github.calls

    def test_other_merge_failure_passes_through(self) -> None:
        error = PublishError(kind="merge_failed", message="failed to merge PR #7", hint="HTTP 403")
        github = FakeGitHub(merge_error=error)

        result = merge_pull_request(github, pr=make_pr(), method="squash", console=MockConsole())

        assert result == Err(error)
