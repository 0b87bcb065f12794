"""Tests for rollout.git.repository module."""

from __future__ import annotations

from pathlib import Path

import pytest

from rollout.core.result import Err, Ok
from rollout.git import Repository, StatusEntry
from rollout.output.console import MockConsole
from rollout.test.fakes import FakeProcess


@pytest.fixture
def git(monkeypatch: pytest.MonkeyPatch) -> FakeProcess:
    return FakeProcess().install(monkeypatch)


def _repo(tmp_path: Path, *, dry_run: bool = False) -> Repository:
    return Repository(tmp_path, console=MockConsole(), dry_run=dry_run)


class TestStatusEntry:
    def test_untracked(self) -> None:
        assert StatusEntry(xy="??", path="new.txt").is_untracked is True
        assert StatusEntry(xy=" M", path="a.txt").is_untracked is False

    def test_pretty_xy(self) -> None:
        assert StatusEntry(xy=" M", path="a.txt").pretty_xy() == ".M"


class TestReads:
    def test_status_entries_parses_porcelain(self, tmp_path: Path, git: FakeProcess) -> None:
        git.ok("status", "--porcelain", out=" M package.json\n?? notes.md\nA  src/x.ts\n")

        result = _repo(tmp_path).status_entries()

        assert isinstance(result, Ok)
        assert [(e.xy, e.path) for e in result.value] == [
            (" M", "package.json"),
            ("??", "notes.md"),
            ("A ", "src/x.ts"),
        ]

    def test_current_branch_is_stripped(self, tmp_path: Path, git: FakeProcess) -> None:
        git.ok("rev-parse", "--abbrev-ref", "HEAD", out="release/1.2.3\n")
        assert _repo(tmp_path).current_branch() == Ok("release/1.2.3")

    def test_read_failure_carries_output(self, tmp_path: Path, git: FakeProcess) -> None:
        git.fail("rev-parse", "--git-dir", stderr="fatal: not a git repository", code=128)

        result = _repo(tmp_path).git_dir()

        assert isinstance(result, Err)
        assert result.error.command == "rev-parse --git-dir"
        assert "not a git repository" in result.error.message
        assert result.error.returncode == 128

    def test_has_staged_changes_exit_one_means_true(self, tmp_path: Path, git: FakeProcess) -> None:
        git.fail("diff", "--cached", "--quiet", code=1)
        assert _repo(tmp_path).has_staged_changes() == Ok(True)

    def test_has_staged_changes_clean(self, tmp_path: Path, git: FakeProcess) -> None:
        assert _repo(tmp_path).has_staged_changes() == Ok(False)

    def test_has_staged_changes_other_failure(self, tmp_path: Path, git: FakeProcess) -> None:
        git.fail("diff", "--cached", "--quiet", stderr="fatal: bad object", code=128)
        assert isinstance(_repo(tmp_path).has_staged_changes(), Err)

    def test_branch_existence_checks(self, tmp_path: Path, git: FakeProcess) -> None:
        git.fail("rev-parse", "--verify", "--quiet", "refs/heads/main")
        repo = _repo(tmp_path)

        assert repo.local_branch_exists("main") is False
        assert repo.remote_tracking_branch_exists("main") is True
        assert ("rev-parse", "--verify", "--quiet", "refs/remotes/origin/main") in git.calls

    def test_list_tags(self, tmp_path: Path, git: FakeProcess) -> None:
        git.ok("tag", "-l", "v1.0.0", out="v1.0.0\n")
        assert _repo(tmp_path).list_tags("v1.0.0") == Ok(("v1.0.0",))

    def test_log_subjects_range(self, tmp_path: Path, git: FakeProcess) -> None:
        git.ok("log", out="feat: a\n\nfix: b\n")

        result = _repo(tmp_path).log_subjects("abc123", "v1.0.0")

        assert result == Ok(("feat: a", "fix: b"))
        assert git.calls[-1] == ("log", "--pretty=%s", "--max-count=200", "abc123..v1.0.0")

    def test_show_file_keeps_content(self, tmp_path: Path, git: FakeProcess) -> None:
        git.ok("show", "main:package.json", out='{\n  "version": "1.0.0"\n}\n')
        result = _repo(tmp_path).show_file("main", "package.json")
        assert result == Ok('{\n  "version": "1.0.0"\n}\n')

    def test_conflicted_files(self, tmp_path: Path, git: FakeProcess) -> None:
        git.ok("diff", "--name-only", "--diff-filter=U", out="package.json\nsrc/a.ts\n")

        assert _repo(tmp_path).conflicted_files() == Ok(("package.json", "src/a.ts"))

    def test_merge_base(self, tmp_path: Path, git: FakeProcess) -> None:
        git.ok("merge-base", "HEAD", "main", out="abc123\n")

        assert _repo(tmp_path).merge_base("HEAD", "main") == Ok("abc123")


class TestMutations:
    def test_mutations_go_through_dry_run_gate(self, tmp_path: Path, git: FakeProcess) -> None:
        repo = _repo(tmp_path, dry_run=True)

        repo.create_tag("v1.0.0")
        repo.push("v1.0.0")
        repo.checkout_new_branch("release/1.0.1")
        repo.push("release/1.0.1", set_upstream=True)

        assert git.mutations == [
            (("tag", "v1.0.0"), True),
            (("push", "origin", "v1.0.0"), True),
            (("checkout", "-b", "release/1.0.1"), True),
            (("push", "-u", "origin", "release/1.0.1"), True),
        ]
        assert git.executed() == []

    def test_reads_run_even_in_dry_run(self, tmp_path: Path, git: FakeProcess) -> None:
        repo = _repo(tmp_path, dry_run=True)
        repo.status_entries()
        assert git.mutations == []
        assert git.calls == [("status", "--porcelain")]

    def test_pull_modes(self, tmp_path: Path, git: FakeProcess) -> None:
        repo = _repo(tmp_path)
        repo.pull("main")
        repo.pull("main", ff_only=True)
        repo.fast_forward_branch("main")

        assert git.executed() == [
            ("pull", "origin", "main", "--no-edit"),
            ("pull", "origin", "main", "--ff-only"),
            ("fetch", "origin", "main:main"),
        ]

    def test_mutation_failure_maps_to_git_error(self, tmp_path: Path, git: FakeProcess) -> None:
        git.fail("commit", stderr="nothing to commit")

        result = _repo(tmp_path).commit("chore: x")

        assert isinstance(result, Err)
        assert result.error.command == "commit -m chore: x"
        assert result.error.message == "nothing to commit"

    def test_merge_helpers(self, tmp_path: Path, git: FakeProcess) -> None:
        repo = _repo(tmp_path)
        repo.merge("main", message="Merge main")
        repo.checkout_ours("package.json")

        assert git.executed() == [
            ("merge", "main", "--no-edit", "-m", "Merge main"),
            ("checkout", "--ours", "package.json"),
        ]
