from __future__ import annotations

import json
from pathlib import Path

import pytest

from rollout.core.config import PublishConfig
from rollout.core.result import Err, Ok
from rollout.git import Repository
from rollout.output.console import MockConsole
from rollout.services.publish.prechecks import run_prechecks, scan_npmrc_vars
from rollout.test.fakes import FakeProcess

SHA_A = "a" * 40
SHA_B = "b" * 40


@pytest.fixture
def git(monkeypatch: pytest.MonkeyPatch) -> FakeProcess:
    fake = FakeProcess().install(monkeypatch)
    fake.ok("rev-parse", "--abbrev-ref", "HEAD", out="release/0.0.4")
    fake.ok("rev-parse", "main", out=SHA_A)
    fake.ok("rev-parse", "origin/main", out=SHA_A)
    return fake


def _package(root: Path, *, scripts: dict[str, str] | None = None) -> None:
    data = {
        "name": "widget",
        "version": "0.0.4",
        "scripts": {"prepublishOnly": "npm test"} if scripts is None else scripts,
    }
    (root / "package.json").write_text(json.dumps(data, indent=2), encoding="utf-8")


def _run(tmp_path: Path, console: MockConsole, **config: object):
    repo = Repository(tmp_path, console=console)
    return run_prechecks(repo=repo, config=PublishConfig(**config), console=console)  # type: ignore[arg-type]


def test_happy_path_reports_branches_and_manifest(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    console = MockConsole()

    result = _run(tmp_path, console)

    assert isinstance(result, Ok)
    assert result.value.current_branch == "release/0.0.4"
    assert result.value.target_branch == "main"
    assert result.value.manifest.version == "0.0.4"
    assert git.mutations == []


def test_not_a_repository(tmp_path: Path, git: FakeProcess) -> None:
    git.fail("rev-parse", "--git-dir", stderr="fatal: not a git repository", code=128)

    result = _run(tmp_path, MockConsole())

    assert isinstance(result, Err)
    assert result.error.kind == "not_a_repository"


def test_dirty_tree_lists_files(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    git.ok("status", "--porcelain", out=" M src/index.ts\n?? scratch.txt\n")

    result = _run(tmp_path, MockConsole())

    assert isinstance(result, Err)
    assert result.error.kind == "dirty_tree"
    assert result.error.details == (".M src/index.ts", "?? scratch.txt")


def test_refuses_to_publish_from_target(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    git.ok("rev-parse", "--abbrev-ref", "HEAD", out="main")

    result = _run(tmp_path, MockConsole())

    assert isinstance(result, Err)
    assert result.error.kind == "on_target_branch"


def test_strict_release_branch(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    git.ok("rev-parse", "--abbrev-ref", "HEAD", out="feature/login")

    result = _run(tmp_path, MockConsole(), strict_release_branch=True)

    assert isinstance(result, Err)
    assert result.error.kind == "invalid_branch"


def test_target_out_of_sync(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    git.ok("rev-parse", "origin/main", out=SHA_B)

    result = _run(tmp_path, MockConsole())

    assert isinstance(result, Err)
    assert result.error.kind == "branch_out_of_sync"
    assert "not in sync with remote" in result.error.message
    assert "aaaaaaaa" in result.error.message
    assert result.error.hint == "Run: rollout publish --sync-target"


def test_sync_check_skipped_when_target_missing_locally(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    git.fail("rev-parse", "--verify", "--quiet", "refs/heads/main")
    console = MockConsole()

    result = _run(tmp_path, console)

    assert isinstance(result, Ok)
    assert console.find("does not exist locally")
    assert ("fetch", "origin", "--quiet") not in git.calls


def test_fetch_failure_only_warns(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    git.fail("fetch", stderr="Could not resolve host: github.com")
    console = MockConsole()

    assert isinstance(_run(tmp_path, console), Ok)
    assert console.has_warning()


def test_missing_prepublish_script(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path, scripts={"test": "jest"})

    result = _run(tmp_path, MockConsole())

    assert isinstance(result, Err)
    assert result.error.kind == "script_missing"


def test_missing_manifest(tmp_path: Path, git: FakeProcess) -> None:
    result = _run(tmp_path, MockConsole())

    assert isinstance(result, Err)
    assert result.error.kind == "manifest_missing"


def test_npmrc_variables_are_required(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    (tmp_path / ".npmrc").write_text(
        "//registry.npmjs.org/:_authToken=${NPM_TOKEN}\n", encoding="utf-8"
    )

    result = _run(tmp_path, MockConsole(), required_env_vars=("CI_USER",), environ={"CI_USER": "me"})

    assert isinstance(result, Err)
    assert result.error.kind == "env_missing"
    assert "NPM_TOKEN" in result.error.message
    assert "CI_USER" not in result.error.message


def test_missing_env_only_warns_in_dry_run(tmp_path: Path, git: FakeProcess) -> None:
    _package(tmp_path)
    console = MockConsole()

    result = _run(tmp_path, console, required_env_vars=("NPM_TOKEN",), dry_run=True)

    assert isinstance(result, Ok)
    assert console.find("NPM_TOKEN")


def test_scan_npmrc_vars(tmp_path: Path) -> None:
    (tmp_path / ".npmrc").write_text(
        "@acme:registry=https://npm.pkg.github.com\n"
        "//npm.pkg.github.com/:_authToken=${GH_PACKAGES_TOKEN}\n"
        "//registry.npmjs.org/:_authToken=$NPM_TOKEN\n"
        "//other/:_authToken=${NPM_TOKEN}\n",
        encoding="utf-8",
    )

    assert scan_npmrc_vars(tmp_path, console=MockConsole()) == ("GH_PACKAGES_TOKEN", "NPM_TOKEN")
