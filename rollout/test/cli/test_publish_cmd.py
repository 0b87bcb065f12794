from __future__ import annotations

from pathlib import Path

import pytest
import typer
from typer.testing import CliRunner

from rollout import __version__
from rollout.cli.app import app
from rollout.cli.context import CLIContext
from rollout.core.config import PublishConfig
from rollout.core.errors import ErrorCode
from rollout.core.result import Err, Ok, Result
from rollout.output.console import ConsoleProtocol, MockConsole
from rollout.output.prompt import ConfirmProtocol
from rollout.services.publish.errors import PublishError
from rollout.services.publish.model import PublishOutcome

DEFAULTS: dict[str, object] = {
    "dry_run": False,
    "sync_target": False,
    "target_version": None,
    "target_branch": None,
    "merge_method": None,
    "interactive": False,
    "sendit": False,
    "skip_user_confirmation": False,
    "no_milestones": False,
    "no_wait_workflows": False,
    "checks_timeout": None,
    "cwd": None,
}


class _Recorder:
    def __init__(self, result: Result[PublishOutcome, PublishError]) -> None:
        self.result = result
        self.configs: list[PublishConfig] = []

    def __call__(
        self,
        *,
        root: Path,
        config: PublishConfig,
        console: ConsoleProtocol,
        confirm: ConfirmProtocol,
    ) -> Result[PublishOutcome, PublishError]:
        self.configs.append(config)
        return self.result


def _setup(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    result: Result[PublishOutcome, PublishError],
    config: PublishConfig | None = None,
) -> tuple[_Recorder, MockConsole]:
    import rollout.cli.commands.publish_cmd as publish_cmd

    console = MockConsole()
    ctx = CLIContext(root=tmp_path, config=config or PublishConfig(), console=console)
    recorder = _Recorder(result)
    monkeypatch.setattr(publish_cmd, "build_context", lambda root=None: ctx)
    monkeypatch.setattr(publish_cmd, "run_publish", recorder)
    return recorder, console


def _publish(**overrides: object) -> None:
    import rollout.cli.commands.publish_cmd as publish_cmd

    publish_cmd.publish(**{**DEFAULTS, **overrides})  # type: ignore[arg-type]


def test_released_summary(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    outcome = PublishOutcome(
        status="released",
        version="0.0.4",
        tag="v0.0.4",
        release_url="https://github.com/acme/widget/releases/tag/v0.0.4",
        next_branch="release/0.0.5",
    )
    _, console = _setup(monkeypatch, tmp_path, Ok(outcome))

    _publish()

    assert console.find("released v0.0.4")
    assert console.find("now on release/0.0.5")


def test_flags_override_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    recorder, _ = _setup(
        monkeypatch,
        tmp_path,
        Ok(PublishOutcome(status="dry_run", tag="v0.1.0")),
        config=PublishConfig(branch_targets={"release/2.x": "2.x"}, checks_timeout=60),
    )

    _publish(
        dry_run=True,
        target_version="minor",
        target_branch="develop",
        merge_method="rebase",
        sendit=True,
        no_wait_workflows=True,
        checks_timeout=900.0,
    )

    config = recorder.configs[0]
    assert config.dry_run is True
    assert config.target_version == "minor"
    assert config.target_branch == "develop"
    assert config.branch_targets == {}
    assert config.merge_method == "rebase"
    assert config.skip_confirmation is True
    assert config.wait_for_release_workflows is False
    assert config.checks_timeout == 900.0


def test_config_values_survive_without_flags(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    recorder, _ = _setup(
        monkeypatch,
        tmp_path,
        Ok(PublishOutcome(status="skipped")),
        config=PublishConfig(merge_method="merge", no_milestones=True),
    )

    _publish()

    config = recorder.configs[0]
    assert config.merge_method == "merge"
    assert config.no_milestones is True


def test_error_exit_code_follows_kind(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    error = PublishError(
        kind="checks_failed",
        message="1 check(s) failed on PR #7",
        hint="Push fixes to release/0.0.4",
        details=("unit tests: failure",),
    )
    _, console = _setup(monkeypatch, tmp_path, Err(error))

    with pytest.raises(typer.Exit) as exc:
        _publish()

    assert exc.value.exit_code == int(ErrorCode.BUILD_ERROR)
    assert console.has_error()
    assert console.find("  - unit tests: failure")
    assert console.find("hint: Push fixes")


@pytest.mark.parametrize(
    ("kind", "code"),
    [
        ("dirty_tree", ErrorCode.USER_ERROR),
        ("auth_required", ErrorCode.ENV_ERROR),
        ("tag_not_found", ErrorCode.NETWORK_ERROR),
        ("io_failed", ErrorCode.IO_ERROR),
    ],
)
def test_exit_codes(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, kind: str, code: ErrorCode) -> None:
    _setup(monkeypatch, tmp_path, Err(PublishError(kind=kind, message="x")))  # type: ignore[arg-type]

    with pytest.raises(typer.Exit) as exc:
        _publish()

    assert exc.value.exit_code == int(code)


def test_invalid_merge_method_is_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    recorder, _ = _setup(monkeypatch, tmp_path, Ok(PublishOutcome(status="released")))

    with pytest.raises(typer.Exit) as exc:
        _publish(merge_method="octopus")

    assert exc.value.exit_code == int(ErrorCode.USER_ERROR)
    assert recorder.configs == []


def test_version_flag() -> None:
    result = CliRunner().invoke(app, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_invalid_config_file_exits(tmp_path: Path) -> None:
    (tmp_path / ".rollout.toml").write_text("merge_method = [", encoding="utf-8")

    result = CliRunner().invoke(app, ["publish", "--cwd", str(tmp_path)])

    assert result.exit_code == int(ErrorCode.USER_ERROR)
