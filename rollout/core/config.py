"""Typed publish configuration.

Configuration lives in ``.rollout.toml`` at the repository root. Every key is
optional; CLI flags override file values. Values that come from the process
environment (GitHub token, env var snapshot) are captured once here and
injected everywhere else, so no module reads ``os.environ`` on its own.

Example::

    target_branch = "main"
    merge_method = "squash"
    dependency_update_patterns = ["@acme/*"]
    required_env_vars = ["NPM_TOKEN"]
    checks_timeout = 900

    [branches."release/2.x"]
    target_branch = "2.x"
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_float,
    get_str,
    get_str_list,
    get_table,
)

__all__ = [
    "CONFIG_FILENAME",
    "ConfigError",
    "MergeMethod",
    "PublishConfig",
    "load_config",
    "load_config_or_default",
]

CONFIG_FILENAME = ".rollout.toml"

MergeMethod = Literal["merge", "squash", "rebase"]
_MERGE_METHODS: tuple[MergeMethod, ...] = ("merge", "squash", "rebase")

DEFAULT_TARGET_BRANCH = "main"
DEFAULT_OUTPUT_DIRECTORY = "output"
DEFAULT_CHECKS_TIMEOUT_SECONDS = 5 * 60.0
DEFAULT_RELEASE_WORKFLOWS_TIMEOUT_SECONDS = 10 * 60.0


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None


def _empty_env() -> dict[str, str]:
    return {}


def _empty_branches() -> dict[str, str]:
    return {}


@dataclass(frozen=True, slots=True)
class PublishConfig:
    """Everything a publish invocation needs to know up front.

    Attributes:
        target_branch: Trunk branch release PRs are merged into.
        branch_targets: Per source-branch override of ``target_branch``.
        merge_method: GitHub merge method for the release PR.
        target_version: ``patch``/``minor``/``major`` or an explicit ``x.y.z``.
            None means: use the version in a ``release/x.y.z`` branch name,
            otherwise bump the patch number.
        interactive: Ask the operator to confirm the version.
        dependency_update_patterns: Restrict ``npm update`` to these names/globs.
        required_env_vars: Variables that must be set before any mutation.
        checks_timeout: Seconds to wait for PR checks.
        skip_user_confirmation: Never prompt; proceed on no-signal, fail on timeout.
        sendit: Force ``skip_user_confirmation``.
        wait_for_release_workflows: Poll workflows triggered by the release.
        release_workflows_timeout: Seconds to wait for release workflows.
        release_workflow_names: Explicit workflows to watch (skips detection).
        no_milestones: Do not close/create milestones.
        output_directory: Where RELEASE_NOTES.md / RELEASE_TITLE.md are written.
        strict_release_branch: Require the current branch to be ``release/x.y.z``.
        strict_tag_validation: Refuse to create a tag whose name is not a valid ref.
        from_ref: Start ref for release notes (defaults to the target branch).
        sync_target: Only run target-branch sync recovery, then stop.
        dry_run: Echo mutations instead of running them.
        github_token: Bearer token for the GitHub API.
        environ: Snapshot of the process environment used for env var checks.
    """

    target_branch: str = DEFAULT_TARGET_BRANCH
    branch_targets: dict[str, str] = field(default_factory=_empty_branches)
    merge_method: MergeMethod = "squash"
    target_version: str | None = None
    interactive: bool = False
    dependency_update_patterns: tuple[str, ...] = ()
    required_env_vars: tuple[str, ...] = ()
    checks_timeout: float = DEFAULT_CHECKS_TIMEOUT_SECONDS
    skip_user_confirmation: bool = False
    sendit: bool = False
    wait_for_release_workflows: bool = True
    release_workflows_timeout: float = DEFAULT_RELEASE_WORKFLOWS_TIMEOUT_SECONDS
    release_workflow_names: tuple[str, ...] = ()
    no_milestones: bool = False
    output_directory: str = DEFAULT_OUTPUT_DIRECTORY
    strict_release_branch: bool = False
    strict_tag_validation: bool = True
    from_ref: str | None = None
    sync_target: bool = False
    dry_run: bool = False
    github_token: str | None = None
    environ: dict[str, str] = field(default_factory=_empty_env)

    @property
    def skip_confirmation(self) -> bool:
        """``sendit`` always wins over ``skip_user_confirmation``."""
        return self.sendit or self.skip_user_confirmation

    def target_branch_for(self, current_branch: str) -> str:
        return self.branch_targets.get(current_branch, self.target_branch)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PublishConfig:
        """Create a config from a parsed TOML mapping."""
        branches: StrDict = get_table(data, "branches") or {}
        branch_targets: dict[str, str] = {}
        for name, value in branches.items():
            table = as_str_dict(value)
            if table is None:
                continue
            target = get_str(table, "target_branch")
            if target is not None:
                branch_targets[name] = target

        merge_method = get_str(data, "merge_method") or "squash"
        if merge_method not in _MERGE_METHODS:
            raise ValueError(f"merge_method must be one of {', '.join(_MERGE_METHODS)}")

        def flag(key: str, default: bool) -> bool:
            value = get_bool(data, key)
            return default if value is None else value

        return cls(
            target_branch=get_str(data, "target_branch") or DEFAULT_TARGET_BRANCH,
            branch_targets=branch_targets,
            merge_method=merge_method,  # type: ignore[arg-type]
            target_version=get_str(data, "target_version"),
            interactive=flag("interactive", False),
            dependency_update_patterns=get_str_list(data, "dependency_update_patterns") or (),
            required_env_vars=get_str_list(data, "required_env_vars") or (),
            checks_timeout=get_float(data, "checks_timeout") or DEFAULT_CHECKS_TIMEOUT_SECONDS,
            skip_user_confirmation=flag("skip_user_confirmation", False),
            sendit=flag("sendit", False),
            wait_for_release_workflows=flag("wait_for_release_workflows", True),
            release_workflows_timeout=get_float(data, "release_workflows_timeout")
            or DEFAULT_RELEASE_WORKFLOWS_TIMEOUT_SECONDS,
            release_workflow_names=get_str_list(data, "release_workflow_names") or (),
            no_milestones=flag("no_milestones", False),
            output_directory=get_str(data, "output_directory") or DEFAULT_OUTPUT_DIRECTORY,
            strict_release_branch=flag("strict_release_branch", False),
            strict_tag_validation=flag("strict_tag_validation", True),
            from_ref=get_str(data, "from_ref"),
        )


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    import tomllib

    try:
        data_obj: object = tomllib.loads(path.read_bytes().decode("utf-8"))
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))

    data = as_str_dict(data_obj)
    if data is None:
        return Err(ConfigError("Config root must be a TOML table", path=path))
    return Ok(data)


def _with_environment(config: PublishConfig, environ: Mapping[str, str] | None) -> PublishConfig:
    from dataclasses import replace

    env = dict(os.environ if environ is None else environ)
    token = env.get("GITHUB_TOKEN") or None
    return replace(config, github_token=token, environ=env)


def load_config(
    path: Path,
    *,
    environ: Mapping[str, str] | None = None,
) -> Result[PublishConfig, ConfigError]:
    """Load ``.rollout.toml`` and capture the environment.

    Args:
        path: Path to the config file.
        environ: Environment to capture (defaults to ``os.environ``).

    Returns:
        Ok(PublishConfig) on success, Err(ConfigError) on failure.
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        config = PublishConfig.from_dict(result.value)
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))
    return Ok(_with_environment(config, environ))


def load_config_or_default(
    path: Path,
    *,
    environ: Mapping[str, str] | None = None,
) -> Result[PublishConfig, ConfigError]:
    """Like ``load_config`` but a missing file yields the defaults.

    A file that exists but is invalid is still an error.
    """
    if not path.exists():
        return Ok(_with_environment(PublishConfig(), environ))
    return load_config(path, environ=environ)
