"""Fail-fast gate run before any mutation.

Checks run in a fixed order and each one fails with its own error kind, so
the operator always sees the specific cause.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from rollout.core.config import PublishConfig
from rollout.core.result import Err, Ok, Result
from rollout.git import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.services.publish.branch_sync import require_in_sync
from rollout.services.publish.errors import PublishError
from rollout.services.publish.manifest import PREPUBLISH_SCRIPT, load_manifest
from rollout.services.publish.model import Manifest
from rollout.services.publish.semver import version_from_branch

NPMRC_FILENAME = ".npmrc"
_PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}|\$([A-Z_][A-Z0-9_]*)")
_MAX_LISTED_FILES = 10


@dataclass(frozen=True, slots=True)
class PrecheckReport:
    current_branch: str
    target_branch: str
    manifest: Manifest
    env_vars: tuple[str, ...]


def scan_npmrc_vars(root: Path, *, console: ConsoleProtocol) -> tuple[str, ...]:
    """Variable names referenced as ``${VAR}`` / ``$VAR`` in ``.npmrc``."""
    path = root / NPMRC_FILENAME
    if not path.exists():
        return ()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        console.warning(f"cannot read {path}: {e}")
        return ()

    names: list[str] = []
    for m in _PLACEHOLDER_RE.finditer(text):
        name = (m.group(1) or m.group(2) or "").strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


def check_environment(
    *,
    root: Path,
    config: PublishConfig,
    console: ConsoleProtocol,
) -> Result[tuple[str, ...], PublishError]:
    required = list(config.required_env_vars)
    for name in scan_npmrc_vars(root, console=console):
        if name not in required:
            required.append(name)

    missing = [name for name in required if not config.environ.get(name)]
    if not missing:
        return Ok(tuple(required))

    message = f"Missing required environment variables: {', '.join(missing)}"
    if config.dry_run:
        console.warning(f"{message} (ignored in dry run)")
        return Ok(tuple(required))
    return Err(
        PublishError(
            kind="env_missing",
            message=message,
            hint="Export them before publishing (see required_env_vars and .npmrc)",
        )
    )


def run_prechecks(
    *,
    repo: Repository,
    config: PublishConfig,
    console: ConsoleProtocol,
) -> Result[PrecheckReport, PublishError]:
    git_dir = repo.git_dir()
    if isinstance(git_dir, Err):
        return Err(
            PublishError(
                kind="not_a_repository",
                message=f"{repo.path} is not a git repository",
                hint=git_dir.error.message or None,
            )
        )

    entries = repo.status_entries()
    if isinstance(entries, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message="git status failed",
                hint=entries.error.message or None,
            )
        )
    if entries.value:
        listed = tuple(f"{e.pretty_xy()} {e.path}" for e in entries.value[:_MAX_LISTED_FILES])
        return Err(
            PublishError(
                kind="dirty_tree",
                message=f"Working directory has {len(entries.value)} uncommitted change(s)",
                hint="Commit or stash your changes before publishing",
                details=listed,
            )
        )

    current = repo.current_branch()
    if isinstance(current, Err):
        return Err(
            PublishError(
                kind="git_failed",
                message="cannot determine the current branch",
                hint=current.error.message or None,
            )
        )
    current_branch = current.value
    target_branch = config.target_branch_for(current_branch)

    if current_branch == target_branch:
        return Err(
            PublishError(
                kind="on_target_branch",
                message=f"Cannot publish from the target branch '{target_branch}'",
                hint="Switch to a release branch, e.g. git checkout -b release/<version>",
            )
        )
    if config.strict_release_branch and version_from_branch(current_branch) is None:
        return Err(
            PublishError(
                kind="invalid_branch",
                message=f"Branch '{current_branch}' does not match release/<x.y.z>",
                hint="Disable strict_release_branch or rename the branch",
            )
        )

    synced = require_in_sync(repo, target_branch, console=console)
    if isinstance(synced, Err):
        return synced

    manifest = load_manifest(repo.path)
    if isinstance(manifest, Err):
        return manifest

    if not manifest.value.has_script(PREPUBLISH_SCRIPT):
        return Err(
            PublishError(
                kind="script_missing",
                message=f"package.json has no '{PREPUBLISH_SCRIPT}' script",
                hint='Add e.g. "prepublishOnly": "npm run lint && npm run build && npm test"',
            )
        )

    env = check_environment(root=repo.path, config=config, console=console)
    if isinstance(env, Err):
        return env

    console.print(
        f"prechecks passed: {current_branch} -> {target_branch}, "
        f"{manifest.value.name or 'package'}@{manifest.value.version}",
        Style.DIM,
    )
    return Ok(
        PrecheckReport(
            current_branch=current_branch,
            target_branch=target_branch,
            manifest=manifest.value,
            env_vars=env.value,
        )
    )
