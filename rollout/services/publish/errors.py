from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

PublishErrorKind = Literal[
    # prechecks
    "not_a_repository",
    "dirty_tree",
    "on_target_branch",
    "invalid_branch",
    "branch_out_of_sync",
    "manifest_missing",
    "manifest_invalid",
    "script_missing",
    "env_missing",
    # build / version / tag
    "build_failed",
    "git_failed",
    "invalid_version",
    "invalid_tag",
    "tag_exists",
    "tag_not_found",
    # host service
    "auth_required",
    "invalid_remote",
    "github_failed",
    "pr_missing",
    "checks_failed",
    "checks_timeout",
    "merge_conflict",
    "merge_failed",
    "release_failed",
    "workflow_failed",
    "workflow_timeout",
    # branch sync
    "sync_conflict",
    "sync_diverged",
    # operator / io
    "aborted",
    "io_failed",
]


@dataclass(frozen=True, slots=True)
class PublishError:
    kind: PublishErrorKind
    message: str
    hint: str | None = None
    # One line per failed check / workflow run.
    details: tuple[str, ...] = ()
