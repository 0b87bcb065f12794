from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal

VersionBump = Literal["major", "minor", "patch"]
CheckStatus = Literal["queued", "in_progress", "completed"]
PublishStatus = Literal["released", "skipped", "synced", "dry_run"]

FAILING_CONCLUSIONS = frozenset({"failure", "timed_out", "cancelled"})


@dataclass(frozen=True, slots=True)
class Manifest:
    """The parts of package.json the pipeline reads."""

    path: Path
    name: str
    version: str
    scripts: dict[str, str]
    raw: dict[str, object]

    def has_script(self, name: str) -> bool:
        return name in self.scripts


@dataclass(frozen=True, slots=True)
class ReleaseContext:
    current_branch: str
    target_branch: str
    version: str
    manifest: Manifest
    output_directory: Path

    @property
    def tag(self) -> str:
        return f"v{self.version}"


@dataclass(frozen=True, slots=True)
class PullRequestRef:
    number: int
    url: str
    state: str
    head_ref: str
    head_sha: str


@dataclass(frozen=True, slots=True)
class CheckRun:
    name: str
    status: str
    conclusion: str | None
    details_url: str | None = None
    summary: str | None = None

    @property
    def failed(self) -> bool:
        return self.conclusion in FAILING_CONCLUSIONS

    @property
    def completed(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True, slots=True)
class WorkflowDef:
    id: int
    name: str
    path: str
    state: str = "active"


@dataclass(frozen=True, slots=True)
class WorkflowRun:
    id: int
    name: str
    status: str
    conclusion: str | None
    created_at: datetime | None
    head_sha: str
    head_branch: str | None = None
    event: str | None = None
    url: str | None = None

    @property
    def failed(self) -> bool:
        return self.conclusion in FAILING_CONCLUSIONS

    @property
    def completed(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True, slots=True)
class ReleaseInfo:
    id: int
    tag: str
    url: str
    created_at: datetime | None
    target_commitish: str | None


@dataclass(frozen=True, slots=True)
class Milestone:
    number: int
    title: str
    state: str


@dataclass(frozen=True, slots=True)
class TagRecord:
    name: str
    exists_on_remote: bool
    attempts: int
    # True when this invocation pushed the tag (remote may lag behind).
    pushed: bool


@dataclass(frozen=True, slots=True)
class BranchSyncResult:
    in_sync: bool
    local_exists: bool
    remote_exists: bool
    local_sha: str | None = None
    remote_sha: str | None = None

    @property
    def short_local(self) -> str:
        return (self.local_sha or "")[:8]

    @property
    def short_remote(self) -> str:
        return (self.remote_sha or "")[:8]


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    status: PublishStatus
    version: str | None = None
    tag: str | None = None
    pull_request: PullRequestRef | None = None
    release_url: str | None = None
    next_branch: str | None = None
