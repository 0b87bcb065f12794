"""Content collaborators: commit messages and release notes.

The pipeline only depends on the two protocols. The shipped defaults derive
text from git history; richer writers can be injected by callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from rollout.core.result import Err, Ok, Result
from rollout.git import Repository
from rollout.services.publish.errors import PublishError


@dataclass(frozen=True, slots=True)
class ReleaseNotes:
    title: str
    body: str


class CommitMessageWriter(Protocol):
    def commit_message(self, *, staged_files: tuple[str, ...]) -> Result[str, PublishError]: ...


class ReleaseNotesWriter(Protocol):
    def release_notes(
        self, *, version: str, from_ref: str | None, to_ref: str
    ) -> Result[ReleaseNotes, PublishError]: ...


class GitLogCommitWriter:
    def commit_message(self, *, staged_files: tuple[str, ...]) -> Result[str, PublishError]:
        if not staged_files:
            return Ok("chore(release): prepare release")
        return Ok(f"chore(release): update {', '.join(staged_files)}")


class GitLogNotesWriter:
    """Bullet list of commit subjects between two refs."""

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def release_notes(
        self, *, version: str, from_ref: str | None, to_ref: str
    ) -> Result[ReleaseNotes, PublishError]:
        subjects = self._repo.log_subjects(from_ref, to_ref)
        if isinstance(subjects, Err):
            return Err(
                PublishError(
                    kind="git_failed",
                    message=f"cannot read history {from_ref or ''}..{to_ref}",
                    hint=subjects.error.message or None,
                )
            )

        lines = [f"- {subject}" for subject in subjects.value]
        body = "\n".join(lines) if lines else "- Maintenance release"
        return Ok(ReleaseNotes(title=f"v{version}", body=f"## Changes\n\n{body}\n"))
