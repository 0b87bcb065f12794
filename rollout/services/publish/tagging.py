from __future__ import annotations

from rollout.core.result import Err, Ok, Result
from rollout.git import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.services.publish.errors import PublishError
from rollout.services.publish.model import TagRecord
from rollout.services.publish.semver import is_valid_ref_name, tag_name


def _head_sha(repo: Repository) -> str | None:
    # A dry run never checked out the target branch, so HEAD proves nothing.
    if repo.dry_run:
        return None
    head = repo.rev_parse("HEAD")
    return head.value if isinstance(head, Ok) and head.value else None


def _stale_tag_error(name: str, tagged: str, head: str, *, where: str) -> PublishError:
    return PublishError(
        kind="tag_exists",
        message=f"Tag {name} already exists {where} at {tagged[:8]}, not at HEAD {head[:8]}",
        hint=(
            f"The tag names other code than the merged release. Delete it "
            f"(git tag -d {name}; git push origin :refs/tags/{name}) or choose another version"
        ),
    )


def ensure_tag(
    *,
    repo: Repository,
    version: str,
    console: ConsoleProtocol,
    strict: bool = True,
) -> Result[TagRecord, PublishError]:
    """Create ``v<version>`` on HEAD and make sure origin has it.

    Runs on the target branch after the merge, so the tag names released
    code. Idempotent: a local or remote tag already on HEAD is reused. A tag
    pointing anywhere else is refused. ``pushed`` tells the release step
    whether the remote may still be catching up.
    """
    name = tag_name(version)
    if not is_valid_ref_name(name):
        if strict:
            return Err(
                PublishError(
                    kind="invalid_tag",
                    message=f"Invalid tag name: {name}",
                    hint="Tag names must be valid git refs (see git check-ref-format)",
                )
            )
        console.warning(f"tag name {name} failed validation; attempting anyway")

    head = _head_sha(repo)
    listed = repo.list_tags(name)
    if isinstance(listed, Err):
        console.print(f"git tag -l {name} failed; treating the tag as absent", Style.DIM)
    exists_locally = isinstance(listed, Ok) and name in listed.value

    if exists_locally:
        tagged = repo.rev_parse(f"{name}^{{commit}}")
        if head and isinstance(tagged, Ok) and tagged.value != head:
            return Err(_stale_tag_error(name, tagged.value, head, where="locally"))
        console.print(f"tag {name} already exists locally", Style.DIM)
    else:
        created = repo.create_tag(name)
        if isinstance(created, Err):
            return Err(
                PublishError(
                    kind="git_failed",
                    message=f"git tag {name} failed",
                    hint=created.error.message or None,
                )
            )
        if not repo.dry_run:
            console.success(f"created tag {name}")

    remote = repo.remote_tag_ref(name)
    if isinstance(remote, Ok) and remote.value.strip():
        remote_sha = remote.value.split()[0]
        if head and remote_sha != head:
            return Err(_stale_tag_error(name, remote_sha, head, where="on origin"))
        console.print(f"tag {name} already on origin", Style.DIM)
        return Ok(TagRecord(name=name, exists_on_remote=True, attempts=0, pushed=False))
    if isinstance(remote, Err):
        console.print(f"git ls-remote failed; pushing {name} anyway", Style.DIM)

    pushed = repo.push(name)
    if isinstance(pushed, Err):
        if "already exists" in pushed.error.message:
            console.print(f"tag {name} already on origin", Style.DIM)
            return Ok(TagRecord(name=name, exists_on_remote=True, attempts=1, pushed=False))
        return Err(
            PublishError(
                kind="git_failed",
                message=f"git push origin {name} failed",
                hint=pushed.error.message or None,
            )
        )

    if not repo.dry_run:
        console.success(f"pushed tag {name}")
    return Ok(TagRecord(name=name, exists_on_remote=True, attempts=1, pushed=True))
