from __future__ import annotations

import json

from rollout.core.result import Err, Ok, Result
from rollout.core.structured import as_str_dict
from rollout.git import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.services.publish.errors import PublishError
from rollout.services.publish.manifest import LOCKFILE_FILENAME, MANIFEST_FILENAME, without_version

_MANIFEST_FILES = frozenset({MANIFEST_FILENAME, LOCKFILE_FILENAME})


def _manifest_at(repo: Repository, ref: str) -> dict[str, object] | None:
    shown = repo.show_file(ref, MANIFEST_FILENAME)
    if isinstance(shown, Err):
        return None
    try:
        obj: object = json.loads(shown.value)
    except json.JSONDecodeError:
        return None
    return as_str_dict(obj)


def release_needed(
    *,
    repo: Repository,
    target_branch: str,
    current_branch: str,
    console: ConsoleProtocol,
) -> Result[bool, PublishError]:
    """False only when the branch differs from the target by a version bump alone.

    Anything that cannot be determined counts as "needed".
    """
    if not repo.ref_exists(target_branch):
        console.print(f"{target_branch} not found locally; assuming a release is needed", Style.DIM)
        return Ok(True)

    changed = repo.changed_files(target_branch, current_branch)
    if isinstance(changed, Err):
        console.print("cannot diff against the target branch; assuming a release is needed", Style.DIM)
        return Ok(True)
    if not changed.value:
        return Ok(True)
    if not set(changed.value) <= _MANIFEST_FILES:
        return Ok(True)

    base = _manifest_at(repo, target_branch)
    head = _manifest_at(repo, current_branch)
    if base is None or head is None:
        return Ok(True)
    if without_version(base) == without_version(head):
        console.print("only the version field differs from the target branch", Style.DIM)
        return Ok(False)
    return Ok(True)
