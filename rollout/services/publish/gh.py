"""GitHub access through ``gh api``.

Every call runs ``gh api`` with ``GH_TOKEN`` set from the configured token, so
the operator's own ``gh`` login is never consulted. Reads are retried on
transient network errors; writes are not.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from time import sleep
from typing import Protocol
from urllib.parse import quote

from rollout.core.result import Err, Ok, Result
from rollout.core.structured import (
    StrDict,
    as_obj_list,
    as_str_dict,
    get_int,
    get_list,
    get_str,
    get_table,
)
from rollout.git import Repository
from rollout.platform.process import ProcessError
from rollout.platform.process import run as run_process
from rollout.services.publish.errors import PublishError, PublishErrorKind
from rollout.services.publish.model import (
    CheckRun,
    Milestone,
    PullRequestRef,
    ReleaseInfo,
    WorkflowDef,
    WorkflowRun,
)
from rollout.services.publish.timeouts import (
    GH_READ_RETRY_ATTEMPTS,
    GH_READ_RETRY_DELAY_SECONDS,
    GH_TIMEOUT_SECONDS,
)

_REMOTE_RE = re.compile(r"github\.com[/:]([\w-]+)/([\w.-]+?)(?:\.git)?/?$")

FieldValue = str | int | bool


class GitHubProtocol(Protocol):
    """Host-service operations the publish pipeline consumes."""

    @property
    def slug(self) -> str: ...

    def find_open_pull_request(self, head: str) -> Result[PullRequestRef | None, PublishError]: ...

    def create_pull_request(
        self, *, head: str, base: str, title: str, body: str
    ) -> Result[PullRequestRef | None, PublishError]: ...

    def get_pull_request(self, number: int) -> Result[PullRequestRef, PublishError]: ...

    def merge_pull_request(self, number: int, *, method: str) -> Result[None, PublishError]: ...

    def delete_branch(self, branch: str) -> Result[None, PublishError]: ...

    def list_check_runs(self, sha: str) -> Result[list[CheckRun], PublishError]: ...

    def list_workflows(self) -> Result[list[WorkflowDef], PublishError]: ...

    def list_workflow_runs(
        self, workflow_id: int, *, event: str = "release"
    ) -> Result[list[WorkflowRun], PublishError]: ...

    def get_file_text(self, path: str, *, ref: str) -> Result[str, PublishError]: ...

    def create_release(
        self, *, tag: str, name: str, body: str, target_commitish: str | None = None
    ) -> Result[ReleaseInfo, PublishError]: ...

    def list_milestones(self, *, state: str = "all") -> Result[list[Milestone], PublishError]: ...

    def close_milestone(self, number: int) -> Result[None, PublishError]: ...

    def create_milestone(self, title: str) -> Result[Milestone, PublishError]: ...


def parse_remote_url(url: str) -> tuple[str, str] | None:
    """``git@github.com:owner/repo.git`` -> ``("owner", "repo")``."""
    m = _REMOTE_RE.search(url.strip())
    if m is None:
        return None
    return (m.group(1), m.group(2))


def _is_transient_gh_error(error: ProcessError) -> bool:
    text = error.output.lower()
    markers = (
        "timed out",
        "timeout",
        "connection reset",
        "connection refused",
        "temporarily unavailable",
        "service unavailable",
        "bad gateway",
        "gateway timeout",
        "tls handshake timeout",
        "network is unreachable",
        "http 429",
        "http 500",
        "http 502",
        "http 503",
        "http 504",
    )
    if error.returncode == -1 and "timed out" in text:
        return True
    return any(marker in text for marker in markers)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _parse_pull_request(data: StrDict) -> PullRequestRef | None:
    number = get_int(data, "number")
    url = get_str(data, "html_url")
    if number is None or url is None:
        return None
    head = get_table(data, "head") or {}
    return PullRequestRef(
        number=number,
        url=url,
        state=get_str(data, "state") or "open",
        head_ref=get_str(head, "ref") or "",
        head_sha=get_str(head, "sha") or "",
    )


def _parse_check_run(data: StrDict) -> CheckRun | None:
    name = get_str(data, "name")
    status = get_str(data, "status")
    if name is None or status is None:
        return None
    output = get_table(data, "output") or {}
    summary = get_str(output, "title") or get_str(output, "summary")
    return CheckRun(
        name=name,
        status=status,
        conclusion=get_str(data, "conclusion"),
        details_url=get_str(data, "details_url") or get_str(data, "html_url"),
        summary=summary,
    )


def _parse_workflow_run(data: StrDict) -> WorkflowRun | None:
    run_id = get_int(data, "id")
    status = get_str(data, "status")
    if run_id is None or status is None:
        return None
    return WorkflowRun(
        id=run_id,
        name=get_str(data, "name") or str(run_id),
        status=status,
        conclusion=get_str(data, "conclusion"),
        created_at=parse_timestamp(get_str(data, "created_at")),
        head_sha=get_str(data, "head_sha") or "",
        head_branch=get_str(data, "head_branch"),
        event=get_str(data, "event"),
        url=get_str(data, "html_url"),
    )


class GitHubClient:
    """``gh api`` backed implementation of ``GitHubProtocol``."""

    def __init__(
        self,
        *,
        root: Path,
        owner: str,
        repo: str,
        token: str | None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.root = root
        self.owner = owner
        self.repo = repo
        self._token = token
        self._environ = dict(environ or {})

    @classmethod
    def from_remote(
        cls,
        repository: Repository,
        *,
        token: str | None,
        environ: Mapping[str, str] | None = None,
    ) -> Result[GitHubClient, PublishError]:
        url = repository.remote_url("origin")
        if isinstance(url, Err):
            return Err(
                PublishError(
                    kind="invalid_remote",
                    message="cannot read the origin remote URL",
                    hint=url.error.message,
                )
            )
        parsed = parse_remote_url(url.value)
        if parsed is None:
            return Err(
                PublishError(
                    kind="invalid_remote",
                    message=f"origin is not a GitHub repository: {url.value}",
                    hint="Expected github.com[/:]<owner>/<repo>.git",
                )
            )
        owner, repo = parsed
        return Ok(cls(root=repository.path, owner=owner, repo=repo, token=token, environ=environ))

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    # -- plumbing ----------------------------------------------------------

    def _env(self) -> Result[dict[str, str], PublishError]:
        if not self._token:
            return Err(
                PublishError(
                    kind="auth_required",
                    message="GITHUB_TOKEN is not set",
                    hint="Export a token with repo scope: export GITHUB_TOKEN=...",
                )
            )
        env = dict(self._environ)
        env["GH_TOKEN"] = self._token
        return Ok(env)

    def _api(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        fields: tuple[tuple[str, FieldValue], ...] = (),
        kind: PublishErrorKind = "github_failed",
        message: str | None = None,
    ) -> Result[str, PublishError]:
        env = self._env()
        if isinstance(env, Err):
            return env

        cmd = ["gh", "api", "-X", method, endpoint]
        for key, value in fields:
            if isinstance(value, str):
                cmd.extend(["-f", f"{key}={value}"])
            else:
                rendered = str(value).lower() if isinstance(value, bool) else str(value)
                cmd.extend(["-F", f"{key}={rendered}"])

        attempts = GH_READ_RETRY_ATTEMPTS if method == "GET" else 1
        for attempt in range(attempts):
            result = run_process(cmd, cwd=self.root, env=env.value, timeout=GH_TIMEOUT_SECONDS)
            if isinstance(result, Ok):
                return result

            error = result.error
            if attempt < attempts - 1 and _is_transient_gh_error(error):
                sleep(GH_READ_RETRY_DELAY_SECONDS * (attempt + 1))
                continue

            return Err(
                PublishError(
                    kind=kind,
                    message=message or f"gh api {method} {endpoint} failed",
                    hint=error.output or None,
                )
            )

        return Err(PublishError(kind=kind, message=message or f"gh api {endpoint} failed"))

    def _api_json(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        fields: tuple[tuple[str, FieldValue], ...] = (),
        kind: PublishErrorKind = "github_failed",
        message: str | None = None,
    ) -> Result[object, PublishError]:
        result = self._api(endpoint, method=method, fields=fields, kind=kind, message=message)
        if isinstance(result, Err):
            return result
        if not result.value.strip():
            return Ok(None)
        try:
            obj: object = json.loads(result.value)
        except json.JSONDecodeError as e:
            return Err(
                PublishError(
                    kind="github_failed",
                    message=f"gh api returned invalid JSON: {e}",
                    hint=endpoint,
                )
            )
        return Ok(obj)

    def _api_dict(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        fields: tuple[tuple[str, FieldValue], ...] = (),
        kind: PublishErrorKind = "github_failed",
        message: str | None = None,
    ) -> Result[StrDict, PublishError]:
        obj = self._api_json(endpoint, method=method, fields=fields, kind=kind, message=message)
        if isinstance(obj, Err):
            return obj
        data = as_str_dict(obj.value)
        if data is None:
            return Err(PublishError(kind="github_failed", message=f"unexpected payload: {endpoint}"))
        return Ok(data)

    def _api_list(
        self, endpoint: str, *, key: str | None = None
    ) -> Result[list[StrDict], PublishError]:
        obj = self._api_json(endpoint)
        if isinstance(obj, Err):
            return obj

        raw: object = obj.value
        if key is not None:
            data = as_str_dict(raw)
            raw = get_list(data, key) if data is not None else None
        items = as_obj_list(raw)
        if items is None:
            return Err(PublishError(kind="github_failed", message=f"unexpected payload: {endpoint}"))
        return Ok([d for d in (as_str_dict(item) for item in items) if d is not None])

    # -- pull requests -----------------------------------------------------

    def find_open_pull_request(self, head: str) -> Result[PullRequestRef | None, PublishError]:
        head_q = quote(f"{self.owner}:{head}", safe="")
        items = self._api_list(f"repos/{self.slug}/pulls?state=open&head={head_q}&per_page=10")
        if isinstance(items, Err):
            return items
        for item in items.value:
            pr = _parse_pull_request(item)
            if pr is not None:
                return Ok(pr)
        return Ok(None)

    def create_pull_request(
        self, *, head: str, base: str, title: str, body: str
    ) -> Result[PullRequestRef | None, PublishError]:
        obj = self._api_json(
            f"repos/{self.slug}/pulls",
            method="POST",
            fields=(("head", head), ("base", base), ("title", title), ("body", body)),
            message=f"failed to create pull request {head} -> {base}",
        )
        if isinstance(obj, Err):
            return obj
        data = as_str_dict(obj.value)
        return Ok(_parse_pull_request(data) if data is not None else None)

    def get_pull_request(self, number: int) -> Result[PullRequestRef, PublishError]:
        data = self._api_dict(f"repos/{self.slug}/pulls/{number}")
        if isinstance(data, Err):
            return data
        pr = _parse_pull_request(data.value)
        if pr is None:
            return Err(PublishError(kind="github_failed", message=f"unexpected payload: PR #{number}"))
        return Ok(pr)

    def merge_pull_request(self, number: int, *, method: str) -> Result[None, PublishError]:
        result = self._api(
            f"repos/{self.slug}/pulls/{number}/merge",
            method="PUT",
            fields=(("merge_method", method),),
            kind="merge_failed",
            message=f"failed to merge PR #{number}",
        )
        if isinstance(result, Err):
            return result
        return Ok(None)

    def delete_branch(self, branch: str) -> Result[None, PublishError]:
        result = self._api(
            f"repos/{self.slug}/git/refs/heads/{quote(branch, safe='/')}",
            method="DELETE",
            message=f"failed to delete branch {branch}",
        )
        if isinstance(result, Err):
            return result
        return Ok(None)

    # -- checks / workflows ------------------------------------------------

    def list_check_runs(self, sha: str) -> Result[list[CheckRun], PublishError]:
        items = self._api_list(
            f"repos/{self.slug}/commits/{sha}/check-runs?per_page=100", key="check_runs"
        )
        if isinstance(items, Err):
            return items
        return Ok([c for c in (_parse_check_run(d) for d in items.value) if c is not None])

    def list_workflows(self) -> Result[list[WorkflowDef], PublishError]:
        items = self._api_list(f"repos/{self.slug}/actions/workflows?per_page=100", key="workflows")
        if isinstance(items, Err):
            return items

        out: list[WorkflowDef] = []
        for d in items.value:
            wf_id = get_int(d, "id")
            path = get_str(d, "path")
            if wf_id is None or path is None:
                continue
            out.append(
                WorkflowDef(
                    id=wf_id,
                    name=get_str(d, "name") or path,
                    path=path,
                    state=get_str(d, "state") or "active",
                )
            )
        return Ok(out)

    def list_workflow_runs(
        self, workflow_id: int, *, event: str = "release"
    ) -> Result[list[WorkflowRun], PublishError]:
        items = self._api_list(
            f"repos/{self.slug}/actions/workflows/{workflow_id}/runs?event={event}&per_page=20",
            key="workflow_runs",
        )
        if isinstance(items, Err):
            return items
        return Ok([r for r in (_parse_workflow_run(d) for d in items.value) if r is not None])

    def get_file_text(self, path: str, *, ref: str) -> Result[str, PublishError]:
        # Contents API, so the ref does not need to be checked out.
        endpoint = f"repos/{self.slug}/contents/{path}?ref={quote(ref, safe='')}"
        data = self._api_dict(endpoint)
        if isinstance(data, Err):
            return data

        enc = get_str(data.value, "encoding")
        content = get_str(data.value, "content")
        if enc != "base64" or content is None:
            return Err(
                PublishError(
                    kind="github_failed",
                    message=f"unexpected contents encoding for {path}",
                    hint=endpoint,
                )
            )
        try:
            return Ok(base64.b64decode(content, validate=False).decode("utf-8"))
        except (binascii.Error, ValueError) as e:
            return Err(
                PublishError(kind="github_failed", message=f"failed to decode {path}: {e}")
            )

    # -- releases / milestones ---------------------------------------------

    def create_release(
        self, *, tag: str, name: str, body: str, target_commitish: str | None = None
    ) -> Result[ReleaseInfo, PublishError]:
        fields: list[tuple[str, FieldValue]] = [("tag_name", tag), ("name", name), ("body", body)]
        if target_commitish:
            fields.append(("target_commitish", target_commitish))
        data = self._api_dict(
            f"repos/{self.slug}/releases",
            method="POST",
            fields=tuple(fields),
            kind="release_failed",
            message=f"failed to create release {tag}",
        )
        if isinstance(data, Err):
            return data

        release_id = get_int(data.value, "id")
        if release_id is None:
            return Err(PublishError(kind="release_failed", message=f"unexpected release payload: {tag}"))
        return Ok(
            ReleaseInfo(
                id=release_id,
                tag=get_str(data.value, "tag_name") or tag,
                url=get_str(data.value, "html_url") or "",
                created_at=parse_timestamp(get_str(data.value, "created_at")),
                target_commitish=get_str(data.value, "target_commitish"),
            )
        )

    def list_milestones(self, *, state: str = "all") -> Result[list[Milestone], PublishError]:
        items = self._api_list(f"repos/{self.slug}/milestones?state={state}&per_page=100")
        if isinstance(items, Err):
            return items

        out: list[Milestone] = []
        for d in items.value:
            number = get_int(d, "number")
            title = get_str(d, "title")
            if number is None or title is None:
                continue
            out.append(Milestone(number=number, title=title, state=get_str(d, "state") or "open"))
        return Ok(out)

    def close_milestone(self, number: int) -> Result[None, PublishError]:
        result = self._api(
            f"repos/{self.slug}/milestones/{number}",
            method="PATCH",
            fields=(("state", "closed"),),
            message=f"failed to close milestone #{number}",
        )
        if isinstance(result, Err):
            return result
        return Ok(None)

    def create_milestone(self, title: str) -> Result[Milestone, PublishError]:
        data = self._api_dict(
            f"repos/{self.slug}/milestones",
            method="POST",
            fields=(("title", title),),
            message=f"failed to create milestone {title}",
        )
        if isinstance(data, Err):
            return data
        number = get_int(data.value, "number")
        if number is None:
            return Err(PublishError(kind="github_failed", message=f"unexpected milestone payload: {title}"))
        return Ok(Milestone(number=number, title=title, state=get_str(data.value, "state") or "open"))
