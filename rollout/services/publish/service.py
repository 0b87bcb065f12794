"""Publish orchestrator.

Phases, in order::

    prechecks -> discover_pr -> sync_branches -> necessity -> build
      -> merge_target -> version -> push -> pull_request -> checks -> merge
      -> checkout -> tag -> release -> rollover

An open PR for the current branch goes from ``sync_branches`` straight to
``push``: the build, version bump and PR creation already happened in an
earlier run. The tag is created only after the merge, on the target branch,
so a failed run never leaves a tag on unreleased code. In dry-run mode reads
still run, mutations are echoed, and no PR, merge or release is created.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from time import sleep

from rollout.core.config import PublishConfig
from rollout.core.result import Err, Ok, Result
from rollout.git import Repository
from rollout.output.console import ConsoleProtocol, Style
from rollout.output.prompt import ConfirmProtocol
from rollout.services.publish import branch_sync
from rollout.services.publish.build_stage import refresh_after_merge, run_build_stage
from rollout.services.publish.content import (
    CommitMessageWriter,
    GitLogCommitWriter,
    GitLogNotesWriter,
    ReleaseNotesWriter,
)
from rollout.services.publish.cycle import ensure_milestone, roll_to_next_cycle
from rollout.services.publish.errors import PublishError
from rollout.services.publish.fsm import StepOutcome, advance, finish, run_state_machine
from rollout.services.publish.gh import GitHubClient, GitHubProtocol
from rollout.services.publish.manifest import load_manifest
from rollout.services.publish.model import (
    PublishOutcome,
    PublishStatus,
    PullRequestRef,
    ReleaseContext,
    ReleaseInfo,
    TagRecord,
)
from rollout.services.publish.necessity import release_needed
from rollout.services.publish.prechecks import run_prechecks
from rollout.services.publish.pull_request import (
    checks_policy,
    find_pull_request,
    merge_pull_request,
    open_pull_request,
    wait_for_checks,
)
from rollout.services.publish.release import (
    close_release_milestone,
    create_release_with_retry,
    prepare_release_content,
    resolve_watched_workflows,
    wait_for_release_workflows,
    workflows_policy,
)
from rollout.services.publish.semver import version_from_branch
from rollout.services.publish.tagging import ensure_tag
from rollout.services.publish.timeouts import TAG_PROPAGATION_DELAY_SECONDS
from rollout.services.publish.versioning import choose_release_version, commit_version_bump


@dataclass(frozen=True, slots=True)
class PublishState:
    step: str
    status: PublishStatus = "released"
    context: ReleaseContext | None = None
    # Target branch tip before the merge; start of the release notes range.
    base_sha: str | None = None
    # Release branch head as pushed for the PR; end of the notes range.
    head_sha: str | None = None
    pull_request: PullRequestRef | None = None
    built: bool = False
    tag: TagRecord | None = None
    release: ReleaseInfo | None = None
    next_branch: str | None = None

    def ctx(self) -> ReleaseContext:
        if self.context is None:
            raise AssertionError(f"step {self.step} needs a release context")
        return self.context

    def at(self, step: str, **changes: object) -> PublishState:
        return replace(self, step=step, **changes)  # type: ignore[arg-type]


Outcome = Result[StepOutcome[PublishState], PublishError]


class PublishService:
    """Runs one publish invocation against the repository at ``root``."""

    def __init__(
        self,
        *,
        root: Path,
        config: PublishConfig,
        console: ConsoleProtocol,
        confirm: ConfirmProtocol,
        github: GitHubProtocol | None = None,
        commit_writer: CommitMessageWriter | None = None,
        notes_writer: ReleaseNotesWriter | None = None,
    ) -> None:
        self._config = config
        self._console = console
        self._confirm = confirm
        self._repo = Repository(root, console=console, dry_run=config.dry_run)
        self._github = github
        self._commit_writer = commit_writer or GitLogCommitWriter()
        self._notes_writer = notes_writer or GitLogNotesWriter(self._repo)

    @property
    def repository(self) -> Repository:
        return self._repo

    def _gh(self) -> Result[GitHubProtocol, PublishError]:
        if self._github is None:
            client = GitHubClient.from_remote(
                self._repo, token=self._config.github_token, environ=self._config.environ
            )
            if isinstance(client, Err):
                return client
            self._github = client.value
        return Ok(self._github)

    # -- entry points -------------------------------------------------------

    def publish(self) -> Result[PublishOutcome, PublishError]:
        handlers = {
            "prechecks": self._prechecks,
            "discover_pr": self._discover_pr,
            "sync_branches": self._sync_branches,
            "necessity": self._necessity,
            "build": self._build,
            "merge_target": self._merge_target,
            "version": self._version,
            "push": self._push,
            "pull_request": self._pull_request,
            "checks": self._checks,
            "merge": self._merge,
            "checkout": self._checkout,
            "tag": self._tag,
            "release": self._release,
            "rollover": self._rollover,
        }
        final = run_state_machine(
            initial_state=PublishState(step="prechecks"),
            get_step=lambda s: s.step,
            handlers=handlers,
            on_transition=self._announce,
        )
        if isinstance(final, Err):
            return final

        state = final.value
        ctx = state.context
        return Ok(
            PublishOutcome(
                status=state.status,
                version=ctx.version if ctx else None,
                tag=state.tag.name if state.tag else None,
                pull_request=state.pull_request,
                release_url=state.release.url if state.release else None,
                next_branch=state.next_branch,
            )
        )

    def sync_target(self) -> Result[PublishOutcome, PublishError]:
        """Recovery entry point: bring the local target branch up to date."""
        current = self._repo.current_branch()
        if isinstance(current, Err):
            return Err(
                PublishError(
                    kind="git_failed",
                    message="cannot determine the current branch",
                    hint=current.error.message or None,
                )
            )
        target = self._config.target_branch_for(current.value)
        self._console.header(f"Syncing {target} with origin")
        synced = branch_sync.sync_target(self._repo, target, console=self._console)
        if isinstance(synced, Err):
            return synced
        self._console.success(synced.value)
        return Ok(PublishOutcome(status="synced"))

    # -- steps ---------------------------------------------------------------

    def _announce(self, step: str, state: PublishState) -> None:
        del state
        self._console.header(f"==> {step.replace('_', ' ')}")

    def _prechecks(self, state: PublishState) -> Outcome:
        report = run_prechecks(repo=self._repo, config=self._config, console=self._console)
        if isinstance(report, Err):
            return report

        r = report.value
        base = self._repo.rev_parse(r.target_branch)
        context = ReleaseContext(
            current_branch=r.current_branch,
            target_branch=r.target_branch,
            version=r.manifest.version,
            manifest=r.manifest,
            output_directory=self._repo.path / self._config.output_directory,
        )
        return Ok(
            advance(
                state.at(
                    "discover_pr",
                    context=context,
                    base_sha=base.value if isinstance(base, Ok) else None,
                )
            )
        )

    def _discover_pr(self, state: PublishState) -> Outcome:
        ctx = state.ctx()
        if self._config.dry_run:
            self._console.print("DRY RUN: skipping pull request lookup", Style.DIM)
            return Ok(advance(state.at("sync_branches")))

        gh = self._gh()
        if isinstance(gh, Err):
            return gh
        found = find_pull_request(gh.value, head=ctx.current_branch, console=self._console)
        if isinstance(found, Err):
            return found
        if found.value is not None:
            self._console.info("open PR found; skipping dependency update, build and version bump")
        return Ok(advance(state.at("sync_branches", pull_request=found.value)))

    def _sync_branches(self, state: PublishState) -> Outcome:
        ctx = state.ctx()
        synced = branch_sync.sync_current_branch(
            self._repo, ctx.current_branch, console=self._console
        )
        if isinstance(synced, Err):
            return synced
        created = branch_sync.ensure_target_branch(
            self._repo, ctx.target_branch, console=self._console
        )
        if isinstance(created, Err):
            return created

        if not self._config.dry_run:
            # The pull may have brought a newer manifest.
            manifest = load_manifest(self._repo.path)
            if isinstance(manifest, Err):
                return manifest
            ctx = replace(ctx, version=manifest.value.version, manifest=manifest.value)
        next_step = "push" if state.pull_request is not None else "necessity"
        return Ok(advance(state.at(next_step, context=ctx)))

    def _necessity(self, state: PublishState) -> Outcome:
        ctx = state.ctx()
        needed = release_needed(
            repo=self._repo,
            target_branch=ctx.target_branch,
            current_branch=ctx.current_branch,
            console=self._console,
        )
        if isinstance(needed, Err):
            return needed
        if not needed.value:
            self._console.success(
                f"nothing to release: {ctx.current_branch} differs from "
                f"{ctx.target_branch} only by its version"
            )
            return Ok(finish(state.at("necessity", status="skipped")))
        return Ok(advance(state.at("build")))

    def _build(self, state: PublishState) -> Outcome:
        built = run_build_stage(
            repo=self._repo,
            config=self._config,
            console=self._console,
            commit_writer=self._commit_writer,
        )
        if isinstance(built, Err):
            return built
        return Ok(advance(state.at("merge_target", built=True)))

    def _merge_target(self, state: PublishState) -> Outcome:
        ctx = state.ctx()
        merged = branch_sync.merge_target_into_current(
            self._repo, ctx.target_branch, console=self._console
        )
        if isinstance(merged, Err):
            return merged
        if merged.value:
            refreshed = refresh_after_merge(
                repo=self._repo, console=self._console, commit_writer=self._commit_writer
            )
            if isinstance(refreshed, Err):
                return refreshed

        # The target may have moved; the notes range starts at its new tip.
        base = self._repo.rev_parse(ctx.target_branch)
        base_sha = base.value if isinstance(base, Ok) and base.value else state.base_sha
        return Ok(advance(state.at("version", base_sha=base_sha)))

    def _version(self, state: PublishState) -> Outcome:
        ctx = state.ctx()
        version = choose_release_version(
            repo=self._repo,
            manifest=ctx.manifest,
            current_branch=ctx.current_branch,
            target=self._config.target_version,
            interactive=self._config.interactive,
            confirm=self._confirm,
            console=self._console,
        )
        if isinstance(version, Err):
            return version

        manifest = commit_version_bump(
            repo=self._repo, manifest=ctx.manifest, version=version.value, console=self._console
        )
        if isinstance(manifest, Err):
            return manifest
        context = replace(ctx, version=version.value, manifest=manifest.value)
        return Ok(advance(state.at("push", context=context)))

    def _push(self, state: PublishState) -> Outcome:
        pushed = branch_sync.push_release_branch(
            self._repo, state.ctx().current_branch, console=self._console
        )
        if isinstance(pushed, Err):
            return pushed
        head = self._repo.rev_parse("HEAD")
        head_sha = head.value if isinstance(head, Ok) and head.value else None
        return Ok(advance(state.at("pull_request", head_sha=head_sha)))

    def _pull_request(self, state: PublishState) -> Outcome:
        ctx = state.ctx()
        if state.pull_request is not None:
            return Ok(advance(state.at("checks")))
        if self._config.dry_run:
            self._console.print(
                f"DRY RUN: would open a pull request {ctx.current_branch} -> {ctx.target_branch}",
                Style.DIM,
            )
            return Ok(advance(state.at("checkout", status="dry_run")))

        gh = self._gh()
        if isinstance(gh, Err):
            return gh
        pr = open_pull_request(
            gh.value,
            repo=self._repo,
            head=ctx.current_branch,
            base=ctx.target_branch,
            console=self._console,
        )
        if isinstance(pr, Err):
            return pr
        return Ok(advance(state.at("checks", pull_request=pr.value)))

    def _checks(self, state: PublishState) -> Outcome:
        pr = state.pull_request
        if pr is None:
            return Err(PublishError(kind="pr_missing", message="no pull request to wait on"))
        gh = self._gh()
        if isinstance(gh, Err):
            return gh
        waited = wait_for_checks(
            gh.value,
            pr=pr,
            branch=state.ctx().current_branch,
            policy=checks_policy(self._config.checks_timeout),
            skip_confirmation=self._config.skip_confirmation,
            confirm=self._confirm,
            console=self._console,
        )
        if isinstance(waited, Err):
            return waited
        return Ok(advance(state.at("merge")))

    def _merge(self, state: PublishState) -> Outcome:
        pr = state.pull_request
        if pr is None:
            return Err(PublishError(kind="pr_missing", message="no pull request to merge"))
        gh = self._gh()
        if isinstance(gh, Err):
            return gh
        merged = merge_pull_request(
            gh.value, pr=pr, method=self._config.merge_method, console=self._console
        )
        if isinstance(merged, Err):
            return merged
        return Ok(advance(state.at("checkout")))

    def _checkout(self, state: PublishState) -> Outcome:
        checked_out = branch_sync.checkout_target(
            self._repo, state.ctx().target_branch, console=self._console
        )
        if isinstance(checked_out, Err):
            return checked_out
        return Ok(advance(state.at("tag")))

    def _tag(self, state: PublishState) -> Outcome:
        ctx = state.ctx()
        if not self._config.dry_run:
            # Tag the version the target branch now carries.
            merged = load_manifest(self._repo.path)
            if isinstance(merged, Err):
                return merged
            if merged.value.version != ctx.version:
                self._console.warning(
                    f"{ctx.target_branch} is at {merged.value.version}, expected {ctx.version}; "
                    f"tagging {merged.value.version}"
                )
                ctx = replace(ctx, version=merged.value.version, manifest=merged.value)

        tag = ensure_tag(
            repo=self._repo,
            version=ctx.version,
            console=self._console,
            strict=self._config.strict_tag_validation,
        )
        if isinstance(tag, Err):
            return tag
        return Ok(advance(state.at("release", context=ctx, tag=tag.value)))

    def _release(self, state: PublishState) -> Outcome:
        ctx = state.ctx()
        if self._config.dry_run:
            self._console.print(f"DRY RUN: would create release {ctx.tag}", Style.DIM)
            if not self._config.no_milestones:
                self._console.print(f"DRY RUN: would close milestone {ctx.version}", Style.DIM)
            return Ok(advance(state.at("rollover")))

        gh = self._gh()
        if isinstance(gh, Err):
            return gh

        if state.tag is not None and state.tag.pushed:
            self._console.print("waiting for GitHub to see the pushed tag", Style.DIM)
            sleep(TAG_PROPAGATION_DELAY_SECONDS)

        notes = prepare_release_content(
            output_directory=ctx.output_directory,
            version=ctx.version,
            from_ref=self._config.from_ref or state.base_sha,
            to_ref=state.head_sha or ctx.tag,
            notes_writer=self._notes_writer,
            dry_run=False,
            console=self._console,
        )
        if isinstance(notes, Err):
            return notes

        release = create_release_with_retry(
            gh.value,
            tag=ctx.tag,
            notes=notes.value,
            console=self._console,
            target_commitish=ctx.target_branch,
        )
        if isinstance(release, Err):
            return release

        if self._config.wait_for_release_workflows:
            waited = self._wait_for_workflows(gh.value, ctx=ctx, release=release.value)
            if isinstance(waited, Err):
                return waited
        else:
            self._console.print("not waiting for release workflows (disabled)", Style.DIM)

        if not self._config.no_milestones:
            closed = close_release_milestone(gh.value, version=ctx.version, console=self._console)
            if isinstance(closed, Err):
                self._console.warning(f"could not close milestone {ctx.version}: {closed.error.message}")

        return Ok(advance(state.at("rollover", release=release.value)))

    def _wait_for_workflows(
        self, gh: GitHubProtocol, *, ctx: ReleaseContext, release: ReleaseInfo
    ) -> Result[None, PublishError]:
        watched = resolve_watched_workflows(
            gh,
            names=self._config.release_workflow_names,
            ref=ctx.tag,
            console=self._console,
        )
        if isinstance(watched, Err):
            return watched

        sha = self._repo.rev_parse(f"{ctx.tag}^{{commit}}")
        waited = wait_for_release_workflows(
            gh,
            release=release,
            workflows=watched.value,
            commit_sha=sha.value if isinstance(sha, Ok) else None,
            policy=workflows_policy(self._config.release_workflows_timeout),
            skip_confirmation=self._config.skip_confirmation,
            confirm=self._confirm,
            console=self._console,
        )
        if isinstance(waited, Err):
            return waited
        return Ok(None)

    def _rollover(self, state: PublishState) -> Outcome:
        branch = roll_to_next_cycle(repo=self._repo, console=self._console)
        if isinstance(branch, Err):
            return branch

        next_version = version_from_branch(branch.value)
        if next_version and not self._config.no_milestones:
            if self._config.dry_run:
                self._console.print(f"DRY RUN: would ensure milestone {next_version}", Style.DIM)
            else:
                gh = self._gh()
                if isinstance(gh, Err):
                    return gh
                ensured = ensure_milestone(gh.value, version=next_version, console=self._console)
                if isinstance(ensured, Err):
                    self._console.warning(
                        f"could not create milestone {next_version}: {ensured.error.message}"
                    )
        return Ok(finish(state.at("rollover", next_branch=branch.value)))


def run_publish(
    *,
    root: Path,
    config: PublishConfig,
    console: ConsoleProtocol,
    confirm: ConfirmProtocol,
    github: GitHubProtocol | None = None,
) -> Result[PublishOutcome, PublishError]:
    service = PublishService(
        root=root, config=config, console=console, confirm=confirm, github=github
    )
    if config.sync_target:
        return service.sync_target()
    return service.publish()
