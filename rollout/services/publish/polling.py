"""One poll loop for everything that waits on GitHub.

The PR check poller and the release workflow poller share the same shape:
observe, count consecutive empty snapshots, escalate when nothing shows up,
escalate again on timeout. Only the observation and the policy differ.

Escalation rules:

- no signal: skip-confirmation proceeds, interactive asks, non-interactive
  proceeds.
- timeout: skip-confirmation fails, interactive asks, non-interactive fails.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from time import monotonic, sleep
from typing import Generic, Literal, TypeVar, Union

from rollout.core.result import Err, Ok, Result
from rollout.output.console import ConsoleProtocol, Style
from rollout.output.prompt import ConfirmProtocol
from rollout.services.publish.errors import PublishError, PublishErrorKind
from rollout.services.publish.timeouts import EMPTY_POLL_THRESHOLD

T = TypeVar("T")

Escalation = Literal["no_signal", "timeout"]


@dataclass(frozen=True, slots=True)
class PollPolicy:
    interval: float
    timeout: float
    empty_threshold: int = EMPTY_POLL_THRESHOLD
    initial_delay: float = 0.0


@dataclass(frozen=True, slots=True)
class Done(Generic[T]):
    value: T


@dataclass(frozen=True, slots=True)
class Pending:
    summary: str = ""


@dataclass(frozen=True, slots=True)
class Empty:
    pass


Observation = Union[Done[T], Pending, Empty]


@dataclass(frozen=True, slots=True)
class PollResult(Generic[T]):
    """``value`` is None when the operator (or the default) chose to proceed."""

    value: T | None
    reason: Literal["done", "no_signal", "timeout"]
    cycles: int


def should_proceed(
    escalation: Escalation,
    *,
    prompt: str,
    skip_confirmation: bool,
    confirm: ConfirmProtocol,
) -> bool:
    if skip_confirmation:
        return escalation == "no_signal"
    if confirm.interactive:
        return confirm.confirm(prompt)
    return escalation == "no_signal"


def poll_until(
    *,
    policy: PollPolicy,
    observe: Callable[[], Result[Observation[T], PublishError]],
    label: str,
    console: ConsoleProtocol,
    confirm: ConfirmProtocol,
    skip_confirmation: bool,
    timeout_kind: PublishErrorKind,
    empty_signal: Callable[[], Result[bool, PublishError]] | None = None,
) -> Result[PollResult[T], PublishError]:
    """Poll ``observe`` until it reports ``Done`` or an escalation resolves.

    Args:
        policy: Interval, timeout and empty-cycle threshold.
        observe: One snapshot. ``Err`` aborts the loop unchanged.
        label: What is being waited for (used in prompts and messages).
        empty_signal: Called after ``empty_threshold`` empty cycles. ``True``
            means something should eventually report, so the counter resets;
            ``False`` (or no callback) escalates as "no signal".
        timeout_kind: Error kind when a timeout is not accepted.
    """
    if policy.initial_delay > 0:
        console.print(f"waiting {policy.initial_delay:.0f}s before watching {label}", Style.DIM)
        sleep(policy.initial_delay)

    started = monotonic()
    empty_cycles = 0
    cycles = 0

    while True:
        elapsed = monotonic() - started
        if elapsed > policy.timeout:
            proceed = should_proceed(
                "timeout",
                prompt=f"Timed out after {elapsed:.0f}s waiting for {label}. Proceed anyway?",
                skip_confirmation=skip_confirmation,
                confirm=confirm,
            )
            if proceed:
                console.warning(f"timed out waiting for {label}; proceeding")
                return Ok(PollResult(value=None, reason="timeout", cycles=cycles))
            return Err(
                PublishError(
                    kind=timeout_kind,
                    message=f"Timed out after {policy.timeout:.0f}s waiting for {label}",
                    hint="Re-run publish once they finish, or raise the timeout",
                )
            )

        observed = observe()
        cycles += 1
        if isinstance(observed, Err):
            return observed

        match observed.value:
            case Done(value=value):
                return Ok(PollResult(value=value, reason="done", cycles=cycles))
            case Pending(summary=summary):
                empty_cycles = 0
                if summary:
                    console.print(summary, Style.DIM)
            case Empty():
                empty_cycles += 1
                console.print(
                    f"no {label} yet ({empty_cycles}/{policy.empty_threshold})", Style.DIM
                )
                if empty_cycles >= policy.empty_threshold:
                    expected = Ok(False) if empty_signal is None else empty_signal()
                    if isinstance(expected, Err):
                        return expected
                    if expected.value:
                        empty_cycles = 0
                    else:
                        proceed = should_proceed(
                            "no_signal",
                            prompt=f"No {label} found. Proceed without waiting?",
                            skip_confirmation=skip_confirmation,
                            confirm=confirm,
                        )
                        if not proceed:
                            return Err(
                                PublishError(
                                    kind="aborted",
                                    message=f"Aborted: no {label} reported",
                                )
                            )
                        console.warning(f"no {label} reported; proceeding")
                        return Ok(PollResult(value=None, reason="no_signal", cycles=cycles))

        sleep(policy.interval)
