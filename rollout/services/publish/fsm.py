from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Generic, TypeVar

from rollout.core.result import Err, Ok, Result
from rollout.services.publish.errors import PublishError

S = TypeVar("S")


@dataclass(frozen=True, slots=True)
class StepAdvance(Generic[S]):
    state: S


@dataclass(frozen=True, slots=True)
class StepFinish(Generic[S]):
    state: S


StepOutcome = StepAdvance[S] | StepFinish[S]
StepHandler = Callable[[S], Result[StepOutcome[S], PublishError]]
GetStep = Callable[[S], str]
OnTransition = Callable[[str, S], None]


def advance(state: S) -> StepAdvance[S]:
    return StepAdvance(state=state)


def finish(state: S) -> StepFinish[S]:
    return StepFinish(state=state)


def run_state_machine(
    *,
    initial_state: S,
    get_step: GetStep[S],
    handlers: Mapping[str, StepHandler[S]],
    on_transition: OnTransition[S] | None = None,
) -> Result[S, PublishError]:
    """Run handlers until one finishes; the final state is returned."""
    current = initial_state

    while True:
        step = get_step(current)
        handler = handlers.get(step)
        if handler is None:
            return Err(
                PublishError(
                    kind="aborted",
                    message=f"unknown publish step: {step}",
                )
            )

        if on_transition is not None:
            on_transition(step, current)

        outcome = handler(current)
        if isinstance(outcome, Err):
            return outcome

        if isinstance(outcome.value, StepFinish):
            return Ok(outcome.value.state)

        current = outcome.value.state
