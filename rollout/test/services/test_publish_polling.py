from __future__ import annotations

from collections.abc import Callable

import pytest

from rollout.core.result import Err, Ok, Result
from rollout.output.console import MockConsole
from rollout.output.prompt import AutoConfirm
from rollout.services.publish import polling as polling_mod
from rollout.services.publish.errors import PublishError
from rollout.services.publish.polling import (
    Done,
    Empty,
    Observation,
    Pending,
    PollPolicy,
    poll_until,
    should_proceed,
)
from rollout.test.fakes import ScriptedConfirm


class FakeClock:
    """Monotonic clock that advances only when the poller sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock(monkeypatch: pytest.MonkeyPatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr(polling_mod, "monotonic", fake.monotonic)
    monkeypatch.setattr(polling_mod, "sleep", fake.sleep)
    return fake


def _scripted(
    observations: list[Observation[str]],
) -> Callable[[], Result[Observation[str], PublishError]]:
    def observe() -> Result[Observation[str], PublishError]:
        if len(observations) > 1:
            return Ok(observations.pop(0))
        return Ok(observations[0])

    return observe


POLICY = PollPolicy(interval=10, timeout=300, empty_threshold=3)


class TestShouldProceed:
    @pytest.mark.parametrize(
        ("escalation", "skip", "expected"),
        [("no_signal", True, True), ("timeout", True, False)],
    )
    def test_skip_confirmation(self, escalation: str, skip: bool, expected: bool) -> None:
        decision = should_proceed(
            escalation,  # type: ignore[arg-type]
            prompt="?",
            skip_confirmation=skip,
            confirm=ScriptedConfirm(),
        )
        assert decision is expected

    def test_interactive_asks(self) -> None:
        confirm = ScriptedConfirm(answers=[False])
        assert should_proceed("no_signal", prompt="Go?", skip_confirmation=False, confirm=confirm) is False
        assert confirm.prompts == ["Go?"]

    def test_non_interactive_defaults(self) -> None:
        auto = AutoConfirm()
        assert should_proceed("no_signal", prompt="?", skip_confirmation=False, confirm=auto) is True
        assert should_proceed("timeout", prompt="?", skip_confirmation=False, confirm=auto) is False


class TestPollUntil:
    def test_done_after_pending(self, clock: FakeClock) -> None:
        result = poll_until(
            policy=POLICY,
            observe=_scripted([Pending("1/2 complete"), Done("green")]),
            label="PR checks",
            console=MockConsole(),
            confirm=AutoConfirm(),
            skip_confirmation=False,
            timeout_kind="checks_timeout",
        )

        assert isinstance(result, Ok)
        assert result.value.value == "green"
        assert result.value.reason == "done"
        assert result.value.cycles == 2
        assert clock.sleeps == [10]

    def test_observe_error_aborts(self, clock: FakeClock) -> None:
        error = PublishError(kind="checks_failed", message="1 check(s) failed")

        result = poll_until(
            policy=POLICY,
            observe=lambda: Err(error),
            label="PR checks",
            console=MockConsole(),
            confirm=AutoConfirm(),
            skip_confirmation=False,
            timeout_kind="checks_timeout",
        )

        assert result == Err(error)

    def test_no_signal_proceeds_when_skipping_confirmation(self, clock: FakeClock) -> None:
        console = MockConsole()

        result = poll_until(
            policy=POLICY,
            observe=_scripted([Empty()]),
            label="PR checks",
            console=console,
            confirm=ScriptedConfirm(),
            skip_confirmation=True,
            timeout_kind="checks_timeout",
        )

        assert isinstance(result, Ok)
        assert result.value.reason == "no_signal"
        assert result.value.cycles == 3
        assert console.has_warning()

    def test_no_signal_declined_aborts(self, clock: FakeClock) -> None:
        result = poll_until(
            policy=POLICY,
            observe=_scripted([Empty()]),
            label="PR checks",
            console=MockConsole(),
            confirm=ScriptedConfirm(answers=[False]),
            skip_confirmation=False,
            timeout_kind="checks_timeout",
        )

        assert isinstance(result, Err)
        assert result.error.kind == "aborted"

    def test_empty_signal_resets_empty_counter(self, clock: FakeClock) -> None:
        signals: list[bool] = [True, False]

        def workflows_configured() -> Result[bool, PublishError]:
            return Ok(signals.pop(0))

        result = poll_until(
            policy=POLICY,
            observe=_scripted([Empty()]),
            label="PR checks",
            console=MockConsole(),
            confirm=AutoConfirm(),
            skip_confirmation=False,
            timeout_kind="checks_timeout",
            empty_signal=workflows_configured,
        )

        assert isinstance(result, Ok)
        assert result.value.reason == "no_signal"
        assert result.value.cycles == 6
        assert signals == []

    def test_pending_resets_empty_counter(self, clock: FakeClock) -> None:
        observations: list[Observation[str]] = [Empty(), Empty(), Pending(), Empty(), Empty(), Done("ok")]

        result = poll_until(
            policy=POLICY,
            observe=_scripted(observations),
            label="PR checks",
            console=MockConsole(),
            confirm=ScriptedConfirm(),
            skip_confirmation=False,
            timeout_kind="checks_timeout",
        )

        assert isinstance(result, Ok)
        assert result.value.reason == "done"

    def test_timeout_fails_when_skipping_confirmation(self, clock: FakeClock) -> None:
        result = poll_until(
            policy=PollPolicy(interval=10, timeout=25),
            observe=_scripted([Pending("still running")]),
            label="PR checks",
            console=MockConsole(),
            confirm=ScriptedConfirm(),
            skip_confirmation=True,
            timeout_kind="checks_timeout",
        )

        assert isinstance(result, Err)
        assert result.error.kind == "checks_timeout"

    def test_timeout_accepted_interactively(self, clock: FakeClock) -> None:
        confirm = ScriptedConfirm(answers=[True])

        result = poll_until(
            policy=PollPolicy(interval=10, timeout=25),
            observe=_scripted([Pending()]),
            label="workflow runs",
            console=MockConsole(),
            confirm=confirm,
            skip_confirmation=False,
            timeout_kind="workflow_timeout",
        )

        assert isinstance(result, Ok)
        assert result.value.reason == "timeout"
        assert result.value.value is None
        assert "Timed out" in confirm.prompts[0]

    def test_initial_delay(self, clock: FakeClock) -> None:
        poll_until(
            policy=PollPolicy(interval=15, timeout=600, initial_delay=30),
            observe=_scripted([Done("ok")]),
            label="workflow runs",
            console=MockConsole(),
            confirm=AutoConfirm(),
            skip_confirmation=False,
            timeout_kind="workflow_timeout",
        )

        assert clock.sleeps == [30]
