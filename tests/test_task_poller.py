# tests/test_task_poller.py

import pytest

from task_poller import (
    AsyncTaskPoller,
    PollerState,
    PollPolicy,
    StatusReport,
    TaskStatus,
    default_classify,
    poll_task,
)

from .fakes import FakeClock


class ScriptedStatus:
    """check_status callable that plays back a list of reports/exceptions."""

    def __init__(self, script):
        self.script = list(script)
        self.calls: list[str] = []

    def __call__(self, task_id: str) -> StatusReport:
        self.calls.append(task_id)
        item = self.script[0] if len(self.script) == 1 else self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


PENDING = StatusReport("IN_PROGRESS")


def _poller(script, policy=None, clock=None):
    clock = clock or FakeClock()
    check = ScriptedStatus(script)
    poller = AsyncTaskPoller(
        "task-1",
        check,
        policy or PollPolicy(max_wait_ms=9000, poll_interval_ms=3000),
        clock=clock,
        sleep=clock.sleep,
    )
    return poller, check, clock


def test_never_completing_task_times_out_after_budget():
    poller, check, clock = _poller([PENDING])

    outcome = poller.run()

    assert outcome.status == TaskStatus.TIMEOUT
    assert outcome.attempts == 3
    assert outcome.elapsed_ms == 9000
    assert outcome.wait_time_seconds == 9
    assert outcome.result is None
    assert poller.state == PollerState.TIMED_OUT
    assert clock.sleeps == [3.0, 3.0, 3.0]
    assert check.calls == ["task-1"] * 3


def test_attempts_match_expected_attempts_for_pending_task():
    policy = PollPolicy(max_wait_ms=10000, poll_interval_ms=3000)
    poller, _, _ = _poller([PENDING], policy=policy)

    outcome = poller.run()

    assert policy.expected_attempts == 4
    assert outcome.attempts == policy.expected_attempts


def test_completed_with_result_stops_immediately():
    poller, check, clock = _poller([PENDING, StatusReport("COMPLETED", "https://cdn.example/v.mp4")])

    outcome = poller.run()

    assert outcome.status == TaskStatus.COMPLETED
    assert outcome.succeeded
    assert outcome.result == "https://cdn.example/v.mp4"
    assert outcome.attempts == 2
    assert outcome.elapsed_ms == 3000
    assert len(check.calls) == 2
    assert poller.state == PollerState.SUCCEEDED


def test_completed_without_result_keeps_polling():
    poller, _, _ = _poller(
        [StatusReport("COMPLETED"), StatusReport("COMPLETED", "  "), StatusReport("COMPLETED", "https://x/a.mp3")]
    )

    outcome = poller.run()

    assert outcome.status == TaskStatus.COMPLETED
    assert outcome.attempts == 3
    assert outcome.result == "https://x/a.mp3"


def test_failed_status_is_terminal():
    poller, check, _ = _poller([PENDING, StatusReport("FAILED")])

    outcome = poller.run()

    assert outcome.status == TaskStatus.FAILED
    assert not outcome.succeeded
    assert outcome.attempts == 2
    assert outcome.result is None
    assert len(check.calls) == 2
    assert poller.state == PollerState.FAILED


def test_status_labels_are_case_insensitive():
    poller, _, _ = _poller([StatusReport("completed", "https://x/1.mp4")])

    assert poller.run().status == TaskStatus.COMPLETED


def test_check_errors_count_as_inconclusive():
    poller, _, _ = _poller(
        [ConnectionError("reset"), StatusReport(None), StatusReport("COMPLETED", "https://x/2.mp4")]
    )

    outcome = poller.run()

    assert outcome.status == TaskStatus.COMPLETED
    assert outcome.attempts == 3
    assert outcome.transient_errors == 1


def test_persistent_errors_end_in_timeout():
    poller, _, _ = _poller([RuntimeError("boom")])

    outcome = poller.run()

    assert outcome.status == TaskStatus.TIMEOUT
    assert outcome.attempts == 3
    assert outcome.transient_errors == 3


def test_poller_runs_only_once():
    poller, _, _ = _poller([StatusReport("FAILED")])
    assert poller.state == PollerState.NOT_STARTED
    poller.run()

    with pytest.raises(RuntimeError):
        poller.run()


def test_empty_task_id_is_rejected():
    with pytest.raises(ValueError):
        AsyncTaskPoller("", lambda _: PENDING, PollPolicy(9000, 3000))


@pytest.mark.parametrize(
    "max_wait_ms, poll_interval_ms",
    [(9000, 0), (9000, -1), (-1, 3000), (1000, 3000)],
)
def test_invalid_policies(max_wait_ms, poll_interval_ms):
    with pytest.raises(ValueError):
        PollPolicy(max_wait_ms=max_wait_ms, poll_interval_ms=poll_interval_ms)


def test_zero_budget_makes_no_attempts():
    policy = PollPolicy(max_wait_ms=0, poll_interval_ms=3000, allow_short_budget=True)
    poller, check, _ = _poller([PENDING], policy=policy)

    outcome = poller.run()

    assert outcome.status == TaskStatus.TIMEOUT
    assert outcome.attempts == 0
    assert check.calls == []


def test_short_budget_polls_once():
    policy = PollPolicy(max_wait_ms=1000, poll_interval_ms=3000, allow_short_budget=True)
    poller, _, _ = _poller([PENDING], policy=policy)

    outcome = poller.run()

    assert outcome.status == TaskStatus.TIMEOUT
    assert outcome.attempts == 1


def test_outcome_to_dict():
    outcome = poll_task(
        "task-9",
        lambda _: StatusReport("COMPLETED", "https://x/9.mp4"),
        PollPolicy(9000, 3000),
        clock=FakeClock(),
        sleep=lambda _: None,
    )

    assert outcome.to_dict() == {
        "task_id": "task-9",
        "status": "COMPLETED",
        "result": "https://x/9.mp4",
        "elapsed_ms": 0,
        "attempts": 1,
        "transient_errors": 0,
    }


@pytest.mark.parametrize(
    "label, expected",
    [
        ("COMPLETED", TaskStatus.COMPLETED),
        (" Completed ", TaskStatus.COMPLETED),
        ("FAILED", TaskStatus.FAILED),
        ("failed", TaskStatus.FAILED),
        ("IN_PROGRESS", TaskStatus.PENDING),
        ("CREATED", TaskStatus.PENDING),
        (None, TaskStatus.PENDING),
        (42, TaskStatus.PENDING),
    ],
)
def test_default_classify(label, expected):
    assert default_classify(label) == expected


def test_completes_on_third_check_within_budget():
    poller, check, _ = _poller([PENDING, PENDING, StatusReport("COMPLETED", "https://x/3.mp4")])

    outcome = poller.run()

    assert outcome.status == TaskStatus.COMPLETED
    assert len(check.calls) == 3
    assert 6000 <= outcome.elapsed_ms <= 9000


@pytest.mark.parametrize("max_wait_ms, poll_interval_ms", [(3000, 3000), (10000, 3000), (7000, 2000), (600000, 3000)])
def test_run_time_is_bounded(max_wait_ms, poll_interval_ms):
    policy = PollPolicy(max_wait_ms=max_wait_ms, poll_interval_ms=poll_interval_ms)
    poller, check, _ = _poller([PENDING], policy=policy)

    outcome = poller.run()

    assert outcome.elapsed_ms <= max_wait_ms + poll_interval_ms
    assert len(check.calls) == policy.expected_attempts
