"""
Remote task polling.

Job-style provider APIs hand back a task id on creation and expose a status
endpoint. AsyncTaskPoller takes over from there: it checks the status on a
fixed interval until the task completes, fails, or the wait budget runs out,
and returns a single PollOutcome.

The poller does no logging and keeps no state beyond one run, so callers can
run as many as they like side by side.
"""
import math
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


class PollerState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    POLLING = "POLLING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"


@dataclass(frozen=True)
class PollPolicy:
    """Wait budget and cadence for one kind of remote task."""

    max_wait_ms: int
    poll_interval_ms: int
    # A budget shorter than one interval polls at most once (zero times for
    # max_wait_ms=0); callers have to ask for that explicitly.
    allow_short_budget: bool = False

    def __post_init__(self):
        if self.poll_interval_ms <= 0:
            raise ValueError(f"poll_interval_ms must be > 0, got {self.poll_interval_ms}")
        if self.max_wait_ms < 0:
            raise ValueError(f"max_wait_ms must be >= 0, got {self.max_wait_ms}")
        if self.max_wait_ms < self.poll_interval_ms and not self.allow_short_budget:
            raise ValueError(
                f"max_wait_ms ({self.max_wait_ms}) is shorter than poll_interval_ms "
                f"({self.poll_interval_ms}); pass allow_short_budget=True if intended"
            )

    @property
    def expected_attempts(self) -> int:
        """Attempts made against a task that never leaves the pending state."""
        return math.ceil(self.max_wait_ms / self.poll_interval_ms)


@dataclass(frozen=True)
class StatusReport:
    """One answer from a provider's status endpoint."""

    status: str | None
    result: str | None = None


@dataclass(frozen=True)
class PollOutcome:
    task_id: str
    status: TaskStatus
    elapsed_ms: int
    attempts: int
    result: str | None = None
    transient_errors: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @property
    def wait_time_seconds(self) -> int:
        return self.elapsed_ms // 1000

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "result": self.result,
            "elapsed_ms": self.elapsed_ms,
            "attempts": self.attempts,
            "transient_errors": self.transient_errors,
        }


def default_classify(label: str | None) -> TaskStatus:
    """Map a provider status label to COMPLETED, FAILED or PENDING."""
    if not isinstance(label, str):
        return TaskStatus.PENDING
    norm = label.strip().upper()
    if norm == "COMPLETED":
        return TaskStatus.COMPLETED
    if norm == "FAILED":
        return TaskStatus.FAILED
    return TaskStatus.PENDING


def _has_result(result) -> bool:
    if result is None:
        return False
    if isinstance(result, str):
        return bool(result.strip())
    return True


class AsyncTaskPoller:
    """
    Polls one remote task until it reaches a terminal state.

    check_status is called with the task id and returns a StatusReport.
    Anything it raises is treated as an inconclusive poll. classify turns the
    provider's label into a TaskStatus; COMPLETED only counts once a result is
    present.

    clock returns seconds (monotonic) and sleep takes seconds, so both can be
    swapped out in tests.
    """

    def __init__(
        self,
        task_id: str,
        check_status: Callable[[str], StatusReport],
        policy: PollPolicy,
        classify: Callable[[str | None], TaskStatus] = default_classify,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        if not isinstance(task_id, str) or not task_id.strip():
            raise ValueError("task_id must be a non-empty string")
        self.task_id = task_id
        self.policy = policy
        self._check_status = check_status
        self._classify = classify
        self._clock = clock or time.monotonic
        self._sleep = sleep or time.sleep
        self._state = PollerState.NOT_STARTED

    @property
    def state(self) -> PollerState:
        return self._state

    def run(self) -> PollOutcome:
        if self._state != PollerState.NOT_STARTED:
            raise RuntimeError(f"poller for task {self.task_id} already ran (state={self._state.value})")
        self._state = PollerState.POLLING

        started = self._clock()
        attempts = 0
        transient_errors = 0

        def elapsed_ms() -> int:
            return int((self._clock() - started) * 1000)

        while elapsed_ms() < self.policy.max_wait_ms:
            attempts += 1
            report = None
            try:
                report = self._check_status(self.task_id)
            except Exception:
                transient_errors += 1

            if report is not None:
                status = self._classify(getattr(report, "status", None))
                result = getattr(report, "result", None)
                if status == TaskStatus.COMPLETED and _has_result(result):
                    self._state = PollerState.SUCCEEDED
                    return PollOutcome(
                        task_id=self.task_id,
                        status=TaskStatus.COMPLETED,
                        elapsed_ms=elapsed_ms(),
                        attempts=attempts,
                        result=result,
                        transient_errors=transient_errors,
                    )
                if status == TaskStatus.FAILED:
                    self._state = PollerState.FAILED
                    return PollOutcome(
                        task_id=self.task_id,
                        status=TaskStatus.FAILED,
                        elapsed_ms=elapsed_ms(),
                        attempts=attempts,
                        transient_errors=transient_errors,
                    )

            self._sleep(self.policy.poll_interval_ms / 1000.0)

        self._state = PollerState.TIMED_OUT
        return PollOutcome(
            task_id=self.task_id,
            status=TaskStatus.TIMEOUT,
            elapsed_ms=elapsed_ms(),
            attempts=attempts,
            transient_errors=transient_errors,
        )


def poll_task(
    task_id: str,
    check_status: Callable[[str], StatusReport],
    policy: PollPolicy,
    **kwargs,
) -> PollOutcome:
    return AsyncTaskPoller(task_id, check_status, policy, **kwargs).run()
