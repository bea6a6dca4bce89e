"""Tests for the durable step runner."""

import logging
import threading
import time

import pytest

from expensemail.config import RetryPolicy
from expensemail.errors import (
    MissingPrerequisiteError,
    ModelCallError,
    StepFailedError,
    StepTimeoutError,
)
from expensemail.models import LedgerRef
from expensemail.steps import DurableStepRunner, InMemoryStepJournal


class Counter:
    """Step body that fails a fixed number of times before succeeding."""

    def __init__(self, failures=(), result=7):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    def __call__(self, *args):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def runner(journal, sleeps):
    policy = RetryPolicy(max_attempts=3, backoff_seconds=1.5, timeout_seconds=2)
    return DurableStepRunner(journal, lambda step: policy, sleep=sleeps.append)


def test_output_is_committed_and_replayed(runner, journal):
    step = Counter(result=LedgerRef(email_id=4))

    first = runner.run("run-1", "record", LedgerRef, step)
    second = runner.run("run-1", "record", LedgerRef, step)

    assert first == second == LedgerRef(email_id=4)
    assert step.calls == 1
    assert journal.committed_steps("run-1") == ["record"]


def test_runs_are_isolated(runner):
    step = Counter()

    runner.run("run-1", "record", int, step)
    runner.run("run-2", "record", int, step)

    assert step.calls == 2


def test_retryable_failure_is_retried_with_fixed_backoff(runner, sleeps):
    step = Counter(failures=[ModelCallError("503"), ModelCallError("503")])

    assert runner.run("run-1", "classify", int, step) == 7
    assert step.calls == 3
    assert sleeps == [1.5, 1.5]


def test_exhausted_budget_names_step_and_cause(runner, journal, sleeps):
    cause = ModelCallError("503")
    step = Counter(failures=[cause] * 3)

    with pytest.raises(StepFailedError) as excinfo:
        runner.run("run-1", "classify", int, step)

    assert excinfo.value.step == "classify"
    assert excinfo.value.attempts == 3
    assert excinfo.value.cause is cause
    assert len(sleeps) == 2
    assert journal.load("run-1", "classify") is None


def test_non_retryable_failure_is_raised_immediately(runner, sleeps):
    step = Counter(failures=[MissingPrerequisiteError("no id")])

    with pytest.raises(MissingPrerequisiteError) as excinfo:
        runner.run("run-1", "insert", int, step)

    assert excinfo.value.step == "insert"
    assert step.calls == 1
    assert sleeps == []


def test_unexpected_exceptions_are_retried(runner):
    step = Counter(failures=[ConnectionResetError("reset")])

    assert runner.run("run-1", "record", int, step) == 7
    assert step.calls == 2


def test_attempt_timeout(journal):
    policy = RetryPolicy(max_attempts=2, backoff_seconds=0, timeout_seconds=0.05)
    runner = DurableStepRunner(journal, lambda step: policy, sleep=lambda s: None)

    def slow():
        time.sleep(0.3)
        return 1

    with pytest.raises(StepFailedError) as excinfo:
        runner.run("run-1", "classify", int, slow)

    assert isinstance(excinfo.value.cause, StepTimeoutError)


def test_policy_is_looked_up_per_step(journal):
    policies = {"classify": RetryPolicy(max_attempts=1, backoff_seconds=0, timeout_seconds=1)}
    default = RetryPolicy(max_attempts=3, backoff_seconds=0, timeout_seconds=1)
    runner = DurableStepRunner(journal, lambda step: policies.get(step, default), sleep=lambda s: None)
    step = Counter(failures=[ModelCallError("503")])

    with pytest.raises(StepFailedError):
        runner.run("run-1", "classify", int, step)
    assert step.calls == 1


def test_in_memory_journal_keeps_first_commit():
    journal = InMemoryStepJournal()

    journal.save("run-1", "classify", "1")
    journal.save("run-1", "classify", "2")

    assert journal.load("run-1", "classify") == "1"


def _eventually(condition, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


@pytest.mark.parametrize("late_error, expected", [
    (RuntimeError("late write rejected"), "failed late: late write rejected"),
    (None, "finished late"),
])
def test_abandoned_attempt_outcome_is_logged(journal, caplog, late_error, expected):
    policy = RetryPolicy(max_attempts=1, backoff_seconds=0, timeout_seconds=0.05)
    runner = DurableStepRunner(journal, lambda step: policy, sleep=lambda s: None)
    release = threading.Event()

    def stuck():
        release.wait(2)
        if late_error is not None:
            raise late_error
        return 1

    with caplog.at_level(logging.WARNING, logger="expensemail.steps"):
        with pytest.raises(StepFailedError):
            runner.run("run-1", "insert_expense", int, stuck)
        release.set()

        assert _eventually(lambda: expected in caplog.text)
    assert "abandoned attempt of step insert_expense" in caplog.text
