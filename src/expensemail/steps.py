"""Durable, retryable pipeline steps.

A step's output is written to a journal keyed by (run_id, step_name) once
the step succeeds. Running the same step of the same run again returns the
journaled output instead of executing it, which lets an interrupted run
resume at the first step that never committed.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from functools import partial
from typing import Any, Callable, Optional, TypeVar

from pydantic import TypeAdapter

from .config import RetryPolicy
from .errors import PipelineError, StepFailedError, StepTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _log_abandoned_attempt(run_id: str, step_name: str, future: Future) -> None:
    """Report the late outcome of an attempt that exceeded its timeout."""
    error = future.exception()
    if error is not None:
        logger.warning(f"Run {run_id[:12]}: abandoned attempt of step {step_name} failed late: {error}")
    else:
        logger.warning(f"Run {run_id[:12]}: abandoned attempt of step {step_name} finished late")


class StepJournal(ABC):
    """Storage for committed step outputs."""

    @abstractmethod
    def load(self, run_id: str, step_name: str) -> Optional[str]:
        """Return the committed output as JSON, or None if not committed."""
        pass

    @abstractmethod
    def save(self, run_id: str, step_name: str, output: str) -> None:
        """Commit a step output (JSON). An existing commit is kept."""
        pass


class InMemoryStepJournal(StepJournal):
    """Process-local journal, for tests and one-shot CLI runs."""

    def __init__(self):
        self._entries: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def load(self, run_id: str, step_name: str) -> Optional[str]:
        with self._lock:
            return self._entries.get((run_id, step_name))

    def save(self, run_id: str, step_name: str, output: str) -> None:
        with self._lock:
            self._entries.setdefault((run_id, step_name), output)

    def committed_steps(self, run_id: str) -> list[str]:
        with self._lock:
            return [step for (run, step) in self._entries if run == run_id]


class DurableStepRunner:
    """Executes steps with journaling, per-attempt timeout and fixed backoff."""

    def __init__(
        self,
        journal: StepJournal,
        policy_for: Callable[[str], RetryPolicy],
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the runner.

        Args:
            journal: Where committed outputs are stored
            policy_for: Returns the retry policy for a step name
            sleep: Delay function between attempts
        """
        self.journal = journal
        self.policy_for = policy_for
        self._sleep = sleep

    def run(
        self,
        run_id: str,
        step_name: str,
        output_type: type[T],
        fn: Callable[..., T],
        *args: Any,
    ) -> T:
        """Run a step once per run, replaying its committed output if present.

        Args:
            run_id: Identifier of the pipeline run
            step_name: Name of the step within the run
            output_type: Type used to (de)serialize the output
            fn: Step body; must be safe to re-execute after a partial attempt
            *args: Arguments for fn

        Returns:
            The step output

        Raises:
            PipelineError: Non-retryable failures as raised by the step
            StepFailedError: If every attempt failed with a retryable error
        """
        adapter = TypeAdapter(output_type)

        committed = self.journal.load(run_id, step_name)
        if committed is not None:
            logger.info(f"Run {run_id[:12]}: step {step_name} already committed, replaying")
            return adapter.validate_json(committed)

        policy = self.policy_for(step_name)

        def attempt() -> T:
            output = fn(*args)
            self.journal.save(run_id, step_name, adapter.dump_json(output).decode("utf-8"))
            # An abandoned earlier attempt may have committed first
            committed = self.journal.load(run_id, step_name)
            return adapter.validate_json(committed) if committed is not None else output

        last_error: Optional[BaseException] = None
        for attempt_num in range(1, policy.max_attempts + 1):
            try:
                output = self._run_with_timeout(run_id, step_name, policy.timeout_seconds, attempt)
                if attempt_num > 1:
                    logger.info(f"Run {run_id[:12]}: step {step_name} succeeded on attempt {attempt_num}")
                return output
            except PipelineError as e:
                if e.step is None:
                    e.step = step_name
                if not e.retryable:
                    logger.error(f"Run {run_id[:12]}: step {step_name} failed permanently: {e.message}")
                    raise
                last_error = e
            except Exception as e:
                last_error = e

            logger.warning(
                f"Run {run_id[:12]}: step {step_name} attempt "
                f"{attempt_num}/{policy.max_attempts} failed: {last_error}"
            )
            if attempt_num < policy.max_attempts:
                self._sleep(policy.backoff_seconds)

        raise StepFailedError(step_name, policy.max_attempts, last_error) from last_error

    @staticmethod
    def _run_with_timeout(run_id: str, step_name: str, timeout: float, fn: Callable[[], T]) -> T:
        """Run fn in a worker thread and stop waiting after timeout seconds.

        A timed-out attempt keeps running in its thread; only its result is
        abandoned. How it eventually ends is logged.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"step-{step_name}")
        try:
            future = executor.submit(fn)
            try:
                return future.result(timeout=timeout)
            except FuturesTimeoutError:
                if future.done():
                    # The step itself raised TimeoutError
                    raise
                future.add_done_callback(partial(_log_abandoned_attempt, run_id, step_name))
                raise StepTimeoutError(f"attempt exceeded {timeout}s", step=step_name) from None
        finally:
            executor.shutdown(wait=False)
