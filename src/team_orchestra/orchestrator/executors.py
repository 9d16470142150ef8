"""Executors perform a task on behalf of an agent."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Protocol

from team_orchestra.orchestrator.errors import ExecutionFailure
from team_orchestra.orchestrator.models import Agent, Task, TaskOutcome


class TaskExecutor(Protocol):
    """Protocol implemented by task executors.

    Implementations run in agent worker threads and must not touch the
    orchestrator state. Raise ``ExecutionFailure`` (or any exception) to
    report a failed attempt.
    """

    def execute(self, task: Task, agent: Agent) -> TaskOutcome:
        """Run one attempt of ``task`` as ``agent``."""


class EchoExecutor:
    """Deterministic local executor used by the CLI and tests.

    ``transient_failures`` makes the first N attempts of every task fail with a
    transient error, which exercises the retry path end to end.
    """

    def __init__(
        self,
        *,
        delay_seconds: float = 0.0,
        transient_failures: int = 0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.delay_seconds = delay_seconds
        self.transient_failures = transient_failures
        self._sleep = sleep
        self._attempts: dict[str, int] = {}
        self._lock = threading.Lock()

    def execute(self, task: Task, agent: Agent) -> TaskOutcome:
        with self._lock:
            attempt = self._attempts.get(task.task_id, 0) + 1
            self._attempts[task.task_id] = attempt
        if self.delay_seconds > 0:
            self._sleep(self.delay_seconds)
        if attempt <= self.transient_failures:
            raise ExecutionFailure(
                f"temporary failure on attempt {attempt} of {task.task_id}",
                transient=True,
            )
        output = f"{agent.name} finished '{task.title}'"
        if task.expected_output:
            output = f"{output}: {task.expected_output}"
        return TaskOutcome(
            output=output,
            details={"executor": "echo", "agent_id": agent.agent_id, "attempt": attempt},
        )


class CallableExecutor:
    """Adapts a plain function ``fn(task, agent) -> str | TaskOutcome``."""

    def __init__(self, fn: Callable[[Task, Agent], str | TaskOutcome]) -> None:
        self.fn = fn

    def execute(self, task: Task, agent: Agent) -> TaskOutcome:
        result = self.fn(task, agent)
        if isinstance(result, TaskOutcome):
            return result
        return TaskOutcome(output=str(result))
