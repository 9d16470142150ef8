"""Run loop wiring planning, execution threads and the run journal."""

from __future__ import annotations

import logging
import queue
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from uuid import uuid4

from team_orchestra.config import OrchestratorSettings
from team_orchestra.orchestrator.adaptation import TaskAdapter
from team_orchestra.orchestrator.agent_registry import AgentRegistry
from team_orchestra.orchestrator.coordinator import ExecutionCoordinator, WorkTicket
from team_orchestra.orchestrator.engine import Orchestrator
from team_orchestra.orchestrator.events import EventEmitter, EventType, Listener
from team_orchestra.orchestrator.executors import TaskExecutor
from team_orchestra.orchestrator.journal import JournalListener, RunJournalRepository
from team_orchestra.orchestrator.models import (
    Agent,
    RunStatus,
    RunSummary,
    Task,
    TaskOutcome,
    TaskStatus,
    TeamDescriptor,
)
from team_orchestra.orchestrator.prioritization import Ranker
from team_orchestra.orchestrator.task_repository import TaskRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerMessage:
    """Message posted by an agent worker thread to the planning loop."""

    kind: str
    ticket: WorkTicket
    outcome: TaskOutcome | None = None
    error: BaseException | None = None


@dataclass(slots=True)
class _WorkItem:
    ticket: WorkTicket
    task: Task
    agent: Agent


class _AgentWorker:
    """One thread per agent executing its queued attempts in order."""

    def __init__(
        self,
        *,
        agent_id: str,
        executor: TaskExecutor,
        results: queue.Queue[WorkerMessage | None],
    ) -> None:
        self.agent_id = agent_id
        self.executor = executor
        self.results = results
        self.inbox: queue.Queue[_WorkItem | None] = queue.Queue()
        self.thread = threading.Thread(
            target=self._run,
            name=f"agent-{agent_id}",
            daemon=True,
        )

    def _run(self) -> None:
        while True:
            item = self.inbox.get()
            if item is None:
                return
            self.results.put(WorkerMessage(kind="started", ticket=item.ticket))
            try:
                outcome = self.executor.execute(item.task, item.agent)
            except Exception as error:  # noqa: BLE001
                logger.debug("Attempt %s failed on %s", item.ticket.task_id, self.agent_id)
                self.results.put(WorkerMessage(kind="failed", ticket=item.ticket, error=error))
            else:
                self.results.put(
                    WorkerMessage(kind="completed", ticket=item.ticket, outcome=outcome),
                )


class OrchestrationRunner:
    """Runs one team descriptor to completion.

    The calling thread owns the planning loop and is the only writer of the
    task repository, the agent registry and the coordinator. Agent threads
    only execute work and post ``WorkerMessage`` objects back.
    """

    def __init__(  # noqa: PLR0913
        self,
        descriptor: TeamDescriptor,
        *,
        executor: TaskExecutor,
        settings: OrchestratorSettings | None = None,
        journal: RunJournalRepository | None = None,
        ranker: Ranker | None = None,
        adapter: TaskAdapter | None = None,
        run_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.descriptor = descriptor
        self.config = descriptor.config
        self.executor = executor
        self.settings = settings or OrchestratorSettings()
        self.journal = journal
        self.run_id = run_id or str(uuid4())
        self._clock = clock
        self.emitter = EventEmitter()
        self.repository = TaskRepository(
            [replace(task) for task in descriptor.backlog],
            clock=clock,
        )
        self.registry = AgentRegistry(replace(agent) for agent in descriptor.agents)
        self.orchestrator = Orchestrator(
            repository=self.repository,
            registry=self.registry,
            config=self.config,
            emitter=self.emitter,
            adapter=adapter,
            ranker=ranker,
            clock=clock,
        )
        self.coordinator = ExecutionCoordinator(
            repository=self.repository,
            registry=self.registry,
            orchestrator=self.orchestrator,
            config=self.config,
            submit=self._submit,
            emitter=self.emitter,
        )
        self._results: queue.Queue[WorkerMessage | None] = queue.Queue()
        self._workers: dict[str, _AgentWorker] = {}
        self._cancel_event = threading.Event()
        self._cancel_reason = "cancelled"

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.emitter.subscribe(listener)

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation from another thread and wake the planning loop."""

        self._request_cancel(reason)
        self._results.put(None)

    def _request_cancel(self, reason: str) -> None:
        # Signal handlers only set the flag; the loop notices it within one poll.
        self._cancel_reason = reason
        self._cancel_event.set()

    def run(self) -> RunSummary:
        """Plan, execute and re-plan until the run is done or cancelled."""

        started_at = self._clock()
        if self.journal is not None:
            self.journal.start_run(
                run_id=self.run_id,
                team_name=self.descriptor.name,
                config=self.config,
                tasks_total=len(self.descriptor.backlog),
            )
            self.emitter.subscribe(JournalListener(self.journal, self.run_id))
        self.emitter.emit(
            EventType.RUN_STARTED,
            details={
                "run_id": self.run_id,
                "team": self.descriptor.name,
                "agents": [agent.agent_id for agent in self.registry.get_agents()],
                "tasks": len(self.descriptor.backlog),
                **self.config.to_details(),
            },
        )
        logger.info("Run %s started for team %s", self.run_id, self.descriptor.name)

        self._start_workers()
        cancelled = False
        try:
            with self._signal_handlers():
                cancelled = self._loop(started_at)
        finally:
            self._stop_workers()

        summary = self._build_summary(cancelled=cancelled)
        self.emitter.emit(
            EventType.RUN_FINISHED,
            details={
                "status": summary.status.value,
                "cycles": summary.cycles,
                "completed": len(summary.completed),
                "failed": len(summary.failed),
                "blocked": len(summary.blocked),
                "unscheduled": len(summary.unscheduled),
            },
        )
        summary.events = len(self.emitter.history)
        if self.journal is not None:
            self.journal.finish_run(
                summary,
                error_summary=self._cancel_reason if cancelled else None,
            )
        logger.info("Run %s finished with status %s", self.run_id, summary.status.value)
        return summary

    def _loop(self, started_at: float) -> bool:
        timeout = self.settings.run_timeout_seconds
        poll = self.settings.completion_poll_seconds
        while True:
            if self._cancel_event.is_set():
                logger.warning("Run %s cancelling: %s", self.run_id, self._cancel_reason)
                self.coordinator.cancel_all(self._cancel_reason)
                return True
            if timeout > 0 and self._clock() - started_at >= timeout:
                logger.warning("Run %s exceeded timeout of %.1fs", self.run_id, timeout)
                self._cancel_reason = "timeout"
                self.coordinator.cancel_all("timeout")
                return True

            if self.orchestrator.last_cycle_id == 0 or self.orchestrator.should_replan():
                self._plan_and_dispatch()

            self.orchestrator.settle()
            if self.orchestrator.done:
                return False
            if self._stalled():
                logger.warning("Run %s has no runnable work left", self.run_id)
                self.orchestrator.finish()
                return False

            try:
                message = self._results.get(timeout=poll)
            except queue.Empty:
                continue
            if message is not None:
                self._handle(message)
            self._drain_results()

    def _plan_and_dispatch(self) -> None:
        cycle = self.orchestrator.plan()
        if cycle is None:
            return
        if self.journal is not None:
            self.journal.record_cycle(run_id=self.run_id, cycle=cycle)
        self.coordinator.dispatch(cycle)

    def _stalled(self) -> bool:
        if self.repository.in_flight():
            return False
        if self.config.continuous and self.repository.eligible():
            return False
        return True

    def _drain_results(self) -> None:
        while True:
            try:
                message = self._results.get_nowait()
            except queue.Empty:
                return
            if message is not None:
                self._handle(message)

    def _handle(self, message: WorkerMessage) -> None:
        if not self.coordinator.accepts(message.ticket):
            logger.debug(
                "Ignoring %s message for superseded attempt of %s",
                message.kind,
                message.ticket.task_id,
            )
            return
        task_id = message.ticket.task_id
        if message.kind == "started":
            self.coordinator.start(task_id)
        elif message.kind == "completed" and message.outcome is not None:
            self.coordinator.complete(task_id, message.outcome)
        elif message.kind == "failed" and message.error is not None:
            self.coordinator.fail(task_id, message.error)

    def _submit(self, ticket: WorkTicket) -> None:
        worker = self._workers[ticket.agent_id]
        worker.inbox.put(
            _WorkItem(
                ticket=ticket,
                task=replace(self.repository.get(ticket.task_id)),
                agent=replace(self.registry.get(ticket.agent_id)),
            ),
        )

    def _start_workers(self) -> None:
        for agent in self.registry.get_agents():
            worker = _AgentWorker(
                agent_id=agent.agent_id,
                executor=self.executor,
                results=self._results,
            )
            self._workers[agent.agent_id] = worker
            worker.thread.start()

    def _stop_workers(self) -> None:
        for worker in self._workers.values():
            worker.inbox.put(None)
        for worker in self._workers.values():
            worker.thread.join(timeout=5)
            if worker.thread.is_alive():
                logger.warning("Agent worker %s did not stop in time", worker.agent_id)

    def _build_summary(self, *, cancelled: bool) -> RunSummary:
        tasks = self.repository.tasks()
        completed = [task.task_id for task in tasks if task.status == TaskStatus.COMPLETED]
        if cancelled:
            status = RunStatus.CANCELLED
        elif len(completed) == len(tasks):
            status = RunStatus.COMPLETED
        else:
            status = RunStatus.INCOMPLETE
        adapted: list[str] = []
        for record in self.orchestrator.adaptations:
            if record.task_id not in adapted:
                adapted.append(record.task_id)
        return RunSummary(
            run_id=self.run_id,
            team_name=self.descriptor.name,
            status=status,
            cycles=self.orchestrator.last_cycle_id,
            completed=completed,
            failed=[task.task_id for task in tasks if task.status == TaskStatus.FAILED],
            blocked=[task.task_id for task in tasks if task.status == TaskStatus.BLOCKED],
            unscheduled=self.orchestrator.unscheduled_task_ids(),
            adapted=adapted,
            generated=[record.task_id for record in self.orchestrator.generations],
        )

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self._request_cancel(f"cancelled by {name}")

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
