from __future__ import annotations

import copy
import queue
import signal
import threading
from pathlib import Path

import allure

from team_orchestra.config import OrchestratorSettings
from team_orchestra.orchestrator.descriptor import parse_team_descriptor
from team_orchestra.orchestrator.events import EventType, OrchestrationEvent
from team_orchestra.orchestrator.executors import CallableExecutor, EchoExecutor
from team_orchestra.orchestrator.journal import RunJournalRepository
from team_orchestra.orchestrator.models import RunStatus, TaskStatus
from team_orchestra.orchestrator.runner import OrchestrationRunner

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Run Loop"),
]

_FAST = OrchestratorSettings(completion_poll_seconds=0.01)


def test_continuous_run_completes_every_task(descriptor_payload: dict) -> None:
    runner = OrchestrationRunner(
        parse_team_descriptor(descriptor_payload),
        executor=EchoExecutor(),
        settings=_FAST,
    )

    summary = runner.run()

    assert summary.status == RunStatus.COMPLETED
    assert sorted(summary.completed) == ["T1", "T2", "T3"]
    assert summary.cycles == 2
    assert summary.unscheduled == []
    history = runner.emitter.history
    assert history[0].event_type == EventType.RUN_STARTED
    assert history[-1].event_type == EventType.RUN_FINISHED
    assert summary.events == len(history)
    assert runner.orchestrator.cycles[1].selected_task_ids == ("T2",)


def test_run_never_mutates_the_descriptor(descriptor_payload: dict) -> None:
    descriptor = parse_team_descriptor(descriptor_payload)

    OrchestrationRunner(descriptor, executor=EchoExecutor(), settings=_FAST).run()

    assert all(task.status == TaskStatus.BACKLOG for task in descriptor.backlog)
    assert all(agent.load == 0 for agent in descriptor.agents)


def test_initial_only_run_leaves_dependents_unscheduled(descriptor_payload: dict) -> None:
    payload = copy.deepcopy(descriptor_payload)
    payload["orchestrationConfig"]["continuousOrchestration"] = False
    runner = OrchestrationRunner(
        parse_team_descriptor(payload),
        executor=EchoExecutor(),
        settings=_FAST,
    )

    summary = runner.run()

    assert summary.status == RunStatus.INCOMPLETE
    assert sorted(summary.completed) == ["T1", "T3"]
    assert summary.unscheduled == ["T2"]
    assert summary.cycles == 1


def test_initial_only_failure_is_handed_to_the_busy_qualified_agent() -> None:
    descriptor = parse_team_descriptor(
        {
            "name": "Pair",
            "agents": [
                {"id": "A", "skills": ["a"], "capacity": 1},
                {"id": "B", "skills": ["a"], "capacity": 1},
            ],
            "backlogTasks": [
                {"id": "T1", "description": "First.", "requiredSkills": ["a"]},
                {"id": "T2", "description": "Second.", "requiredSkills": ["a"]},
            ],
            "orchestrationConfig": {
                "mode": "conservative",
                "continuousOrchestration": False,
                "maxActiveTasks": 2,
            },
        },
    )
    t1_failed = threading.Event()

    def _work(task, agent):
        if task.task_id == "T1" and agent.agent_id == "A":
            raise ValueError("malformed brief")
        if task.task_id == "T2":
            t1_failed.wait(timeout=5)
        return f"{agent.agent_id} finished {task.task_id}"

    runner = OrchestrationRunner(descriptor, executor=CallableExecutor(_work), settings=_FAST)
    runner.subscribe(
        lambda event: t1_failed.set() if event.event_type == EventType.TASK_REQUEUED else None,
    )

    summary = runner.run()

    assert summary.status == RunStatus.COMPLETED
    assert sorted(summary.completed) == ["T1", "T2"]
    assert summary.unscheduled == []
    assert summary.cycles == 1
    task = runner.repository.get("T1")
    assert task.assigned_agent_id == "B"
    assert task.outcome is not None
    assert task.outcome.output == "B finished T1"
    t1_events = [
        event.event_type for event in runner.emitter.history if event.task_id == "T1"
    ]
    assert t1_events[-4:] == [
        EventType.TASK_REQUEUED,
        EventType.TASK_REASSIGNED,
        EventType.TASK_STARTED,
        EventType.TASK_COMPLETED,
    ]


def test_transient_failures_are_retried_to_completion(descriptor_payload: dict) -> None:
    runner = OrchestrationRunner(
        parse_team_descriptor(descriptor_payload),
        executor=EchoExecutor(transient_failures=1),
        settings=_FAST,
    )

    summary = runner.run()

    assert summary.status == RunStatus.COMPLETED
    assert len(runner.emitter.of_type(EventType.TASK_RETRIED)) == 3
    assert len(runner.emitter.of_type(EventType.TASK_FAILED)) == 3


def test_listener_errors_do_not_break_the_run(descriptor_payload: dict) -> None:
    runner = OrchestrationRunner(
        parse_team_descriptor(descriptor_payload),
        executor=EchoExecutor(),
        settings=_FAST,
    )
    seen: list[OrchestrationEvent] = []

    def _broken(_event: OrchestrationEvent) -> None:
        raise RuntimeError("listener bug")

    runner.subscribe(_broken)
    runner.subscribe(seen.append)

    summary = runner.run()

    assert summary.status == RunStatus.COMPLETED
    assert len(seen) == summary.events


def test_cancel_fails_in_flight_tasks(descriptor_payload: dict) -> None:
    release = threading.Event()

    def _slow(task, agent):
        release.wait(timeout=5)
        return f"{agent.name} done {task.task_id}"

    runner = OrchestrationRunner(
        parse_team_descriptor(descriptor_payload),
        executor=CallableExecutor(_slow),
        settings=_FAST,
    )

    def _on_event(event: OrchestrationEvent) -> None:
        if event.event_type == EventType.TASK_STARTED:
            runner.cancel()
        elif event.event_type == EventType.TASK_FAILED:
            release.set()

    runner.subscribe(_on_event)

    summary = runner.run()

    assert summary.status == RunStatus.CANCELLED
    assert sorted(summary.failed) == ["T1", "T3"]
    assert runner.registry.total_capacity() == 2
    for task_id in summary.failed:
        assert runner.repository.get(task_id).failure_reason == "cancelled"


class _WakeupRecordingQueue(queue.Queue):
    def __init__(self) -> None:
        super().__init__()
        self.wakeups = 0

    def put(self, item, block=True, timeout=None) -> None:
        if item is None:
            self.wakeups += 1
        super().put(item, block, timeout)


def test_termination_signal_only_flags_cancellation(descriptor_payload: dict) -> None:
    release = threading.Event()

    def _slow(task, agent):
        release.wait(timeout=5)
        return f"{agent.name} done {task.task_id}"

    runner = OrchestrationRunner(
        parse_team_descriptor(descriptor_payload),
        executor=CallableExecutor(_slow),
        settings=_FAST,
    )
    results = _WakeupRecordingQueue()
    runner._results = results
    signalled: list[bool] = []

    def _on_event(event: OrchestrationEvent) -> None:
        if event.event_type == EventType.TASK_STARTED and not signalled:
            signalled.append(True)
            signal.raise_signal(signal.SIGTERM)
        elif event.event_type == EventType.TASK_FAILED:
            release.set()

    runner.subscribe(_on_event)
    original_handler = signal.getsignal(signal.SIGTERM)

    summary = runner.run()

    assert summary.status == RunStatus.CANCELLED
    assert results.wakeups == 0
    assert sorted(summary.failed) == ["T1", "T3"]
    for task_id in summary.failed:
        assert runner.repository.get(task_id).failure_reason == "cancelled by SIGTERM"
    assert signal.getsignal(signal.SIGTERM) is original_handler


def test_run_timeout_cancels_the_run(descriptor_payload: dict) -> None:
    release = threading.Event()

    def _stuck(task, agent):
        release.wait(timeout=5)
        return "late"

    runner = OrchestrationRunner(
        parse_team_descriptor(descriptor_payload),
        executor=CallableExecutor(_stuck),
        settings=OrchestratorSettings(completion_poll_seconds=0.01, run_timeout_seconds=0.2),
    )
    runner.subscribe(
        lambda event: release.set() if event.event_type == EventType.TASK_FAILED else None,
    )

    summary = runner.run()

    assert summary.status == RunStatus.CANCELLED
    assert runner.repository.get("T1").failure_reason == "timeout"


def test_journaled_run_is_persisted(tmp_path: Path, descriptor_payload: dict) -> None:
    journal = RunJournalRepository(tmp_path / "journal.db")
    journal.init_schema()
    runner = OrchestrationRunner(
        parse_team_descriptor(descriptor_payload),
        executor=EchoExecutor(),
        settings=_FAST,
        journal=journal,
        run_id="run-1",
    )

    summary = runner.run()
    details = journal.get_run_details(run_id="run-1")
    journal.close()

    assert details is not None
    assert details.run.status == RunStatus.COMPLETED
    assert details.run.completed_count == 3
    assert details.run.cycles_count == 2
    assert details.run.finished_at is not None
    assert details.run.config["mode"] == "conservative"
    assert [cycle.cycle_id for cycle in details.cycles] == [1, 2]
    assert len(details.events) == summary.events
    assert [event.sequence for event in details.events] == list(range(1, summary.events + 1))
