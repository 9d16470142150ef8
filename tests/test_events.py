from __future__ import annotations

import allure

from team_orchestra.orchestrator.events import EventEmitter, EventType, OrchestrationEvent

pytestmark = [
    allure.epic("Execution"),
    allure.feature("Events"),
]


def test_emit_assigns_increasing_sequence_numbers() -> None:
    emitter = EventEmitter()

    first = emitter.emit(EventType.RUN_STARTED)
    second = emitter.emit(EventType.TASK_SELECTED, cycle_id=1, task_id="T1", details={"p": 1})

    assert (first.sequence, second.sequence) == (1, 2)
    assert second.details == {"p": 1}
    assert emitter.of_type(EventType.TASK_SELECTED) == [second]


def test_failing_listener_is_isolated() -> None:
    emitter = EventEmitter()
    received: list[OrchestrationEvent] = []

    def _broken(_event: OrchestrationEvent) -> None:
        raise RuntimeError("boom")

    emitter.subscribe(_broken)
    emitter.subscribe(received.append)

    emitter.emit(EventType.CYCLE_COMPLETED, cycle_id=1)

    assert [event.event_type for event in received] == [EventType.CYCLE_COMPLETED]


def test_unsubscribe_stops_delivery() -> None:
    emitter = EventEmitter()
    received: list[OrchestrationEvent] = []
    unsubscribe = emitter.subscribe(received.append)

    emitter.emit(EventType.RUN_STARTED)
    unsubscribe()
    emitter.emit(EventType.RUN_FINISHED)

    assert len(received) == 1
    assert len(emitter.history) == 2
