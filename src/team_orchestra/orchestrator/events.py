"""Structured orchestration events and their dispatch to listeners."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from team_orchestra.storage.common import utc_now

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event names delivered to listeners and stored in the run journal."""

    RUN_STARTED = "run-started"
    RUN_FINISHED = "run-finished"
    CYCLE_COMPLETED = "cycle-completed"
    TASK_SELECTED = "task-selected"
    TASK_ADAPTED = "task-adapted"
    ADAPTATION_REJECTED = "adaptation-rejected"
    TASK_GENERATED = "task-generated"
    TASK_ASSIGNED = "task-assigned"
    TASK_STARTED = "task-started"
    TASK_COMPLETED = "task-completed"
    TASK_FAILED = "task-failed"
    TASK_RETRIED = "task-retried"
    TASK_REASSIGNED = "task-reassigned"
    TASK_REQUEUED = "task-requeued"
    TASK_BLOCKED = "task-blocked"
    PRIORITIZATION_FALLBACK = "prioritization-fallback"


@dataclass(frozen=True, slots=True)
class OrchestrationEvent:
    """One event emitted during a run."""

    sequence: int
    event_type: EventType
    cycle_id: int | None = None
    task_id: str | None = None
    agent_id: str | None = None
    details: dict[str, object] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)


Listener = Callable[[OrchestrationEvent], None]


class EventEmitter:
    """Fan out events to subscribers and keep the run's event history.

    Listeners run synchronously in the emitting thread. A listener that raises
    is logged and skipped; it never interrupts the run.
    """

    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._history: list[OrchestrationEvent] = []
        self._lock = threading.Lock()
        self._sequence = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unsubscribes it."""

        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(  # noqa: PLR0913
        self,
        event_type: EventType,
        *,
        cycle_id: int | None = None,
        task_id: str | None = None,
        agent_id: str | None = None,
        details: dict[str, object] | None = None,
    ) -> OrchestrationEvent:
        with self._lock:
            self._sequence += 1
            event = OrchestrationEvent(
                sequence=self._sequence,
                event_type=event_type,
                cycle_id=cycle_id,
                task_id=task_id,
                agent_id=agent_id,
                details=dict(details or {}),
            )
            self._history.append(event)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Event listener failed for %s (sequence=%d)",
                    event.event_type.value,
                    event.sequence,
                )
        return event

    @property
    def history(self) -> list[OrchestrationEvent]:
        with self._lock:
            return list(self._history)

    def of_type(self, event_type: EventType) -> list[OrchestrationEvent]:
        return [event for event in self.history if event.event_type == event_type]
