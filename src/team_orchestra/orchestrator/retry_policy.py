"""Retry/reassignment policy for failed task attempts."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from team_orchestra.orchestrator.models import FailureClass


class RetryAction(str, Enum):
    RETRY_SAME_AGENT = "retry_same_agent"
    REASSIGN = "reassign"
    REQUEUE = "requeue"
    DEFER = "defer"
    BLOCK = "block"
    CANCEL = "cancel"


@dataclass(slots=True)
class RetryDecision:
    """Decision returned by retry policy."""

    action: RetryAction
    reason: str


def decide_retry(
    *,
    failure_class: FailureClass,
    attempts_with_agent: int,
    max_retries_per_agent: int,
    has_free_candidate: bool,
    has_busy_candidate: bool,
    can_replan: bool = True,
) -> RetryDecision:
    """Pick the next step for a task whose attempt just failed.

    ``attempts_with_agent`` counts attempts on the current agent including the
    failed one. Without ``can_replan`` (initial-only runs) nothing would pick a
    requeued task up again, so it waits for a busy qualified agent instead.
    """

    if failure_class == FailureClass.CANCELLED:
        return RetryDecision(action=RetryAction.CANCEL, reason="Attempt was cancelled.")
    retries_used = attempts_with_agent - 1
    if failure_class == FailureClass.TRANSIENT and retries_used < max_retries_per_agent:
        return RetryDecision(
            action=RetryAction.RETRY_SAME_AGENT,
            reason=(
                f"Transient failure, retry {attempts_with_agent} of {max_retries_per_agent} "
                "on the same agent."
            ),
        )
    if has_free_candidate:
        return RetryDecision(
            action=RetryAction.REASSIGN,
            reason="Another qualified agent has free capacity.",
        )
    if has_busy_candidate and not can_replan:
        return RetryDecision(
            action=RetryAction.DEFER,
            reason="Qualified agents are busy; task waits for the first one to free up.",
        )
    if has_busy_candidate:
        return RetryDecision(
            action=RetryAction.REQUEUE,
            reason="Qualified agents are busy; task returns to the backlog.",
        )
    return RetryDecision(
        action=RetryAction.BLOCK,
        reason="No qualified agent remains for this task.",
    )
