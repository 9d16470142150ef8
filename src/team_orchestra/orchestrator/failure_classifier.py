"""Deterministic execution failure classification for retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from team_orchestra.orchestrator.errors import ExecutionFailure
from team_orchestra.orchestrator.models import FailureClass

FAILURE_CLASSIFIER_VERSION = 1

_CANCELLED_PATTERNS: tuple[str, ...] = (
    "cancelled",
    "canceled",
    "interrupted",
)
_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "please retry",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "temporarily unavailable",
    "temporary failure",
    "timed out",
    "timeout",
    "connection reset",
    "network error",
    "could not resolve host",
)
_TRANSIENT_EXCEPTION_TYPES: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
)


@dataclass(slots=True)
class FailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    def to_event_details(self, *, agent_id: str | None) -> dict[str, object]:
        """Serialize classifier diagnostics for task events."""

        return {
            "classifier_version": FAILURE_CLASSIFIER_VERSION,
            "agent_id": agent_id,
            "failure_class": self.failure_class.value,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_execution_failure(error: BaseException) -> FailureClassification:
    """Classify an executor error into a deterministic retry class.

    Explicit flags on ``ExecutionFailure`` win; otherwise exception type and
    message patterns decide, with non-retryable as the fallback.
    """

    if isinstance(error, ExecutionFailure):
        if error.cancelled:
            return FailureClassification(
                failure_class=FailureClass.CANCELLED,
                reason_code="execution_cancelled",
                matched_rule="explicit_cancelled",
                matched_pattern=None,
            )
        if error.transient is True:
            return FailureClassification(
                failure_class=FailureClass.TRANSIENT,
                reason_code="execution_transient",
                matched_rule="explicit_transient",
                matched_pattern=None,
            )
        if error.transient is False:
            return FailureClassification(
                failure_class=FailureClass.NON_RETRYABLE,
                reason_code="execution_non_retryable",
                matched_rule="explicit_non_retryable",
                matched_pattern=None,
            )

    if isinstance(error, _TRANSIENT_EXCEPTION_TYPES):
        return FailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code="execution_transient",
            matched_rule="transient_exception_type",
            matched_pattern=None,
        )

    haystack = str(error).lower()

    pattern = _first_match(haystack, _CANCELLED_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.CANCELLED,
            reason_code="execution_cancelled",
            matched_rule="cancelled",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _RATE_LIMIT_TRANSIENT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code="execution_rate_limit_transient",
            matched_rule="rate_limit_transient",
            matched_pattern=pattern,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    if pattern is not None:
        return FailureClassification(
            failure_class=FailureClass.TRANSIENT,
            reason_code="execution_transient",
            matched_rule="generic_transient",
            matched_pattern=pattern,
        )

    return FailureClassification(
        failure_class=FailureClass.NON_RETRYABLE,
        reason_code="execution_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
