"""Failure classification and retry ceiling decisions."""

import pytest

from pushsched.services.scheduler.retry_policy import (
    Disposition,
    FailureSignal,
    RetryAction,
    classify,
    decide,
)


@pytest.mark.parametrize(
    "signal",
    [
        FailureSignal.RESOURCE_EXHAUSTED,
        FailureSignal.QUOTA_EXCEEDED,
        FailureSignal.UNAVAILABLE,
        FailureSignal.ABORTED,
        FailureSignal.DEADLINE_EXCEEDED,
    ],
)
def test_capacity_and_availability_signals_are_retryable(signal):
    assert classify(signal) is Disposition.RETRYABLE


@pytest.mark.parametrize(
    "signal",
    [
        FailureSignal.INVALID_ARGUMENT,
        FailureSignal.UNREGISTERED,
        FailureSignal.SENDER_ID_MISMATCH,
        FailureSignal.INTERNAL,
        FailureSignal.UNKNOWN,
    ],
)
def test_other_signals_are_fatal(signal):
    assert classify(signal) is Disposition.FATAL


def test_retryable_failure_below_ceiling_requeues():
    """First transient failure of a fresh job goes back to the queue."""

    decision = decide(FailureSignal.UNAVAILABLE, attempt_count=0, max_attempts=5)

    assert decision.action is RetryAction.REQUEUE
    assert decision.attempts == 1


def test_retryable_failure_on_last_attempt_dead_letters():
    """The attempt that reaches max_attempts is never requeued."""

    decision = decide(FailureSignal.UNAVAILABLE, attempt_count=4, max_attempts=5)

    assert decision.action is RetryAction.DEAD_LETTER
    assert decision.attempts == 5
    assert decision.disposition is Disposition.RETRYABLE


def test_fatal_failure_dead_letters_immediately():
    decision = decide(FailureSignal.UNREGISTERED, attempt_count=0, max_attempts=5)

    assert decision.action is RetryAction.DEAD_LETTER
    assert decision.attempts == 1
    assert decision.disposition is Disposition.FATAL


def test_single_attempt_budget_never_retries():
    decision = decide(FailureSignal.RESOURCE_EXHAUSTED, attempt_count=0, max_attempts=1)

    assert decision.action is RetryAction.DEAD_LETTER
