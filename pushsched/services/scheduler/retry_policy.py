"""Failure classification and retry/dead-letter decisions.

Both functions are pure: the same signal and attempt numbers always produce
the same decision, and nothing here touches the store or the gateway.
"""

from enum import StrEnum

from pydantic import BaseModel


class FailureSignal(StrEnum):
    """Gateway failure codes the scheduler knows how to act on."""

    RESOURCE_EXHAUSTED = "resource-exhausted"
    QUOTA_EXCEEDED = "quota-exceeded"
    UNAVAILABLE = "unavailable"
    ABORTED = "aborted"
    DEADLINE_EXCEEDED = "deadline-exceeded"
    INVALID_ARGUMENT = "invalid-argument"
    UNREGISTERED = "unregistered"
    SENDER_ID_MISMATCH = "sender-id-mismatch"
    THIRD_PARTY_AUTH_ERROR = "third-party-auth-error"
    PERMISSION_DENIED = "permission-denied"
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not-found"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


class Disposition(StrEnum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


class RetryAction(StrEnum):
    REQUEUE = "requeue"
    DEAD_LETTER = "dead-letter"


RETRYABLE_SIGNALS = frozenset(
    {
        FailureSignal.RESOURCE_EXHAUSTED,
        FailureSignal.QUOTA_EXCEEDED,
        FailureSignal.UNAVAILABLE,
        FailureSignal.ABORTED,
        FailureSignal.DEADLINE_EXCEEDED,
    }
)


class RetryDecision(BaseModel):
    action: RetryAction
    attempts: int
    disposition: Disposition


def classify(signal: FailureSignal) -> Disposition:
    """Map one failure signal to retryable or fatal."""

    return Disposition.RETRYABLE if signal in RETRYABLE_SIGNALS else Disposition.FATAL


def decide(signal: FailureSignal, attempt_count: int, max_attempts: int) -> RetryDecision:
    """Decide what happens to a job whose dispatch just failed.

    `attempt_count` is the value stored on the job before this attempt; the
    returned `attempts` already includes the failed attempt.
    """

    attempts = attempt_count + 1
    disposition = classify(signal)
    if disposition is Disposition.RETRYABLE and attempts < max_attempts:
        return RetryDecision(action=RetryAction.REQUEUE, attempts=attempts, disposition=disposition)
    return RetryDecision(action=RetryAction.DEAD_LETTER, attempts=attempts, disposition=disposition)
