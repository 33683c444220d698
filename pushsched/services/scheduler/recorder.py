"""Persists dispatch outcomes and routes failures through the retry policy.

Each `record_*` method reports whether the guarded write landed. A job that is
no longer `processing` when its outcome arrives is left alone and counts as a
lost write, not as sent or retried.
"""

from datetime import datetime

from pushsched.common.config import RunConfig
from pushsched.common.logging import logger
from pushsched.common.metrics import dead_letters_total, invalid_jobs_total, jobs_sent_total, retries_total
from pushsched.common.state_machine import JobStatus, validate_transition
from pushsched.services.scheduler.dispatcher import MISSING_TARGET, Delivery
from pushsched.services.scheduler.gateway import signal_from_exception
from pushsched.services.scheduler.retry_policy import RetryAction, RetryDecision, decide
from pushsched.services.scheduler.schemas import DeadLetterRecord, HistoryRecord, Job
from pushsched.services.scheduler.store import JobStore


def _error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class OutcomeRecorder:
    """Applies the `processing -> sent | queued | error` transitions."""

    def __init__(self, store: JobStore, config: RunConfig, service_name: str = "push-scheduler") -> None:
        self.store = store
        self.config = config
        self.service_name = service_name

    def record_sent(self, job: Job, delivery: Delivery, now: datetime) -> bool:
        validate_transition(job.status, JobStatus.SENT)
        history = HistoryRecord(
            title=job.title or self.config.default_title,
            body=job.body or "",
            image_url=job.image_url,
            action=job.action,
            debug=job.debug,
            timestamp=now,
            expiry=job.expiry,
            source=self.config.source_tag,
        )
        written = self.store.mark_sent(job.id, now, delivery.result, delivery.message_id, history)
        if not written:
            logger.warning("job no longer processing, sent state not recorded job_id=%s", job.id)
            return False
        jobs_sent_total.labels(service=self.service_name, mode=delivery.result).inc()
        return True

    def record_invalid(self, job: Job, now: datetime) -> bool:
        """Reject a job that cannot be addressed; no attempt is consumed."""

        validate_transition(job.status, JobStatus.ERROR)
        logger.warning("skipping job without topic or token job_id=%s", job.id)
        if not self.store.mark_error(job.id, now, MISSING_TARGET):
            logger.warning("job no longer processing, invalid state not recorded job_id=%s", job.id)
            return False
        invalid_jobs_total.labels(service=self.service_name, reason=MISSING_TARGET).inc()
        return True

    def record_failure(self, job: Job, exc: BaseException, now: datetime) -> RetryDecision | None:
        """Requeue or dead-letter a job whose dispatch raised `exc`.

        Returns None when the job left `processing` before the write.
        """

        signal = signal_from_exception(exc)
        message = _error_text(exc)
        decision = decide(signal, job.attempt_count, self.config.max_attempts)

        if decision.action is RetryAction.REQUEUE:
            validate_transition(job.status, JobStatus.QUEUED)
            if not self.store.requeue(job.id, now, decision.attempts, message):
                logger.warning("job no longer processing, requeue not recorded job_id=%s", job.id)
                return None
            logger.warning(
                "dispatch failed, requeued job_id=%s signal=%s attempts=%s max_attempts=%s error=%s",
                job.id,
                signal,
                decision.attempts,
                self.config.max_attempts,
                message,
            )
            retries_total.labels(service=self.service_name, signal=signal.value).inc()
            return decision

        validate_transition(job.status, JobStatus.ERROR)
        dead_letter = DeadLetterRecord(
            ref_id=job.id,
            payload=job.snapshot(),
            error=message,
            attempts=decision.attempts,
            failed_at=now,
            source=self.config.source_tag,
        )
        if not self.store.mark_error(job.id, now, message, attempts=decision.attempts, dead_letter=dead_letter):
            logger.warning("job no longer processing, dead letter not recorded job_id=%s", job.id)
            return None
        logger.error(
            "dispatch failed, dead-lettered job_id=%s signal=%s disposition=%s attempts=%s error=%s",
            job.id,
            signal,
            decision.disposition,
            decision.attempts,
            message,
        )
        dead_letters_total.labels(service=self.service_name, signal=signal.value).inc()
        return decision
