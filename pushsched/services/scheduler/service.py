"""Batch driver for one scheduler run.

Claims pages of due jobs, dispatches each claimed job sequentially and records
its outcome, until the due set is drained or `max_batches` pages were read.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from pushsched.common.config import RunConfig
from pushsched.common.logging import job_id_ctx, logger, run_id_ctx
from pushsched.common.tracing import tracer
from pushsched.services.scheduler.claimer import JobClaimer
from pushsched.services.scheduler.dispatcher import Dispatcher, MissingTargetError
from pushsched.services.scheduler.recorder import OutcomeRecorder
from pushsched.services.scheduler.retry_policy import RetryAction
from pushsched.services.scheduler.schemas import Job, RunSummary
from pushsched.services.scheduler.store import JobStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerService:
    """Owns the claim -> dispatch -> record cycle for a single invocation."""

    def __init__(
        self,
        store: JobStore,
        gateway,
        config: RunConfig,
        service_name: str = "push-scheduler",
        clock=utc_now,
        sleep=asyncio.sleep,
    ) -> None:
        self.store = store
        self.config = config
        self.service_name = service_name
        self.clock = clock
        self.sleep = sleep
        self.claimer = JobClaimer(store, service_name)
        self.dispatcher = Dispatcher(gateway, config, service_name)
        self.recorder = OutcomeRecorder(store, config, service_name)

    async def run_once(self) -> RunSummary:
        """Drain due jobs within the configured page/batch ceilings."""

        summary = RunSummary(run_id=str(uuid4()), dry_run=self.config.dry_run)
        run_token = run_id_ctx.set(summary.run_id)
        try:
            if self.config.release_stale_after_seconds:
                stale_before = self.clock() - timedelta(seconds=self.config.release_stale_after_seconds)
                summary.released = self.store.release_stale_claims(stale_before)
                if summary.released:
                    logger.warning("released stale claims count=%s", summary.released)

            for batch in range(self.config.max_batches):
                page = self.claimer.claim_page(self.clock(), self.config.page_size)
                if page.due_count == 0:
                    if batch == 0:
                        logger.info("no due notifications")
                    break
                summary.batches += 1
                summary.claim_skipped += page.skipped
                for job in page.jobs:
                    await self._process(job, summary)
                if page.due_count < self.config.page_size:
                    break

            logger.info(
                "run finished processed=%s sent=%s retried=%s dead_lettered=%s invalid=%s skipped=%s lost=%s errors=%s",
                summary.processed,
                summary.sent,
                summary.retried,
                summary.dead_lettered,
                summary.invalid,
                summary.claim_skipped,
                summary.lost,
                summary.errors,
            )
            return summary
        finally:
            run_id_ctx.reset(run_token)

    async def _process(self, job: Job, summary: RunSummary) -> None:
        """Dispatch one claimed job and record the result.

        A store failure while recording is logged and counted; the job then
        stays `processing` until a stale-claim release or manual repair.
        """

        job_token = job_id_ctx.set(job.id)
        try:
            with tracer.start_as_current_span("scheduler.process_job") as span:
                span.set_attribute("job.id", job.id)
                span.set_attribute("job.attempt_count", job.attempt_count)
                try:
                    delivery = await self.dispatcher.dispatch(job)
                except MissingTargetError:
                    if not self.recorder.record_invalid(job, self.clock()):
                        self._lost(summary, span)
                        return
                    summary.invalid += 1
                    span.set_attribute("job.outcome", "invalid")
                    return
                except Exception as exc:
                    decision = self.recorder.record_failure(job, exc, self.clock())
                    if decision is None:
                        self._lost(summary, span)
                        return
                    span.set_attribute("job.outcome", decision.action.value)
                    if decision.action is RetryAction.REQUEUE:
                        summary.retried += 1
                        await self.sleep(self.config.retry_pause_seconds)
                    else:
                        summary.dead_lettered += 1
                    return
                if not self.recorder.record_sent(job, delivery, self.clock()):
                    self._lost(summary, span)
                    return
                summary.sent += 1
                span.set_attribute("job.outcome", delivery.result)
        except Exception as exc:
            logger.exception("failed to record job outcome job_id=%s error=%s", job.id, exc)
            summary.errors += 1
        finally:
            summary.processed += 1
            job_id_ctx.reset(job_token)

    @staticmethod
    def _lost(summary: RunSummary, span) -> None:
        summary.lost += 1
        span.set_attribute("job.outcome", "lost")
