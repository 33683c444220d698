"""SQLAlchemy store adapter for the scheduled-notification collections.

Every write to a job row is guarded by its expected current status, so a
worker can only move a job it actually owns. `claim` is the one operation that
must be atomic across concurrent runs.
"""

from datetime import datetime

from sqlalchemy import select, update

from pushsched.common.state_machine import JobStatus
from pushsched.services.scheduler.models import FailedNotification, NotificationHistory, ScheduledNotification
from pushsched.services.scheduler.schemas import DeadLetterRecord, HistoryRecord, Job


class JobStore:
    """Queue, history and dead-letter access for one database."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def find_due(self, now: datetime, limit: int) -> list[Job]:
        """Queued jobs due at or before `now`, oldest first."""

        table = ScheduledNotification
        with self.session_factory() as db:
            rows = db.execute(
                select(table)
                .where(table.status == JobStatus.QUEUED.value, table.schedule_time <= now)
                .order_by(table.schedule_time.asc())
                .limit(limit)
            ).scalars()
            return [Job.model_validate(row) for row in rows]

    def claim(self, job_id: str, now: datetime) -> Job | None:
        """Move one job `queued -> processing` inside a point transaction.

        Returns the job as re-read under the claim, or None without writing
        when the row is gone or no longer queued. Callers must work from the
        returned job; a due-page snapshot may carry a stale attempt count.
        """

        table = ScheduledNotification
        with self.session_factory() as db:
            row = db.execute(select(table).where(table.id == job_id).with_for_update()).scalar_one_or_none()
            if row is None or row.status != JobStatus.QUEUED.value:
                return None
            result = db.execute(
                update(table)
                .where(table.id == job_id, table.status == JobStatus.QUEUED.value)
                .values(status=JobStatus.PROCESSING.value, processing_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                return None
            db.commit()
            db.refresh(row)
            return Job.model_validate(row)

    def mark_sent(
        self, job_id: str, now: datetime, result: str, message_id: str | None, history: HistoryRecord
    ) -> bool:
        """Mark a claimed job delivered and append its history record."""

        table = ScheduledNotification
        with self.session_factory() as db:
            updated = db.execute(
                update(table)
                .where(table.id == job_id, table.status == JobStatus.PROCESSING.value)
                .values(status=JobStatus.SENT.value, sent_at=now, last_result=result, message_id=message_id)
            )
            if updated.rowcount != 1:
                db.rollback()
                return False
            db.add(NotificationHistory(**history.model_dump()))
            db.commit()
            return True

    def requeue(self, job_id: str, now: datetime, attempts: int, error: str) -> bool:
        """Return a claimed job to `queued` after a retryable failure."""

        table = ScheduledNotification
        with self.session_factory() as db:
            updated = db.execute(
                update(table)
                .where(table.id == job_id, table.status == JobStatus.PROCESSING.value)
                .values(status=JobStatus.QUEUED.value, attempt_count=attempts, last_result=error, error_at=now)
            )
            db.commit()
            return updated.rowcount == 1

    def mark_error(
        self,
        job_id: str,
        now: datetime,
        error: str,
        attempts: int | None = None,
        dead_letter: DeadLetterRecord | None = None,
    ) -> bool:
        """Move a claimed job to terminal `error`, optionally dead-lettering it."""

        table = ScheduledNotification
        values = {"status": JobStatus.ERROR.value, "error_at": now, "last_result": error}
        if attempts is not None:
            values["attempt_count"] = attempts
        with self.session_factory() as db:
            updated = db.execute(
                update(table).where(table.id == job_id, table.status == JobStatus.PROCESSING.value).values(**values)
            )
            if updated.rowcount != 1:
                db.rollback()
                return False
            if dead_letter is not None:
                db.add(FailedNotification(**dead_letter.model_dump()))
            db.commit()
            return True

    def release_stale_claims(self, stale_before: datetime) -> int:
        """Requeue jobs left in `processing` by a run that never finished them."""

        table = ScheduledNotification
        with self.session_factory() as db:
            result = db.execute(
                update(table)
                .where(
                    table.status == JobStatus.PROCESSING.value,
                    table.processing_at.is_not(None),
                    table.processing_at < stale_before,
                )
                .values(status=JobStatus.QUEUED.value, last_result="released-stale-claim")
            )
            db.commit()
            return result.rowcount

    def add_job(self, **fields) -> str:
        """Insert a queued job; creation normally happens outside the scheduler."""

        with self.session_factory() as db:
            row = ScheduledNotification(**fields)
            db.add(row)
            db.commit()
            return row.id

    def get_job(self, job_id: str) -> Job | None:
        with self.session_factory() as db:
            row = db.get(ScheduledNotification, job_id)
            return Job.model_validate(row) if row is not None else None

    def latest_dead_letter(self, job_id: str) -> DeadLetterRecord | None:
        table = FailedNotification
        with self.session_factory() as db:
            row = db.execute(
                select(table).where(table.ref_id == job_id).order_by(table.failed_at.desc()).limit(1)
            ).scalar_one_or_none()
            if row is None:
                return None
            return DeadLetterRecord(
                ref_id=row.ref_id,
                payload=row.payload,
                error=row.error,
                attempts=row.attempts,
                failed_at=row.failed_at,
                source=row.source,
            )

    def requeue_dead_letter(self, job_id: str) -> bool:
        """Reset an `error` job so the next run delivers it again."""

        table = ScheduledNotification
        with self.session_factory() as db:
            updated = db.execute(
                update(table)
                .where(table.id == job_id, table.status == JobStatus.ERROR.value)
                .values(status=JobStatus.QUEUED.value, attempt_count=0, last_result="replayed")
            )
            db.commit()
            return updated.rowcount == 1
