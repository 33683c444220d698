"""Due-job selection and single-owner claiming."""

from datetime import datetime

from pydantic import BaseModel

from pushsched.common.logging import logger
from pushsched.common.metrics import claim_skipped_total, jobs_claimed_total
from pushsched.services.scheduler.schemas import Job
from pushsched.services.scheduler.store import JobStore


class ClaimedPage(BaseModel):
    due_count: int
    jobs: list[Job]
    skipped: int = 0


class JobClaimer:
    """Reads one page of due jobs and keeps only those this worker won."""

    def __init__(self, store: JobStore, service_name: str = "push-scheduler") -> None:
        self.store = store
        self.service_name = service_name

    def claim_page(self, now: datetime, limit: int) -> ClaimedPage:
        due = self.store.find_due(now, limit)
        claimed: list[Job] = []
        for job in due:
            owned = self.store.claim(job.id, now)
            if owned is not None:
                claimed.append(owned)
                continue
            # Another run got there first; nothing to do.
            logger.info("claim skipped job_id=%s", job.id)
        skipped = len(due) - len(claimed)
        if claimed:
            jobs_claimed_total.labels(service=self.service_name).inc(len(claimed))
        if skipped:
            claim_skipped_total.labels(service=self.service_name).inc(skipped)
        return ClaimedPage(due_count=len(due), jobs=claimed, skipped=skipped)
