"""Requeue one dead-lettered scheduled notification.

The dead-letter record itself is left untouched; the job row goes back to
`queued` with a fresh attempt budget, so the next run picks it up.
"""

import argparse

from pushsched.common.db import create_session_factory
from pushsched.services.scheduler.store import JobStore


def replay_once(store: JobStore, job_id: str, dry_run: bool) -> int:
    """Find the latest dead letter for `job_id` and requeue the job (or dry-run)."""

    dead_letter = store.latest_dead_letter(job_id)
    if dead_letter is None:
        print(f"No dead letter found for job_id={job_id}.")
        return 1

    print(
        f"Matched dead letter job_id={job_id} attempts={dead_letter.attempts} "
        f"failed_at={dead_letter.failed_at.isoformat()} error={dead_letter.error}"
    )
    if dry_run:
        print("Dry run only; job not requeued.")
        return 0

    if not store.requeue_dead_letter(job_id):
        print("Job is not in error state (already replayed or deleted).")
        return 2
    print(f"Requeued job_id={job_id}")
    return 0


def main() -> None:
    """CLI entrypoint for manual dead-letter replay."""

    parser = argparse.ArgumentParser(description="Requeue one dead-lettered notification job.")
    parser.add_argument("--dsn", required=True, help="SQLAlchemy database URL")
    parser.add_argument("--job-id", required=True)
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()

    store = JobStore(create_session_factory(args.dsn))
    raise SystemExit(replay_once(store, args.job_id, args.dry_run))


if __name__ == "__main__":
    main()
