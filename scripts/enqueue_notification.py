"""Insert one queued scheduled notification.

Useful for manual smoke runs and for rehearsing due-selection with `--dry-run`
on the scheduler.
"""

import argparse
import json
from datetime import datetime, timezone

from pushsched.common.db import create_session_factory
from pushsched.services.scheduler.store import JobStore


def parse_extra(pairs: list[str]) -> dict:
    """Parse `key=value` pairs; values that look like JSON scalars are decoded."""

    extra = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise SystemExit(f"--extra expects key=value, got {pair!r}")
        try:
            value = json.loads(raw)
        except ValueError:
            value = raw
        if isinstance(value, (dict, list)) or value is None:
            value = raw
        extra[key] = value
    return extra


def main() -> None:
    """Parse CLI args and insert one job."""

    parser = argparse.ArgumentParser(description="Queue one scheduled push notification.")
    parser.add_argument("--dsn", required=True, help="SQLAlchemy database URL")
    parser.add_argument("--title", required=True)
    parser.add_argument("--body", default="")
    parser.add_argument("--topic", default=None)
    parser.add_argument("--token", default=None)
    parser.add_argument("--image-url", default=None)
    parser.add_argument("--action", default=None)
    parser.add_argument("--at", default=None, help="ISO-8601 due time (default: now)")
    parser.add_argument("--extra", action="append", default=[], help="key=value data entry, repeatable")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    if bool(args.topic) == bool(args.token):
        raise SystemExit("Provide exactly one of --topic or --token")

    due = datetime.fromisoformat(args.at) if args.at else datetime.now(timezone.utc)
    if due.tzinfo is None:
        due = due.replace(tzinfo=timezone.utc)

    store = JobStore(create_session_factory(args.dsn))
    job_id = store.add_job(
        title=args.title,
        body=args.body,
        topic=args.topic,
        token=args.token,
        image_url=args.image_url,
        action=args.action,
        additional_data=parse_extra(args.extra) or None,
        debug=args.debug,
        schedule_time=due,
    )
    print(f"Queued job_id={job_id} due={due.isoformat()}")


if __name__ == "__main__":
    main()
