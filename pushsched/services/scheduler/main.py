"""Scheduler entrypoint: one drain run per invocation (cron or manual)."""

import argparse
import asyncio

from pushsched.common.config import ConfigurationError, load_settings
from pushsched.common.db import create_session_factory
from pushsched.common.logging import configure_logging, logger
from pushsched.common.metrics import push_run_metrics
from pushsched.common.startup import log_startup_config
from pushsched.common.tracing import setup_tracing
from pushsched.services.scheduler.gateway import FcmGateway, GoogleAccessTokens, load_credentials
from pushsched.services.scheduler.schemas import RunSummary
from pushsched.services.scheduler.service import SchedulerService
from pushsched.services.scheduler.store import JobStore


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send due scheduled push notifications.")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Mark due jobs sent without calling FCM")
    parser.add_argument("--page-size", type=int, default=None)
    parser.add_argument("--max-batches", type=int, default=None)
    parser.add_argument("--max-attempts", type=int, default=None)
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> RunSummary:
    """Load configuration, wire collaborators and drain due jobs once.

    `ConfigurationError` escapes before any job is touched.
    """

    settings = load_settings()
    configure_logging(settings.service_name, settings.log_level)
    log_startup_config(
        settings,
        ["postgres_dsn", "firebase_project_id", "gcp_sa_json", "batch_limit", "max_batches", "max_attempts", "dry_run"],
    )
    config = settings.run_config(
        dry_run=args.dry_run,
        page_size=args.page_size,
        max_batches=args.max_batches,
        max_attempts=args.max_attempts,
    )
    credentials = load_credentials(settings)
    tracer_provider = setup_tracing(settings.service_name, settings.otel_exporter_otlp_endpoint)

    store = JobStore(create_session_factory(settings.postgres_dsn))
    gateway = FcmGateway(
        settings.firebase_project_id,
        GoogleAccessTokens(credentials),
        endpoint=settings.fcm_endpoint,
        timeout_seconds=settings.fcm_timeout_seconds,
    )
    service = SchedulerService(store, gateway, config, service_name=settings.service_name)
    try:
        return await service.run_once()
    finally:
        await gateway.aclose()
        if settings.pushgateway_url:
            push_run_metrics(settings.pushgateway_url, settings.service_name)
        if tracer_provider is not None:
            tracer_provider.shutdown()


def main(argv: list[str] | None = None) -> None:
    """CLI entrypoint; exits non-zero on configuration failure."""

    args = parse_args(argv)
    try:
        summary = asyncio.run(run(args))
    except ConfigurationError as exc:
        logger.error("configuration error, aborting run error=%s", exc)
        raise SystemExit(2) from exc
    print(summary.model_dump_json())


if __name__ == "__main__":
    main()
