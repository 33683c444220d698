"""Prometheus metric definitions for scheduler runs."""

from prometheus_client import REGISTRY, Counter, Histogram, push_to_gateway

from pushsched.common.logging import logger


jobs_claimed_total = Counter("scheduler_jobs_claimed_total", "Jobs claimed for dispatch", ["service"])
claim_skipped_total = Counter(
    "scheduler_claim_skipped_total",
    "Due jobs skipped because another worker claimed them first",
    ["service"],
)
jobs_sent_total = Counter("scheduler_jobs_sent_total", "Jobs marked sent", ["service", "mode"])
retries_total = Counter("scheduler_retries_total", "Jobs returned to the queue for retry", ["service", "signal"])
dead_letters_total = Counter(
    "scheduler_dead_letters_total",
    "Jobs routed to the dead-letter collection",
    ["service", "signal"],
)
invalid_jobs_total = Counter("scheduler_invalid_jobs_total", "Jobs rejected before dispatch", ["service", "reason"])
dispatch_seconds = Histogram("scheduler_dispatch_seconds", "Gateway send duration seconds", ["service"])


def push_run_metrics(gateway_url: str, service_name: str) -> None:
    """Push the process registry to a Prometheus Pushgateway after a run."""

    try:
        push_to_gateway(gateway_url, job=service_name, registry=REGISTRY)
    except OSError as exc:
        logger.warning("metrics push failed gateway=%s error=%s", gateway_url, exc)
