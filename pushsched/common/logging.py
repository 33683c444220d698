"""Structured JSON logging with run/job context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter


service_name_ctx: ContextVar[str] = ContextVar("service_name", default="push-scheduler")
run_id_ctx: ContextVar[str] = ContextVar("run_id", default="")
job_id_ctx: ContextVar[str] = ContextVar("job_id", default="")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = service_name_ctx.get()
        record.run_id = run_id_ctx.get()
        record.job_id = job_id_ctx.get()
        return True


def configure_logging(service_name: str, level: str = "INFO") -> None:
    """Configure root logger once per scheduler process."""

    service_name_ctx.set(service_name)
    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter("%(asctime)s %(levelname)s %(service_name)s %(run_id)s %(job_id)s %(message)s")
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    root.addFilter(context_filter)


logger = logging.getLogger("pushsched")
