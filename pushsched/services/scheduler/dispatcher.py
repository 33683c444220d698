"""Outbound message construction and gateway invocation."""

import time
from typing import Any

from pydantic import BaseModel

from pushsched.common.config import RunConfig
from pushsched.common.logging import logger
from pushsched.common.metrics import dispatch_seconds
from pushsched.services.scheduler.schemas import ExtraValue, Job, OutboundMessage


MISSING_TARGET = "missing-target"


class MissingTargetError(ValueError):
    """Job has neither a topic nor a device token."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"job {job_id} has no topic or token")
        self.job_id = job_id


class Delivery(BaseModel):
    """Successful dispatch outcome recorded on the job."""

    result: str
    message_id: str | None = None


def _data_value(value: ExtraValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_data(job: Job, title: str, body: str, config: RunConfig) -> dict[str, str]:
    """Client-side data block.

    Entries from `additional_data` are applied after the built-in keys and
    replace them on collision.
    """

    data = {
        "title": title,
        "body": body,
        "imageUrl": job.image_url or "",
        "action": job.action or "",
        "debug": _data_value(job.debug),
        "screen": config.notification_screen,
    }
    for key, value in (job.additional_data or {}).items():
        data[key] = _data_value(value)
    return data


def build_message(job: Job, config: RunConfig) -> OutboundMessage:
    """Translate a claimed job into an FCM v1 message.

    Raises `MissingTargetError` when the job cannot be addressed.
    """

    if not job.has_target:
        raise MissingTargetError(job.id)

    title = job.title or config.default_title
    body = job.body or ""

    notification = {"title": title, "body": body}
    android_notification: dict[str, Any] = {
        "channel_id": config.android_channel_id,
        "notification_priority": "PRIORITY_HIGH",
    }
    apns: dict[str, Any] = {"payload": {"aps": {"mutable-content": 1, "content-available": 1}}}
    if job.image_url:
        notification["image"] = job.image_url
        android_notification["image"] = job.image_url
        apns["fcm_options"] = {"image": job.image_url}

    # Token addressing takes precedence if a job carries both.
    if job.token:
        target = {"token": job.token}
    else:
        target = {"topic": job.topic}

    return OutboundMessage(
        **target,
        notification=notification,
        data=build_data(job, title, body, config),
        android={"priority": "high", "notification": android_notification},
        apns=apns,
    )


class Dispatcher:
    """Builds the message for a claimed job and hands it to the gateway."""

    def __init__(self, gateway, config: RunConfig, service_name: str = "push-scheduler") -> None:
        self.gateway = gateway
        self.config = config
        self.service_name = service_name

    async def dispatch(self, job: Job) -> Delivery:
        """Send one job; gateway failures propagate to the caller unchanged."""

        message = build_message(job, self.config)
        target = f"token:{job.token[:12]}" if job.token else f"topic:{job.topic}"
        if self.config.dry_run:
            logger.info("dry run, not sending job_id=%s target=%s", job.id, target)
            return Delivery(result="dry-run")

        start = time.perf_counter()
        try:
            message_id = await self.gateway.send(message)
        finally:
            dispatch_seconds.labels(service=self.service_name).observe(time.perf_counter() - start)
        logger.info("sent job_id=%s target=%s message_id=%s", job.id, target, message_id)
        return Delivery(result="ok", message_id=message_id or None)
