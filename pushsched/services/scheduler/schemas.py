"""Typed views of scheduler documents and the outbound push message."""

import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pushsched.common.state_machine import JobStatus


# Closed set of scalar kinds accepted in a job's free-form data map.
ExtraValue = bool | int | float | str


def _utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Job(BaseModel):
    """Snapshot of one `scheduled_notifications` document."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str | None = None
    body: str | None = None
    image_url: str | None = None
    action: str | None = None
    additional_data: dict[str, ExtraValue] | None = None
    debug: bool = False
    topic: str | None = None
    token: str | None = None
    schedule_time: datetime
    expiry: datetime | None = None
    status: JobStatus = JobStatus.QUEUED
    attempt_count: int = Field(default=0, ge=0)
    last_result: str | None = None

    @field_validator("title", "body", "image_url", "action", "topic", "token", mode="before")
    @classmethod
    def _blank_as_missing(cls, value: Any) -> str | None:
        if value is None:
            return None
        text = str(value)
        return text or None

    @field_validator("additional_data", mode="before")
    @classmethod
    def _scalar_map(cls, value: Any) -> dict[str, Any] | None:
        """Ignore non-mapping payloads; nested values are carried as JSON text."""

        if not isinstance(value, dict):
            return None
        return {
            str(key): item if isinstance(item, (bool, int, float, str)) else json.dumps(item, sort_keys=True)
            for key, item in value.items()
            if item is not None
        }

    @field_validator("schedule_time", "expiry")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _utc(value)

    @property
    def has_target(self) -> bool:
        return bool(self.topic or self.token)

    def snapshot(self) -> dict[str, Any]:
        """Payload copy stored with a dead letter."""

        return {
            "title": self.title,
            "body": self.body,
            "topic": self.topic,
            "token": self.token,
            "image_url": self.image_url,
            "action": self.action,
            "additional_data": self.additional_data,
            "debug": self.debug,
            "expiry": self.expiry.isoformat() if self.expiry else None,
        }


class HistoryRecord(BaseModel):
    """Denormalized log entry for a delivered notification."""

    title: str
    body: str
    image_url: str | None = None
    action: str | None = None
    debug: bool = False
    timestamp: datetime
    expiry: datetime | None = None
    source: str


class DeadLetterRecord(BaseModel):
    """Permanent record of a job that could not be delivered."""

    ref_id: str
    payload: dict[str, Any]
    error: str
    attempts: int
    failed_at: datetime
    source: str


class OutboundMessage(BaseModel):
    """FCM v1 message addressed to exactly one of topic or token."""

    topic: str | None = None
    token: str | None = None
    notification: dict[str, str]
    data: dict[str, str]
    android: dict[str, Any]
    apns: dict[str, Any]

    def to_fcm(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class RunSummary(BaseModel):
    """Operator-visible statistics for one scheduler run."""

    run_id: str
    dry_run: bool = False
    batches: int = 0
    processed: int = 0
    sent: int = 0
    retried: int = 0
    dead_lettered: int = 0
    invalid: int = 0
    claim_skipped: int = 0
    lost: int = 0
    released: int = 0
    errors: int = 0
