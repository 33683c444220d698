"""Outcome recording guards: state machine checks and lost guarded writes."""

from datetime import timedelta

import pytest

from conftest import NOW

from pushsched.services.scheduler.dispatcher import Delivery
from pushsched.services.scheduler.gateway import GatewayError
from pushsched.services.scheduler.models import FailedNotification, NotificationHistory
from pushsched.services.scheduler.recorder import OutcomeRecorder


def _unavailable() -> GatewayError:
    return GatewayError("unavailable", "The service is currently unavailable.", status_code=503)


def _fatal() -> GatewayError:
    return GatewayError("UNREGISTERED", "Requested entity was not found.", status_code=404)


def test_recording_an_unclaimed_job_is_rejected(store, add_job, run_config):
    """Only a job read back in `processing` may move to an outcome."""

    job_id = add_job()
    job = store.get_job(job_id)
    recorder = OutcomeRecorder(store, run_config)

    with pytest.raises(ValueError):
        recorder.record_sent(job, Delivery(result="ok", message_id="m-1"), NOW)
    with pytest.raises(ValueError):
        recorder.record_invalid(job, NOW)
    with pytest.raises(ValueError):
        recorder.record_failure(job, _unavailable(), NOW)
    assert store.get_job(job_id).status == "queued"


def test_record_sent_reports_a_lost_write(store, add_job, count_rows, run_config):
    job_id = add_job()
    job = store.claim(job_id, NOW)
    store.release_stale_claims(NOW + timedelta(hours=1))

    written = OutcomeRecorder(store, run_config).record_sent(job, Delivery(result="ok"), NOW)

    assert written is False
    assert count_rows(NotificationHistory) == 0
    assert store.get_job(job_id).status == "queued"


@pytest.mark.parametrize("error", [_unavailable(), _fatal()])
def test_record_failure_reports_a_lost_write(store, add_job, count_rows, run_config, error):
    job_id = add_job()
    job = store.claim(job_id, NOW)
    store.release_stale_claims(NOW + timedelta(hours=1))

    decision = OutcomeRecorder(store, run_config).record_failure(job, error, NOW)

    assert decision is None
    assert count_rows(FailedNotification) == 0
    released = store.get_job(job_id)
    assert released.status == "queued"
    assert released.attempt_count == 0


def test_record_invalid_reports_a_lost_write(store, add_job, run_config):
    job_id = add_job(topic=None)
    job = store.claim(job_id, NOW)
    store.release_stale_claims(NOW + timedelta(hours=1))

    assert OutcomeRecorder(store, run_config).record_invalid(job, NOW) is False
    assert store.get_job(job_id).status == "queued"
