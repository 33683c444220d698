"""Firebase Cloud Messaging (HTTP v1) gateway adapter.

This module is the only place that interprets raw gateway errors: every
failure leaving `send` is reduced to a `FailureSignal` by `signal_from_exception`
before the retry policy sees it.
"""

import asyncio
import json
import re

import google.auth
import httpx
from google.auth.exceptions import DefaultCredentialsError, RefreshError
from google.auth.exceptions import TransportError as AuthTransportError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from pushsched.common.config import ConfigurationError, SchedulerSettings
from pushsched.common.logging import logger
from pushsched.services.scheduler.retry_policy import RETRYABLE_SIGNALS, FailureSignal
from pushsched.services.scheduler.schemas import OutboundMessage


FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"

_TRANSIENT_TEXT = re.compile(r"429|quota|exhausted|unavailable|deadline", re.IGNORECASE)

_STATUS_FALLBACK = {
    400: FailureSignal.INVALID_ARGUMENT,
    401: FailureSignal.UNAUTHENTICATED,
    403: FailureSignal.PERMISSION_DENIED,
    404: FailureSignal.NOT_FOUND,
    429: FailureSignal.RESOURCE_EXHAUSTED,
    500: FailureSignal.INTERNAL,
    503: FailureSignal.UNAVAILABLE,
    504: FailureSignal.DEADLINE_EXCEEDED,
}


class GatewayError(Exception):
    """Typed gateway failure with a machine-readable code and human message."""

    def __init__(self, code: str | None, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def _normalize_code(code) -> str:
    if not code:
        return ""
    return str(code).rsplit("/", 1)[-1].strip().lower().replace("_", "-")


def _signal_from_text(message: str) -> FailureSignal:
    match = _TRANSIENT_TEXT.search(message)
    if match is None:
        return FailureSignal.UNKNOWN
    keyword = match.group(0).lower()
    if keyword in ("429", "quota"):
        return FailureSignal.QUOTA_EXCEEDED
    if keyword == "exhausted":
        return FailureSignal.RESOURCE_EXHAUSTED
    if keyword == "unavailable":
        return FailureSignal.UNAVAILABLE
    return FailureSignal.DEADLINE_EXCEEDED


def signal_from_error(code: str | None, message: str) -> FailureSignal:
    """Map a raw error code (FCM status, errorCode or SDK-style) plus message to a signal.

    A transient code is final. Any other code, known or not, is overridden by
    transient wording in the message.
    """

    normalized = _normalize_code(code)
    try:
        signal = FailureSignal(normalized)
    except ValueError:
        signal = FailureSignal.UNKNOWN
    if signal in RETRYABLE_SIGNALS:
        return signal
    text_signal = _signal_from_text(message)
    return signal if text_signal is FailureSignal.UNKNOWN else text_signal


def signal_from_exception(exc: BaseException) -> FailureSignal:
    """Reduce any exception raised while sending to a `FailureSignal`."""

    if isinstance(exc, GatewayError):
        return signal_from_error(exc.code, exc.message)
    if isinstance(exc, httpx.TimeoutException):
        return FailureSignal.DEADLINE_EXCEEDED
    if isinstance(exc, httpx.TransportError):
        return FailureSignal.UNAVAILABLE
    return signal_from_error(getattr(exc, "code", None), str(exc))


def error_from_response(response: httpx.Response) -> GatewayError:
    """Build a `GatewayError` from an FCM error body.

    The FCM-specific `errorCode` detail is preferred over the generic status.
    """

    code = None
    message = f"FCM request failed with HTTP {response.status_code}"
    try:
        error = response.json().get("error", {})
    except (ValueError, AttributeError):
        error = {}
    if isinstance(error, dict):
        message = error.get("message") or message
        code = error.get("status")
        for detail in error.get("details") or []:
            if isinstance(detail, dict) and detail.get("errorCode"):
                code = detail["errorCode"]
                break
    if not code and response.status_code in _STATUS_FALLBACK:
        code = _STATUS_FALLBACK[response.status_code].value
    return GatewayError(code, message, status_code=response.status_code)


def load_credentials(settings: SchedulerSettings):
    """Resolve Google credentials for FCM, inline service account first.

    Any problem here is a configuration failure and aborts the run.
    """

    if settings.gcp_sa_json:
        try:
            info = json.loads(settings.gcp_sa_json)
            if not isinstance(info, dict):
                raise ValueError("service account payload must be a JSON object")
            return service_account.Credentials.from_service_account_info(info, scopes=[FCM_SCOPE])
        except (ValueError, KeyError) as exc:
            raise ConfigurationError(f"GCP_SA_JSON is invalid: {exc}") from exc
    try:
        credentials, _ = google.auth.default(scopes=[FCM_SCOPE])
    except DefaultCredentialsError as exc:
        raise ConfigurationError(f"no Google application default credentials: {exc}") from exc
    return credentials


class GoogleAccessTokens:
    """Async bearer-token source backed by refreshable Google credentials."""

    def __init__(self, credentials) -> None:
        self.credentials = credentials

    async def __call__(self) -> str:
        if not self.credentials.valid:
            await asyncio.to_thread(self.credentials.refresh, Request())
        return self.credentials.token


class FcmGateway:
    """Sends one message per call to the FCM v1 `messages:send` endpoint."""

    def __init__(
        self,
        project_id: str,
        token_provider,
        client: httpx.AsyncClient | None = None,
        endpoint: str = "https://fcm.googleapis.com/v1",
        timeout_seconds: float = 10.0,
    ) -> None:
        self.project_id = project_id
        self.token_provider = token_provider
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self.url = f"{endpoint.rstrip('/')}/projects/{project_id}/messages:send"

    async def send(self, message: OutboundMessage) -> str:
        """Deliver one message and return the gateway message id."""

        try:
            access_token = await self.token_provider()
        except RefreshError as exc:
            raise GatewayError("unauthenticated", str(exc)) from exc
        except AuthTransportError as exc:
            raise GatewayError("unavailable", str(exc)) from exc

        response = await self.client.post(
            self.url,
            json={"message": message.to_fcm(), "validate_only": False},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code >= 400:
            raise error_from_response(response)
        # Delivered already; an unreadable body must not turn into a failure.
        try:
            return response.json().get("name", "")
        except (ValueError, AttributeError):
            logger.warning("unreadable FCM success body status=%s", response.status_code)
            return ""

    async def aclose(self) -> None:
        await self.client.aclose()
