"""
Telephony adapter interface definition.

Every carrier adapter implements TelephonyAdapter. Expected vendor failures
(missing credential fields, rejected requests, transport errors) come back as
result objects with ``success``/``valid`` set to False. ``list_numbers`` has
no result envelope, so it raises TelephonyProviderError instead.
"""

from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, ClassVar

import httpx

from callbridge.config import get_settings
from callbridge.shared.logging import get_logger
from callbridge.telephony.models import (
    CallControlResult,
    CredentialsValidationResult,
    HealthCheckResult,
    InboundMessageEvent,
    MakeCallParams,
    MakeCallResult,
    NormalizedCallEvent,
    ProviderCredentials,
    ProviderPhoneNumber,
    RecordingResult,
    SendMessageResult,
    SendSmsParams,
    TransferCallResult,
    TransferParams,
)

logger = get_logger(__name__)

_NON_E164_CHARS = re.compile(r"[^\d+]")

# Statuses that prove the vendor is up but rejected our credentials
AUTH_FAILURE_STATUSES = frozenset({401, 403})


class TelephonyProviderError(Exception):
    """Base exception for telephony provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class VendorRequestError(TelephonyProviderError):
    """The vendor answered with a non-2xx status."""


class VendorTransportError(TelephonyProviderError):
    """The request never got a response (DNS, connect, timeout...)."""


class UnknownProviderError(TelephonyProviderError):
    """No adapter exists for the requested provider code."""


def normalize_phone_number(phone: str) -> str:
    """Normalize a phone number to E.164: keep digits and '+', ensure a leading '+'."""
    normalized = _NON_E164_CHARS.sub("", phone)
    if not normalized.startswith("+"):
        normalized = "+" + normalized
    return normalized


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 / RFC 2822 vendor timestamp, falling back to now (UTC)."""
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                return datetime.now(timezone.utc)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return datetime.now(timezone.utc)


def parse_balance(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_duration(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def coerce_credentials(credentials: ProviderCredentials | dict[str, Any]) -> ProviderCredentials:
    if isinstance(credentials, ProviderCredentials):
        return credentials
    return ProviderCredentials.model_validate(credentials)


def missing_fields(credentials: ProviderCredentials, *fields: str) -> str | None:
    """Return the "<field> is required" message for the first empty field."""
    for name in fields:
        if not getattr(credentials, name, None):
            return f"{name} is required"
    return None


def require_fields(credentials: ProviderCredentials, *fields: str) -> None:
    """Raise TelephonyProviderError for the first empty credential field."""
    error = missing_fields(credentials, *fields)
    if error:
        raise TelephonyProviderError(error, error_code="MISSING_CREDENTIALS")


def health_from_response(response: httpx.Response, latency_ms: float) -> HealthCheckResult:
    """Map a health check response.

    2xx is healthy. 401/403 means the vendor is up but the credentials are
    wrong. Any other status means the vendor is not serving requests.
    """
    if response.is_success:
        return HealthCheckResult(healthy=True, reachable=True, latency_ms=latency_ms)
    return HealthCheckResult(
        healthy=False,
        reachable=response.status_code in AUTH_FAILURE_STATUSES,
        latency_ms=latency_ms,
        error=f"HTTP {response.status_code}: {response.reason_phrase}",
    )


class TelephonyAdapter(ABC):
    """Abstract interface for telephony carriers."""

    provider_code: ClassVar[str]

    @abstractmethod
    async def validate_credentials(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> CredentialsValidationResult:
        """Check the credentials with a low-cost authenticated vendor call."""
        ...

    @abstractmethod
    async def check_health(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> HealthCheckResult:
        ...

    @abstractmethod
    async def list_numbers(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> list[ProviderPhoneNumber]:
        """List the phone numbers owned by the account.

        Raises:
            TelephonyProviderError: missing credentials, vendor rejection or
                transport failure.
        """
        ...

    @abstractmethod
    async def make_call(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: MakeCallParams,
    ) -> MakeCallResult:
        """Initiate an outbound call."""
        ...

    @abstractmethod
    async def hangup(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        ...

    @abstractmethod
    async def answer_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        ...

    @abstractmethod
    async def hold_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        ...

    @abstractmethod
    async def unhold_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        ...

    @abstractmethod
    async def start_recording(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> RecordingResult:
        ...

    @abstractmethod
    async def stop_recording(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> RecordingResult:
        ...

    @abstractmethod
    async def play_text(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        text: str,
        voice: str | None = None,
    ) -> CallControlResult:
        """Speak ``text`` into the live call with the vendor's TTS."""
        ...

    @abstractmethod
    async def play_audio(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        audio_url: str,
    ) -> CallControlResult:
        ...

    @abstractmethod
    async def transfer(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: TransferParams,
    ) -> TransferCallResult:
        ...

    @abstractmethod
    async def transfer_to_sip(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        sip_uri: str,
    ) -> TransferCallResult:
        """Hand a live call over to a SIP endpoint (AI voice agents)."""
        ...

    @abstractmethod
    async def send_sms(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: SendSmsParams,
    ) -> SendMessageResult:
        ...

    @abstractmethod
    def parse_webhook(self, payload: dict[str, Any]) -> NormalizedCallEvent | None:
        """Map a call webhook to a normalized event, or None if it is not one we track."""
        ...

    @abstractmethod
    def parse_message_webhook(self, payload: dict[str, Any]) -> InboundMessageEvent | None:
        ...

    @abstractmethod
    def validate_webhook(
        self,
        signature: str,
        payload: bytes | str | dict[str, Any],
        secret: str,
        *,
        url: str | None = None,
        timestamp: str | None = None,
    ) -> bool:
        """Verify the vendor's webhook signature. Must be called before trusting parse_webhook."""
        ...


class BaseTelephonyAdapter(TelephonyAdapter):
    """Shared HTTP plumbing for telephony adapters.

    Adapters hold no per-call state. An injected ``httpx.AsyncClient`` is
    reused for every request; otherwise each request opens its own client.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._http_client = http_client
        self._timeout = timeout if timeout is not None else get_settings().http_timeout_seconds

    normalize_phone_number = staticmethod(normalize_phone_number)

    def _vendor_error_message(self, data: dict[str, Any]) -> str | None:
        """Pull the human message out of a vendor error body."""
        return None

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._http_client is not None:
            return await self._http_client.request(method, url, timeout=self._timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, **kwargs)

    async def _check_reachability(self, url: str, **kwargs: Any) -> HealthCheckResult:
        start = time.perf_counter()
        try:
            response = await self._send("GET", url, **kwargs)
        except httpx.HTTPError as e:
            return HealthCheckResult(healthy=False, reachable=False, error=f"Network error: {e!s}")

        result = health_from_response(response, round((time.perf_counter() - start) * 1000, 1))
        if not result.healthy:
            logger.warning(
                "Carrier health check failed",
                extra={"provider": self.provider_code, "status_code": response.status_code},
            )
        return result

    def _unsupported(self, operation: str) -> str:
        return f"{operation} is not supported for {self.provider_code.capitalize()}"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Send a vendor request and return its JSON body.

        Raises:
            VendorRequestError: Non-2xx response.
            VendorTransportError: No response at all.
        """
        try:
            response = await self._send(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.error(
                "Vendor request failed",
                extra={
                    "provider": self.provider_code,
                    "operation": operation,
                    "error": str(e),
                },
            )
            raise VendorTransportError(
                message=f"Network error: {e!s}",
                error_code="HTTP_ERROR",
            ) from e

        data = _json_body(response)

        if response.status_code >= 400:
            message = self._vendor_error_message(data) or (
                f"{operation} failed: {response.status_code}"
            )
            logger.error(
                "Vendor rejected request",
                extra={
                    "provider": self.provider_code,
                    "operation": operation,
                    "status_code": response.status_code,
                    "error": message,
                },
            )
            raise VendorRequestError(
                message=message,
                error_code=str(response.status_code),
                provider_response=data,
            )

        return data


def _json_body(response: httpx.Response) -> dict[str, Any]:
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}
