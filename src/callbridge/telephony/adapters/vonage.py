"""
Vonage telephony adapter.

Two APIs with two auth schemes:
- account/SMS API (https://rest.nexmo.com), HTTP Basic ``api_key:api_secret``;
- Voice API (https://api.nexmo.com/v1/calls), RS256 application JWT signed
  with the application's private key.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

import jwt
from pydantic import ValidationError

from callbridge.shared.logging import get_logger
from callbridge.telephony.interface import (
    BaseTelephonyAdapter,
    TelephonyProviderError,
    coerce_credentials,
    missing_fields,
    parse_balance,
    parse_duration,
    parse_timestamp,
    require_fields,
)
from callbridge.telephony.models import (
    AccountInfo,
    CallControlResult,
    CallDirection,
    CallEventType,
    CredentialsValidationResult,
    HealthCheckResult,
    InboundMessageEvent,
    MakeCallParams,
    MakeCallResult,
    NormalizedCallEvent,
    NumberCapabilities,
    NumberType,
    ProviderCredentials,
    ProviderPhoneNumber,
    RecordingResult,
    SendMessageResult,
    SendSmsParams,
    TransferCallResult,
    TransferParams,
    TransferType,
)
from callbridge.telephony.signatures import verify_vonage_signature

logger = get_logger(__name__)

VONAGE_REST_BASE = "https://rest.nexmo.com"
VONAGE_API_BASE = "https://api.nexmo.com"

JWT_TTL_SECONDS = 900

VONAGE_TTS_LANGUAGE = "ru-RU"

VONAGE_STATUS_MAP: dict[str, CallEventType] = {
    "started": CallEventType.INITIATED,
    "ringing": CallEventType.RINGING,
    "answered": CallEventType.ANSWERED,
    "completed": CallEventType.ENDED,
    "busy": CallEventType.ENDED,
    "cancelled": CallEventType.ENDED,
    "unanswered": CallEventType.ENDED,
    "rejected": CallEventType.ENDED,
    "timeout": CallEventType.ENDED,
    "disconnected": CallEventType.ENDED,
    "failed": CallEventType.FAILED,
}

# Documented statuses that are not call lifecycle transitions
VONAGE_IGNORED_STATUSES = frozenset({"human", "machine", "record", "input", "transfer"})

VONAGE_NUMBER_TYPES: dict[str, NumberType] = {
    "mobile-lvn": NumberType.MOBILE,
    "landline": NumberType.LOCAL,
    "landline-toll-free": NumberType.TOLLFREE,
}


def _vonage_number(phone: str) -> str:
    # Vonage expects E.164 digits without the leading '+'
    return BaseTelephonyAdapter.normalize_phone_number(phone).lstrip("+")


class VonageAdapter(BaseTelephonyAdapter):
    """Vonage implementation of TelephonyAdapter."""

    provider_code = "vonage"

    def __init__(
        self,
        *args: Any,
        rest_base_url: str = VONAGE_REST_BASE,
        api_base_url: str = VONAGE_API_BASE,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._rest_base_url = rest_base_url.rstrip("/")
        self._api_base_url = api_base_url.rstrip("/")

    def _get_auth(self, credentials: ProviderCredentials) -> tuple[str, str]:
        return (credentials.api_key or "", credentials.api_secret or "")

    def _vendor_error_message(self, data: dict[str, Any]) -> str | None:
        return (
            data.get("detail")
            or data.get("title")
            or data.get("error_title")
            or data.get("error-code-label")
        )

    def generate_jwt(self, credentials: ProviderCredentials) -> str:
        """Build a short-lived application JWT for the Voice API.

        Raises:
            jwt.PyJWTError / ValueError: the private key cannot sign RS256.
        """
        now = int(time.time())
        claims = {
            "application_id": credentials.application_id,
            "iat": now,
            "exp": now + JWT_TTL_SECONDS,
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(claims, credentials.private_key or "", algorithm="RS256")

    def _voice_headers(self, credentials: ProviderCredentials) -> dict[str, str] | None:
        try:
            token = self.generate_jwt(credentials)
        except (jwt.PyJWTError, ValueError, TypeError) as e:
            logger.error(
                "Failed to sign Vonage application JWT",
                extra={"error": type(e).__name__},
            )
            return None
        return {"Authorization": f"Bearer {token}"}

    async def _update_call(
        self,
        credentials: ProviderCredentials,
        call_id: str,
        body: dict[str, Any],
        operation: str,
        resource: str = "",
    ) -> dict[str, Any]:
        headers = self._voice_headers(credentials)
        if headers is None:
            raise TelephonyProviderError("Invalid private_key", error_code="INVALID_PRIVATE_KEY")
        return await self._request(
            "PUT",
            f"{self._api_base_url}/v1/calls/{call_id}{resource}",
            operation=operation,
            json=body,
            headers=headers,
        )

    async def validate_credentials(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> CredentialsValidationResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key", "api_secret")
        if error:
            return CredentialsValidationResult(valid=False, error=error)

        try:
            data = await self._request(
                "GET",
                f"{self._rest_base_url}/account/get-balance",
                operation="Validate credentials",
                auth=self._get_auth(creds),
            )
        except TelephonyProviderError as e:
            return CredentialsValidationResult(valid=False, error=str(e))

        return CredentialsValidationResult(
            valid=True,
            account_info=AccountInfo(
                balance=parse_balance(data.get("value")),
                currency="EUR",
                account_id=creds.api_key,
            ),
        )

    async def check_health(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> HealthCheckResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key", "api_secret")
        if error:
            return HealthCheckResult(healthy=False, error=error)
        return await self._check_reachability(
            f"{self._rest_base_url}/account/get-balance", auth=self._get_auth(creds)
        )

    async def list_numbers(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> list[ProviderPhoneNumber]:
        creds = coerce_credentials(credentials)
        require_fields(creds, "api_key", "api_secret")

        data = await self._request(
            "GET",
            f"{self._rest_base_url}/account/numbers",
            operation="List numbers",
            params={"size": 100},
            auth=self._get_auth(creds),
        )
        records = data.get("numbers")
        if not isinstance(records, list):
            return []
        return [_map_number(record) for record in records if isinstance(record, dict)]

    async def make_call(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: MakeCallParams,
    ) -> MakeCallResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "application_id", "private_key")
        if error:
            return MakeCallResult(success=False, error=error)
        if not params.webhook_url:
            return MakeCallResult(success=False, error="webhook_url is required")

        headers = self._voice_headers(creds)
        if headers is None:
            return MakeCallResult(success=False, error="Invalid private_key")

        body = {
            "to": [{"type": "phone", "number": _vonage_number(params.to)}],
            "from": {
                "type": "phone",
                "number": _vonage_number(params.caller_id or params.from_number),
            },
            "answer_url": [params.webhook_url],
            "event_url": [params.webhook_url],
        }

        logger.info(
            "Initiating Vonage call",
            extra={"to": body["to"][0]["number"], "from": body["from"]["number"]},
        )

        try:
            data = await self._request(
                "POST",
                f"{self._api_base_url}/v1/calls",
                operation="Make call",
                json=body,
                headers=headers,
            )
        except TelephonyProviderError as e:
            return MakeCallResult(success=False, error=str(e))

        call_uuid = data.get("uuid")
        if not call_uuid:
            return MakeCallResult(success=False, error="Make call failed: missing call uuid")
        return MakeCallResult(
            success=True,
            call_id=call_uuid,
            provider_call_id=data.get("conversation_uuid") or call_uuid,
        )

    async def hangup(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        return await self._control(
            coerce_credentials(credentials), call_id, {"action": "hangup"}, "Hangup"
        )

    async def _control(
        self,
        credentials: ProviderCredentials,
        call_id: str,
        body: dict[str, Any],
        operation: str,
        resource: str = "",
    ) -> CallControlResult:
        error = missing_fields(credentials, "application_id", "private_key")
        if error:
            return CallControlResult(success=False, error=error)
        try:
            await self._update_call(credentials, call_id, body, operation, resource)
        except TelephonyProviderError as e:
            return CallControlResult(success=False, error=str(e))
        return CallControlResult(success=True)

    async def answer_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        # Inbound calls are answered by the NCCO served from answer_url
        return CallControlResult(success=False, error=self._unsupported("Answer"))

    async def hold_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        return await self._control(
            coerce_credentials(credentials), call_id, {"action": "earmuff"}, "Hold"
        )

    async def unhold_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        return await self._control(
            coerce_credentials(credentials), call_id, {"action": "unearmuff"}, "Unhold"
        )

    async def start_recording(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> RecordingResult:
        # Recording is an NCCO "record" action, not a call mutation
        return RecordingResult(success=False, error=self._unsupported("Start recording"))

    async def stop_recording(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> RecordingResult:
        return RecordingResult(success=False, error=self._unsupported("Stop recording"))

    async def play_text(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        text: str,
        voice: str | None = None,
    ) -> CallControlResult:
        body: dict[str, Any] = {"text": text, "language": VONAGE_TTS_LANGUAGE}
        if voice and voice.isdigit():
            # Vonage selects voices by language plus a numeric style
            body["style"] = int(voice)
        return await self._control(
            coerce_credentials(credentials), call_id, body, "Play text", resource="/talk"
        )

    async def play_audio(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        audio_url: str,
    ) -> CallControlResult:
        return await self._control(
            coerce_credentials(credentials),
            call_id,
            {"stream_url": [audio_url]},
            "Play audio",
            resource="/stream",
        )

    async def _transfer_to_endpoint(
        self, creds: ProviderCredentials, call_id: str, endpoint: dict[str, str], operation: str
    ) -> TransferCallResult:
        body = {
            "action": "transfer",
            "destination": {
                "type": "ncco",
                "ncco": [{"action": "connect", "endpoint": [endpoint]}],
            },
        }
        try:
            await self._update_call(creds, call_id, body, operation)
        except TelephonyProviderError as e:
            return TransferCallResult(success=False, error=str(e))
        return TransferCallResult(success=True)

    async def transfer(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: TransferParams,
    ) -> TransferCallResult:
        if params.type == TransferType.WARM:
            return TransferCallResult(
                success=False, error="Warm transfer is not supported for Vonage"
            )

        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "application_id", "private_key")
        if error:
            return TransferCallResult(success=False, error=error)

        return await self._transfer_to_endpoint(
            creds,
            params.call_id,
            {"type": "phone", "number": _vonage_number(params.to)},
            "Transfer",
        )

    async def transfer_to_sip(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        sip_uri: str,
    ) -> TransferCallResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "application_id", "private_key")
        if error:
            return TransferCallResult(success=False, error=error)

        return await self._transfer_to_endpoint(
            creds, call_id, {"type": "sip", "uri": sip_uri}, "SIP transfer"
        )

    async def send_sms(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: SendSmsParams,
    ) -> SendMessageResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key", "api_secret")
        if error:
            return SendMessageResult(success=False, error=error)

        form = {
            "api_key": creds.api_key,
            "api_secret": creds.api_secret,
            "from": _vonage_number(params.from_number),
            "to": _vonage_number(params.to),
            "text": params.body,
            "type": "unicode",
        }
        try:
            data = await self._request(
                "POST",
                f"{self._rest_base_url}/sms/json",
                operation="Send SMS",
                data=form,
            )
        except TelephonyProviderError as e:
            return SendMessageResult(success=False, error=str(e))

        # The SMS API answers 200 and reports per-message status codes
        messages = data.get("messages") or [{}]
        first = messages[0]
        if str(first.get("status", "")) != "0":
            return SendMessageResult(
                success=False,
                error=first.get("error-text") or "Send SMS failed",
            )
        return SendMessageResult(success=True, message_id=first.get("message-id"))

    def parse_webhook(self, payload: dict[str, Any]) -> NormalizedCallEvent | None:
        if not isinstance(payload, dict):
            return None
        status = payload.get("status")
        if status is not None and not isinstance(status, str):
            logger.warning("Malformed Vonage call status", extra={"status": repr(status)})
            return None
        recording_url = payload.get("recording_url")
        recording_url = recording_url if isinstance(recording_url, str) else None

        if not status and recording_url:
            event_type: CallEventType | None = CallEventType.RECORDING_READY
        else:
            event_type = VONAGE_STATUS_MAP.get((status or "").lower())

        if event_type is None:
            if status not in VONAGE_IGNORED_STATUSES:
                logger.warning("Unknown Vonage call status", extra={"status": status})
            return None

        call_id = payload.get("uuid") or payload.get("conversation_uuid")
        if not isinstance(call_id, str) or not call_id:
            return None

        end_reason = None
        if event_type in (CallEventType.ENDED, CallEventType.FAILED):
            end_reason = payload.get("reason") or status

        try:
            return NormalizedCallEvent(
                type=event_type,
                call_id=call_id,
                provider_call_id=payload.get("conversation_uuid") or call_id,
                from_number=_plus(payload.get("from")),
                to=_plus(payload.get("to")),
                direction=(
                    CallDirection.OUTBOUND
                    if payload.get("direction") == "outbound"
                    else CallDirection.INBOUND
                ),
                timestamp=parse_timestamp(payload.get("timestamp") or payload.get("end_time")),
                duration=parse_duration(payload.get("duration")),
                end_reason=end_reason,
                recording_url=recording_url,
                raw_payload=dict(payload),
            )
        except ValidationError as e:
            logger.warning(
                "Malformed Vonage call event",
                extra={"call_id": call_id, "error": str(e)},
            )
            return None

    def parse_message_webhook(self, payload: dict[str, Any]) -> InboundMessageEvent | None:
        if not isinstance(payload, dict):
            return None
        message_id = payload.get("messageId") or payload.get("message_uuid")
        if not isinstance(message_id, str) or not message_id:
            return None
        try:
            return InboundMessageEvent(
                message_id=message_id,
                from_number=_plus(payload.get("msisdn") or payload.get("from")),
                to=_plus(payload.get("to")),
                body=payload.get("text") or "",
                timestamp=parse_timestamp(payload.get("message-timestamp") or payload.get("timestamp")),
                raw_payload=dict(payload),
            )
        except ValidationError as e:
            logger.warning(
                "Malformed Vonage message event",
                extra={"message_id": message_id, "error": str(e)},
            )
            return None

    def validate_webhook(
        self,
        signature: str,
        payload: bytes | str | dict[str, Any],
        secret: str,
        *,
        url: str | None = None,
        timestamp: str | None = None,
    ) -> bool:
        """Validate the signed JWT from the Authorization header against the signature secret."""
        return verify_vonage_signature(secret, signature, payload)


def _plus(number: Any) -> str:
    if not number:
        return ""
    if isinstance(number, dict):
        number = number.get("number") or ""
    text = str(number)
    return text if text.startswith("+") or not text.isdigit() else "+" + text


def _map_number(record: dict[str, Any]) -> ProviderPhoneNumber:
    features = record.get("features")
    features = {str(f).upper() for f in features} if isinstance(features, list) else set()
    msisdn = str(record.get("msisdn", ""))
    return ProviderPhoneNumber(
        phone_number=_plus(msisdn),
        provider_number_id=msisdn,
        type=VONAGE_NUMBER_TYPES.get(str(record.get("type", "")), NumberType.UNKNOWN),
        country=record.get("country") or "unknown",
        capabilities=NumberCapabilities(
            voice="VOICE" in features,
            sms="SMS" in features,
            mms="MMS" in features,
        ),
    )
