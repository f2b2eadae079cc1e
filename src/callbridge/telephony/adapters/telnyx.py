"""
Telnyx telephony adapter (Call Control v2).

REST: https://api.telnyx.com/v2, Bearer API key, JSON bodies.
Calls are addressed by ``call_control_id``; webhooks are signed with Ed25519.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from callbridge.config import get_settings
from callbridge.shared.logging import get_logger
from callbridge.telephony import twiml
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
from callbridge.telephony.signatures import verify_telnyx_signature

logger = get_logger(__name__)

TELNYX_API_BASE = "https://api.telnyx.com/v2"

TELNYX_HOLD_AUDIO_URL = "https://api.telnyx.com/v2/media/hold_music.mp3"

TELNYX_EVENT_MAP: dict[str, CallEventType] = {
    "call.initiated": CallEventType.INITIATED,
    "call.ringing": CallEventType.RINGING,
    "call.answered": CallEventType.ANSWERED,
    "call.bridged": CallEventType.ANSWERED,
    "call.hangup": CallEventType.ENDED,
    "call.recording.saved": CallEventType.RECORDING_READY,
}

TELNYX_NUMBER_TYPES: dict[str, NumberType] = {
    "local": NumberType.LOCAL,
    "toll_free": NumberType.TOLLFREE,
    "toll-free": NumberType.TOLLFREE,
    "tollfree": NumberType.TOLLFREE,
    "mobile": NumberType.MOBILE,
}


class TelnyxAdapter(BaseTelephonyAdapter):
    """Telnyx implementation of TelephonyAdapter."""

    provider_code = "telnyx"

    def __init__(
        self,
        *args: Any,
        base_url: str = TELNYX_API_BASE,
        webhook_tolerance_seconds: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._base_url = base_url.rstrip("/")
        self._webhook_tolerance_seconds = (
            webhook_tolerance_seconds
            if webhook_tolerance_seconds is not None
            else get_settings().telnyx_webhook_tolerance_seconds
        )

    def _get_headers(self, credentials: ProviderCredentials) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {credentials.api_key}",
            "Accept": "application/json",
        }

    def _vendor_error_message(self, data: dict[str, Any]) -> str | None:
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return errors[0].get("detail") or errors[0].get("title")
        return None

    async def _call_action(
        self,
        credentials: ProviderCredentials,
        call_id: str,
        action: str,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"{self._base_url}/calls/{call_id}/actions/{action}",
            operation=action.replace("_", " ").capitalize(),
            json=body or {},
            headers=self._get_headers(credentials),
        )

    async def validate_credentials(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> CredentialsValidationResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key")
        if error:
            return CredentialsValidationResult(valid=False, error=error)

        try:
            data = await self._request(
                "GET",
                f"{self._base_url}/balance",
                operation="Validate credentials",
                headers=self._get_headers(creds),
            )
        except TelephonyProviderError as e:
            return CredentialsValidationResult(valid=False, error=str(e))

        balance = data.get("data") or {}
        return CredentialsValidationResult(
            valid=True,
            account_info=AccountInfo(
                balance=parse_balance(balance.get("balance")),
                currency=balance.get("currency"),
            ),
        )

    async def check_health(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> HealthCheckResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key")
        if error:
            return HealthCheckResult(healthy=False, error=error)
        return await self._check_reachability(f"{self._base_url}/balance", headers=self._get_headers(creds))

    async def list_numbers(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> list[ProviderPhoneNumber]:
        creds = coerce_credentials(credentials)
        require_fields(creds, "api_key")

        data = await self._request(
            "GET",
            f"{self._base_url}/phone_numbers",
            operation="List numbers",
            params={"page[size]": 250},
            headers=self._get_headers(creds),
        )
        records = data.get("data")
        if not isinstance(records, list):
            return []
        return [_map_number(record) for record in records if isinstance(record, dict)]

    async def make_call(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: MakeCallParams,
    ) -> MakeCallResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key", "connection_id")
        if error:
            return MakeCallResult(success=False, error=error)

        body: dict[str, Any] = {
            "connection_id": creds.connection_id,
            "to": self.normalize_phone_number(params.to),
            "from": self.normalize_phone_number(params.caller_id or params.from_number),
        }
        if params.webhook_url:
            body["webhook_url"] = params.webhook_url
            body["webhook_url_method"] = "POST"
        if params.record:
            body["record"] = "record-from-answer"

        logger.info(
            "Initiating Telnyx call",
            extra={"to": body["to"], "from": body["from"]},
        )

        try:
            data = await self._request(
                "POST",
                f"{self._base_url}/calls",
                operation="Make call",
                json=body,
                headers=self._get_headers(creds),
            )
        except TelephonyProviderError as e:
            return MakeCallResult(success=False, error=str(e))

        call = data.get("data") or {}
        call_control_id = call.get("call_control_id")
        if not call_control_id:
            return MakeCallResult(success=False, error="Make call failed: missing call_control_id")
        return MakeCallResult(
            success=True,
            call_id=call_control_id,
            provider_call_id=call.get("call_leg_id") or call_control_id,
        )

    async def hangup(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        return await self._control(coerce_credentials(credentials), call_id, "hangup")

    async def _control(
        self,
        credentials: ProviderCredentials,
        call_id: str,
        action: str,
        body: dict[str, Any] | None = None,
    ) -> CallControlResult:
        error = missing_fields(credentials, "api_key")
        if error:
            return CallControlResult(success=False, error=error)
        try:
            await self._call_action(credentials, call_id, action, body)
        except TelephonyProviderError as e:
            return CallControlResult(success=False, error=str(e))
        return CallControlResult(success=True)

    async def answer_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        return await self._control(coerce_credentials(credentials), call_id, "answer")

    async def hold_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        return await self._control(
            coerce_credentials(credentials), call_id, "hold", {"audio_url": TELNYX_HOLD_AUDIO_URL}
        )

    async def unhold_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        return await self._control(coerce_credentials(credentials), call_id, "unhold")

    async def start_recording(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> RecordingResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key")
        if error:
            return RecordingResult(success=False, error=error)

        try:
            data = await self._call_action(
                creds, call_id, "record_start", {"format": "mp3", "channels": "dual"}
            )
        except TelephonyProviderError as e:
            return RecordingResult(success=False, error=str(e))
        result = data.get("data")
        result = result if isinstance(result, dict) else {}
        return RecordingResult(success=True, recording_id=result.get("recording_id") or call_id)

    async def stop_recording(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> RecordingResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key")
        if error:
            return RecordingResult(success=False, error=error)

        try:
            data = await self._call_action(creds, call_id, "record_stop")
        except TelephonyProviderError as e:
            return RecordingResult(success=False, error=str(e))
        result = data.get("data")
        result = result if isinstance(result, dict) else {}
        return RecordingResult(
            success=True,
            recording_id=result.get("recording_id") or call_id,
            recording_url=result.get("recording_url"),
        )

    async def play_text(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        text: str,
        voice: str | None = None,
    ) -> CallControlResult:
        return await self._control(
            coerce_credentials(credentials),
            call_id,
            "speak",
            {"payload": text, "voice": voice or "female", "language": twiml.DEFAULT_LANGUAGE},
        )

    async def play_audio(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        audio_url: str,
    ) -> CallControlResult:
        return await self._control(
            coerce_credentials(credentials), call_id, "playback_start", {"audio_url": audio_url}
        )

    async def transfer(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: TransferParams,
    ) -> TransferCallResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key")
        if error:
            return TransferCallResult(success=False, error=error)

        if params.type == TransferType.WARM:
            # ``to`` is the call_control_id of the consulted leg
            action, body = "bridge", {"call_control_id": params.to}
        else:
            action, body = "transfer", {"to": self.normalize_phone_number(params.to)}

        try:
            data = await self._call_action(creds, params.call_id, action, body)
        except TelephonyProviderError as e:
            return TransferCallResult(success=False, error=str(e))
        return TransferCallResult(
            success=True,
            new_call_id=(data.get("data") or {}).get("call_control_id"),
        )

    async def transfer_to_sip(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        sip_uri: str,
    ) -> TransferCallResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key")
        if error:
            return TransferCallResult(success=False, error=error)

        try:
            data = await self._call_action(
                creds,
                call_id,
                "transfer",
                {"to": sip_uri, "sip_transport_protocol": "UDP"},
            )
        except TelephonyProviderError as e:
            return TransferCallResult(success=False, error=str(e))
        return TransferCallResult(
            success=True,
            new_call_id=(data.get("data") or {}).get("call_control_id"),
        )

    async def send_sms(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: SendSmsParams,
    ) -> SendMessageResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "api_key")
        if error:
            return SendMessageResult(success=False, error=error)

        body: dict[str, Any] = {
            "from": self.normalize_phone_number(params.from_number),
            "to": self.normalize_phone_number(params.to),
            "text": params.body,
            "type": "MMS" if params.media_urls else "SMS",
        }
        if params.media_urls:
            body["media_urls"] = list(params.media_urls)

        try:
            data = await self._request(
                "POST",
                f"{self._base_url}/messages",
                operation="Send SMS",
                json=body,
                headers=self._get_headers(creds),
            )
        except TelephonyProviderError as e:
            return SendMessageResult(success=False, error=str(e))
        return SendMessageResult(success=True, message_id=(data.get("data") or {}).get("id"))

    def parse_webhook(self, payload: dict[str, Any]) -> NormalizedCallEvent | None:
        event_type, occurred_at, event = _unwrap(payload)
        mapped = TELNYX_EVENT_MAP.get(event_type) if event_type else None
        if mapped is None:
            if event_type and event_type.startswith("call."):
                logger.info("Ignoring Telnyx call event", extra={"event_type": event_type})
            return None

        call_id = event.get("call_control_id") or event.get("call_session_id")
        if not isinstance(call_id, str) or not call_id:
            logger.warning(
                "Telnyx call event without call_control_id",
                extra={"event_type": event_type},
            )
            return None

        recording_url = None
        if mapped == CallEventType.RECORDING_READY:
            urls = event.get("recording_urls") or event.get("public_recording_urls")
            urls = urls if isinstance(urls, dict) else {}
            recording_url = urls.get("mp3") or urls.get("wav") or event.get("recording_url")

        direction = str(event.get("direction", "incoming"))
        try:
            return NormalizedCallEvent(
                type=mapped,
                call_id=call_id,
                provider_call_id=event.get("call_leg_id") or call_id,
                from_number=event.get("from") or "",
                to=event.get("to") or "",
                direction=(
                    CallDirection.OUTBOUND
                    if direction in ("outgoing", "outbound")
                    else CallDirection.INBOUND
                ),
                timestamp=parse_timestamp(occurred_at),
                duration=parse_duration(event.get("duration_secs")),
                end_reason=event.get("hangup_cause") if mapped == CallEventType.ENDED else None,
                recording_url=recording_url,
                raw_payload=dict(payload),
            )
        except ValidationError as e:
            logger.warning(
                "Malformed Telnyx call event",
                extra={"event_type": event_type, "error": str(e)},
            )
            return None

    def parse_message_webhook(self, payload: dict[str, Any]) -> InboundMessageEvent | None:
        event_type, occurred_at, event = _unwrap(payload)
        message_id = event.get("id")
        if event_type != "message.received" or not isinstance(message_id, str) or not message_id:
            return None

        sender = event.get("from") or {}
        recipients = event.get("to")
        first = recipients[0] if isinstance(recipients, list) and recipients else None
        media = event.get("media")
        try:
            return InboundMessageEvent(
                message_id=message_id,
                from_number=sender.get("phone_number", "") if isinstance(sender, dict) else str(sender),
                to=first.get("phone_number", "") if isinstance(first, dict) else "",
                body=event.get("text") or "",
                media_urls=[
                    m["url"] for m in media if isinstance(m, dict) and m.get("url")
                ] if isinstance(media, list) else [],
                timestamp=parse_timestamp(occurred_at),
                raw_payload=dict(payload),
            )
        except ValidationError as e:
            logger.warning("Malformed Telnyx message event", extra={"error": str(e)})
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
        """Validate ``telnyx-signature-ed25519``. ``secret`` is the base64 account public key."""
        return verify_telnyx_signature(
            secret,
            signature,
            timestamp,
            payload,
            tolerance_seconds=self._webhook_tolerance_seconds,
        )

    # TeXML documents

    def ringing_response(self, webhook_url: str, timeout: int = 30) -> str:
        return twiml.ringing_response(webhook_url, timeout)

    def forward_response(self, to: str, caller_id: str | None = None, timeout: int = 30) -> str:
        return twiml.forward_response(self.normalize_phone_number(to), caller_id, timeout)

    def voicemail_response(
        self,
        webhook_url: str,
        greeting: str | None = None,
        max_length: int = 120,
        transcribe: bool = False,
    ) -> str:
        return twiml.voicemail_response(webhook_url, greeting, max_length, transcribe, voice="female")


def _unwrap(payload: dict[str, Any]) -> tuple[str | None, Any, dict[str, Any]]:
    """Return (event_type, occurred_at, payload) from either webhook envelope shape."""
    if not isinstance(payload, dict):
        return None, None, {}
    data = payload.get("data")
    data = data if isinstance(data, dict) else {}
    event_type = data.get("event_type") or payload.get("event_type")
    occurred_at = data.get("occurred_at") or payload.get("occurred_at")
    event = data.get("payload") or payload.get("payload") or {}
    return (
        event_type if isinstance(event_type, str) else None,
        occurred_at,
        event if isinstance(event, dict) else {},
    )


def _map_number(record: dict[str, Any]) -> ProviderPhoneNumber:
    has_messaging = bool(record.get("messaging_profile_id"))
    return ProviderPhoneNumber(
        phone_number=record.get("phone_number", ""),
        provider_number_id=str(record.get("id", "")),
        friendly_name=record.get("connection_name") or None,
        type=TELNYX_NUMBER_TYPES.get(str(record.get("phone_number_type", "")).lower(), NumberType.UNKNOWN),
        country=record.get("country_iso_alpha2") or "unknown",
        capabilities=NumberCapabilities(voice=True, sms=has_messaging, mms=has_messaging),
    )
