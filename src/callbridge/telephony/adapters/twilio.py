"""
Twilio telephony adapter.

REST: https://api.twilio.com/2010-04-01/Accounts/{AccountSid}/...
HTTP Basic auth (account SID + auth token), form-encoded bodies.
Live-call mutations replace the call's TwiML document.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

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
from callbridge.telephony.signatures import verify_twilio_signature

logger = get_logger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"
TWILIO_MEDIA_HOST = "https://api.twilio.com"
TWILIO_HOLD_MUSIC_URL = "http://com.twilio.sounds.music.s3.amazonaws.com/MARKOVICHAMP-B4.mp3"

TOLL_FREE_PREFIXES = ("+1800", "+1888", "+1877")

MAX_MMS_MEDIA = 10

# Mapping from Twilio CallStatus to canonical event types
TWILIO_STATUS_MAP: dict[str, CallEventType] = {
    "queued": CallEventType.RINGING,
    "initiated": CallEventType.INITIATED,
    "ringing": CallEventType.RINGING,
    "in-progress": CallEventType.ANSWERED,
    "completed": CallEventType.ENDED,
    "busy": CallEventType.ENDED,
    "failed": CallEventType.FAILED,
    "no-answer": CallEventType.ENDED,
    "canceled": CallEventType.ENDED,
}

# Statuses whose name is the reason the call ended
TWILIO_END_REASONS = {"busy", "failed", "no-answer", "canceled", "completed"}

INACTIVE_ACCOUNT_STATUSES = {"suspended", "closed"}

STATUS_CALLBACK_EVENTS = "initiated ringing answered completed"


class TwilioAdapter(BaseTelephonyAdapter):
    """Twilio implementation of TelephonyAdapter."""

    provider_code = "twilio"

    def __init__(self, *args: Any, base_url: str = TWILIO_API_BASE, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._base_url = base_url.rstrip("/")

    def _get_auth(self, credentials: ProviderCredentials) -> tuple[str, str]:
        return (credentials.account_sid or "", credentials.auth_token or "")

    def _get_api_url(self, credentials: ProviderCredentials, endpoint: str) -> str:
        return f"{self._base_url}/Accounts/{credentials.account_sid}{endpoint}"

    def _vendor_error_message(self, data: dict[str, Any]) -> str | None:
        return data.get("message")

    async def _update_call(
        self, credentials: ProviderCredentials, call_id: str, form: dict[str, str], operation: str
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            self._get_api_url(credentials, f"/Calls/{call_id}.json"),
            operation=operation,
            data=form,
            auth=self._get_auth(credentials),
        )

    async def validate_credentials(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> CredentialsValidationResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "account_sid", "auth_token")
        if error:
            return CredentialsValidationResult(valid=False, error=error)

        try:
            account = await self._request(
                "GET",
                self._get_api_url(creds, ".json"),
                operation="Validate credentials",
                auth=self._get_auth(creds),
            )
        except TelephonyProviderError as e:
            return CredentialsValidationResult(valid=False, error=str(e))

        status = account.get("status")
        if status in INACTIVE_ACCOUNT_STATUSES:
            return CredentialsValidationResult(valid=False, error=f"Account is {status}")

        balance: float | None = None
        currency: str | None = None
        try:
            balance_data = await self._request(
                "GET",
                self._get_api_url(creds, "/Balance.json"),
                operation="Fetch balance",
                auth=self._get_auth(creds),
            )
        except TelephonyProviderError as e:
            # Subaccounts cannot read the balance; the account fetch already proved the keys.
            logger.info(
                "Twilio balance unavailable",
                extra={"error_code": e.error_code},
            )
        else:
            balance = parse_balance(balance_data.get("balance"))
            currency = balance_data.get("currency")

        return CredentialsValidationResult(
            valid=True,
            account_info=AccountInfo(
                balance=balance,
                currency=currency,
                account_name=account.get("friendly_name"),
                account_id=account.get("sid") or creds.account_sid,
            ),
        )

    async def check_health(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> HealthCheckResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "account_sid", "auth_token")
        if error:
            return HealthCheckResult(healthy=False, error=error)
        return await self._check_reachability(
            self._get_api_url(creds, ".json"), auth=self._get_auth(creds)
        )

    async def list_numbers(
        self, credentials: ProviderCredentials | dict[str, Any]
    ) -> list[ProviderPhoneNumber]:
        creds = coerce_credentials(credentials)
        require_fields(creds, "account_sid", "auth_token")

        data = await self._request(
            "GET",
            self._get_api_url(creds, "/IncomingPhoneNumbers.json"),
            operation="List numbers",
            params={"PageSize": 1000},
            auth=self._get_auth(creds),
        )
        records = data.get("incoming_phone_numbers")
        if not isinstance(records, list):
            return []
        return [_map_number(record) for record in records if isinstance(record, dict)]

    async def make_call(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: MakeCallParams,
    ) -> MakeCallResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "account_sid", "auth_token")
        if error:
            return MakeCallResult(success=False, error=error)
        if not params.webhook_url:
            return MakeCallResult(success=False, error="webhook_url is required")

        form: dict[str, str] = {
            "To": self.normalize_phone_number(params.to),
            "From": self.normalize_phone_number(params.caller_id or params.from_number),
            "Url": params.webhook_url,
            "Method": "POST",
            "StatusCallback": params.webhook_url,
            "StatusCallbackMethod": "POST",
            "StatusCallbackEvent": STATUS_CALLBACK_EVENTS,
        }
        if params.record:
            form["Record"] = "true"

        logger.info(
            "Initiating Twilio call",
            extra={"to": form["To"], "from": form["From"]},
        )

        try:
            data = await self._request(
                "POST",
                self._get_api_url(creds, "/Calls.json"),
                operation="Make call",
                data=form,
                auth=self._get_auth(creds),
            )
        except TelephonyProviderError as e:
            return MakeCallResult(success=False, error=str(e))

        sid = data.get("sid")
        if not sid:
            return MakeCallResult(success=False, error="Make call failed: missing call sid")
        return MakeCallResult(success=True, call_id=sid, provider_call_id=sid)

    async def hangup(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        return await self._control(
            coerce_credentials(credentials), call_id, {"Status": "completed"}, "Hangup"
        )

    async def _control(
        self, credentials: ProviderCredentials, call_id: str, form: dict[str, str], operation: str
    ) -> CallControlResult:
        error = missing_fields(credentials, "account_sid", "auth_token")
        if error:
            return CallControlResult(success=False, error=error)
        try:
            await self._update_call(credentials, call_id, form, operation)
        except TelephonyProviderError as e:
            return CallControlResult(success=False, error=str(e))
        return CallControlResult(success=True)

    async def answer_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        # Inbound calls are answered by the TwiML returned from the voice webhook
        return CallControlResult(success=False, error=self._unsupported("Answer"))

    async def hold_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        document = twiml.play_response(TWILIO_HOLD_MUSIC_URL, loop=0)
        return await self._control(coerce_credentials(credentials), call_id, {"Twiml": document}, "Hold")

    async def unhold_call(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> CallControlResult:
        # The pre-hold TwiML is gone; callers resume with a transfer or play_text
        return CallControlResult(success=False, error=self._unsupported("Unhold"))

    async def start_recording(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> RecordingResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "account_sid", "auth_token")
        if error:
            return RecordingResult(success=False, error=error)

        try:
            data = await self._request(
                "POST",
                self._get_api_url(creds, f"/Calls/{call_id}/Recordings.json"),
                operation="Start recording",
                auth=self._get_auth(creds),
            )
        except TelephonyProviderError as e:
            return RecordingResult(success=False, error=str(e))
        return RecordingResult(success=True, recording_id=data.get("sid"))

    async def stop_recording(
        self, credentials: ProviderCredentials | dict[str, Any], call_id: str
    ) -> RecordingResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "account_sid", "auth_token")
        if error:
            return RecordingResult(success=False, error=error)

        try:
            listing = await self._request(
                "GET",
                self._get_api_url(creds, f"/Calls/{call_id}/Recordings.json"),
                operation="List recordings",
                auth=self._get_auth(creds),
            )
            listed = listing.get("recordings")
            recordings = [r for r in listed if isinstance(r, dict)] if isinstance(listed, list) else []
            active = next(
                (r for r in recordings if r.get("status") == "in-progress"),
                recordings[0] if recordings else None,
            )
            if active is None or not active.get("sid"):
                return RecordingResult(success=False, error="No recording found for call")

            data = await self._request(
                "POST",
                self._get_api_url(creds, f"/Calls/{call_id}/Recordings/{active['sid']}.json"),
                operation="Stop recording",
                data={"Status": "stopped"},
                auth=self._get_auth(creds),
            )
        except TelephonyProviderError as e:
            return RecordingResult(success=False, error=str(e))

        uri = data.get("uri") or active.get("uri")
        recording_url = None
        if isinstance(uri, str):
            recording_url = TWILIO_MEDIA_HOST + uri.replace(".json", ".mp3")
        return RecordingResult(
            success=True,
            recording_id=active["sid"],
            recording_url=recording_url,
        )

    async def play_text(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        text: str,
        voice: str | None = None,
    ) -> CallControlResult:
        document = twiml.say_response(text, voice=voice or "alice")
        return await self._control(coerce_credentials(credentials), call_id, {"Twiml": document}, "Play text")

    async def play_audio(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        audio_url: str,
    ) -> CallControlResult:
        document = twiml.play_response(audio_url)
        return await self._control(coerce_credentials(credentials), call_id, {"Twiml": document}, "Play audio")

    async def transfer(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: TransferParams,
    ) -> TransferCallResult:
        if params.type == TransferType.WARM:
            # Needs a conference bridge we do not manage.
            return TransferCallResult(
                success=False, error="Warm transfer is not implemented for Twilio"
            )

        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "account_sid", "auth_token")
        if error:
            return TransferCallResult(success=False, error=error)

        document = twiml.dial_response(self.normalize_phone_number(params.to))
        try:
            await self._update_call(creds, params.call_id, {"Twiml": document}, "Transfer")
        except TelephonyProviderError as e:
            return TransferCallResult(success=False, error=str(e))
        return TransferCallResult(success=True)

    async def transfer_to_sip(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        call_id: str,
        sip_uri: str,
    ) -> TransferCallResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "account_sid", "auth_token")
        if error:
            return TransferCallResult(success=False, error=error)

        document = twiml.sip_dial_response(sip_uri)
        try:
            await self._update_call(creds, call_id, {"Twiml": document}, "SIP transfer")
        except TelephonyProviderError as e:
            return TransferCallResult(success=False, error=str(e))
        return TransferCallResult(success=True)

    async def send_sms(
        self,
        credentials: ProviderCredentials | dict[str, Any],
        params: SendSmsParams,
    ) -> SendMessageResult:
        creds = coerce_credentials(credentials)
        error = missing_fields(creds, "account_sid", "auth_token")
        if error:
            return SendMessageResult(success=False, error=error)

        form: dict[str, Any] = {
            "From": self.normalize_phone_number(params.from_number),
            "To": self.normalize_phone_number(params.to),
            "Body": params.body,
        }
        if params.media_urls:
            form["MediaUrl"] = list(params.media_urls)

        try:
            data = await self._request(
                "POST",
                self._get_api_url(creds, "/Messages.json"),
                operation="Send SMS",
                data=form,
                auth=self._get_auth(creds),
            )
        except TelephonyProviderError as e:
            return SendMessageResult(success=False, error=str(e))
        return SendMessageResult(success=True, message_id=data.get("sid"))

    def parse_webhook(self, payload: dict[str, Any]) -> NormalizedCallEvent | None:
        call_sid = payload.get("CallSid") if isinstance(payload, dict) else None
        if not isinstance(call_sid, str) or not call_sid:
            return None

        call_status = payload.get("CallStatus")
        call_status = call_status.lower() if isinstance(call_status, str) else ""
        recording_url = payload.get("RecordingUrl")
        recording_url = recording_url if isinstance(recording_url, str) else None

        if payload.get("RecordingStatus") == "completed" and recording_url:
            event_type: CallEventType | None = CallEventType.RECORDING_READY
        else:
            event_type = TWILIO_STATUS_MAP.get(call_status)

        if event_type is None:
            logger.warning(
                "Unknown Twilio call status",
                extra={"status": call_status, "call_sid": call_sid},
            )
            return None

        end_reason = None
        if event_type in (CallEventType.ENDED, CallEventType.FAILED):
            end_reason = payload.get("ErrorMessage") or (
                call_status if call_status in TWILIO_END_REASONS else None
            )

        direction = str(payload.get("Direction", "inbound"))
        try:
            return NormalizedCallEvent(
                type=event_type,
                call_id=call_sid,
                provider_call_id=call_sid,
                from_number=payload.get("From") or "",
                to=payload.get("To") or "",
                direction=(
                    CallDirection.OUTBOUND if direction.startswith("outbound") else CallDirection.INBOUND
                ),
                timestamp=parse_timestamp(payload.get("Timestamp")),
                duration=parse_duration(payload.get("CallDuration") or payload.get("RecordingDuration")),
                end_reason=end_reason,
                recording_url=recording_url,
                raw_payload=dict(payload),
            )
        except ValidationError as e:
            logger.warning(
                "Malformed Twilio call event",
                extra={"call_sid": call_sid, "error": str(e)},
            )
            return None

    def parse_message_webhook(self, payload: dict[str, Any]) -> InboundMessageEvent | None:
        message_sid = payload.get("MessageSid") if isinstance(payload, dict) else None
        if not isinstance(message_sid, str) or not message_sid:
            return None

        num_media = min(parse_duration(payload.get("NumMedia")) or 0, MAX_MMS_MEDIA)
        media_urls = [
            payload[f"MediaUrl{i}"] for i in range(num_media) if payload.get(f"MediaUrl{i}")
        ]
        try:
            return InboundMessageEvent(
                message_id=message_sid,
                from_number=payload.get("From") or "",
                to=payload.get("To") or "",
                body=payload.get("Body") or "",
                media_urls=media_urls,
                raw_payload=dict(payload),
            )
        except ValidationError as e:
            logger.warning(
                "Malformed Twilio message event",
                extra={"message_sid": message_sid, "error": str(e)},
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
        """Validate X-Twilio-Signature. ``secret`` is the account auth token, ``url`` the full request URL."""
        if not url:
            logger.warning("URL required for Twilio signature validation")
            return False
        return verify_twilio_signature(secret, signature, url, payload)

    # TwiML documents for status webhooks

    def ringing_response(self, webhook_url: str, timeout: int = 30) -> str:
        return twiml.ringing_response(webhook_url, timeout)

    def forward_response(self, to: str, caller_id: str | None = None, timeout: int = 30) -> str:
        return twiml.forward_response(self.normalize_phone_number(to), caller_id, timeout)

    def voicemail_response(
        self,
        webhook_url: str,
        greeting: str | None = None,
        max_length: int = 120,
        transcribe: bool = True,
    ) -> str:
        return twiml.voicemail_response(webhook_url, greeting, max_length, transcribe, voice="alice")


def _map_number(record: dict[str, Any]) -> ProviderPhoneNumber:
    capabilities = record.get("capabilities")
    capabilities = capabilities if isinstance(capabilities, dict) else {}
    phone_number = str(record.get("phone_number") or "")
    return ProviderPhoneNumber(
        phone_number=phone_number,
        provider_number_id=str(record.get("sid") or ""),
        friendly_name=record.get("friendly_name"),
        type=NumberType.TOLLFREE if phone_number.startswith(TOLL_FREE_PREFIXES) else NumberType.LOCAL,
        country=record.get("iso_country") or "unknown",
        capabilities=NumberCapabilities(
            voice=bool(capabilities.get("voice", True)),
            sms=bool(capabilities.get("sms") or capabilities.get("SMS")),
            mms=bool(capabilities.get("mms") or capabilities.get("MMS")),
            fax=bool(capabilities.get("fax")),
        ),
    )
