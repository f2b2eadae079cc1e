"""Tests for the Twilio telephony adapter."""

import httpx
import pytest

from callbridge.telephony.adapters.twilio import (
    TWILIO_HOLD_MUSIC_URL,
    TWILIO_STATUS_MAP,
    TwilioAdapter,
)
from callbridge.telephony.interface import (
    TelephonyProviderError,
    VendorRequestError,
    VendorTransportError,
)
from callbridge.telephony.models import (
    CallDirection,
    CallEventType,
    MakeCallParams,
    NumberType,
    SendSmsParams,
    TransferParams,
    TransferType,
)
from callbridge.telephony.signatures import compute_twilio_signature
from http_fakes import make_response, mock_client, sent

BASE = "https://api.twilio.com/2010-04-01/Accounts/AC_TEST_ACCOUNT_SID"


@pytest.fixture
def call_params() -> MakeCallParams:
    return MakeCallParams(
        from_number="+14155550100",
        to="+14155550199",
        webhook_url="https://x/cb",
    )


class TestTwilioMakeCall:
    async def test_make_call_success(self, twilio_credentials, call_params) -> None:
        client = mock_client(make_response(201, json={"sid": "CA123"}))
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.make_call(twilio_credentials, call_params)

        assert result.success is True
        assert result.call_id == "CA123"
        assert result.provider_call_id == "CA123"
        assert result.error is None

        method, url, kwargs = sent(client)
        assert method == "POST"
        assert url == f"{BASE}/Calls.json"
        assert kwargs["auth"] == ("AC_TEST_ACCOUNT_SID", "test_auth_token_12345")
        assert kwargs["data"]["To"] == "+14155550199"
        assert kwargs["data"]["From"] == "+14155550100"
        assert kwargs["data"]["Url"] == "https://x/cb"
        assert kwargs["data"]["StatusCallback"] == "https://x/cb"
        assert "Record" not in kwargs["data"]

    async def test_caller_id_and_record(self, twilio_credentials) -> None:
        client = mock_client(make_response(201, json={"sid": "CA9"}))
        adapter = TwilioAdapter(http_client=client)
        params = MakeCallParams(
            from_number="+14155550100",
            to="14155550199",
            caller_id="+14155550111",
            record=True,
            webhook_url="https://x/cb",
        )

        await adapter.make_call(twilio_credentials, params)

        form = sent(client)[2]["data"]
        assert form["From"] == "+14155550111"
        assert form["To"] == "+14155550199"
        assert form["Record"] == "true"

    async def test_missing_auth_token_no_network(self, call_params) -> None:
        client = mock_client()
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.make_call({"accountSid": "AC1"}, call_params)

        assert result.success is False
        assert result.error == "auth_token is required"
        client.request.assert_not_called()

    async def test_missing_webhook_url(self, twilio_credentials) -> None:
        client = mock_client()
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.make_call(
            twilio_credentials, MakeCallParams(from_number="+1", to="+2")
        )

        assert result.success is False
        assert result.error == "webhook_url is required"
        client.request.assert_not_called()

    async def test_vendor_error_message(self, twilio_credentials, call_params) -> None:
        client = mock_client(
            make_response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})
        )
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.make_call(twilio_credentials, call_params)

        assert result.success is False
        assert result.error == "Invalid 'To' Phone Number"

    async def test_vendor_error_without_message(self, twilio_credentials, call_params) -> None:
        adapter = TwilioAdapter(http_client=mock_client(make_response(503, content=b"down")))

        result = await adapter.make_call(twilio_credentials, call_params)

        assert result.error == "Make call failed: 503"

    async def test_network_error(self, twilio_credentials, call_params) -> None:
        client = mock_client(httpx.ConnectError("Connection refused"))
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.make_call(twilio_credentials, call_params)

        assert result.success is False
        assert result.error.startswith("Network error:")


class TestTwilioValidateCredentials:
    async def test_valid_with_balance(self, twilio_credentials) -> None:
        client = mock_client(
            make_response(200, json={"sid": "AC_TEST_ACCOUNT_SID", "friendly_name": "Acme", "status": "active"}),
            make_response(200, json={"balance": "12.50", "currency": "USD"}),
        )
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.validate_credentials(twilio_credentials)

        assert result.valid is True
        assert result.account_info.account_name == "Acme"
        assert result.account_info.account_id == "AC_TEST_ACCOUNT_SID"
        assert result.account_info.balance == 12.5
        assert result.account_info.currency == "USD"
        assert sent(client, 0)[1] == f"{BASE}.json"
        assert sent(client, 1)[1] == f"{BASE}/Balance.json"

    async def test_balance_unavailable_still_valid(self, twilio_credentials) -> None:
        client = mock_client(
            make_response(200, json={"sid": "AC_TEST_ACCOUNT_SID", "status": "active"}),
            make_response(404, json={"message": "not found"}),
        )
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.validate_credentials(twilio_credentials)

        assert result.valid is True
        assert result.account_info.balance is None

    @pytest.mark.parametrize("status", ["suspended", "closed"])
    async def test_inactive_account(self, twilio_credentials, status: str) -> None:
        client = mock_client(make_response(200, json={"sid": "AC1", "status": status}))
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.validate_credentials(twilio_credentials)

        assert result.valid is False
        assert result.error == f"Account is {status}"

    async def test_rejected(self, twilio_credentials) -> None:
        client = mock_client(make_response(401, json={"message": "Authenticate"}))
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.validate_credentials(twilio_credentials)

        assert result.valid is False
        assert result.error == "Authenticate"

    async def test_missing_sid(self) -> None:
        result = await TwilioAdapter(http_client=mock_client()).validate_credentials({})

        assert result.valid is False
        assert result.error == "account_sid is required"


class TestTwilioNumbers:
    async def test_list_numbers(self, twilio_credentials) -> None:
        client = mock_client(
            make_response(
                200,
                json={
                    "incoming_phone_numbers": [
                        {
                            "sid": "PN1",
                            "phone_number": "+14155550100",
                            "friendly_name": "Main line",
                            "iso_country": "US",
                            "capabilities": {"voice": True, "sms": True, "mms": False, "fax": False},
                        },
                        {"sid": "PN2", "phone_number": "+14155550101"},
                    ]
                },
            )
        )
        adapter = TwilioAdapter(http_client=client)

        numbers = await adapter.list_numbers(twilio_credentials)

        assert [n.provider_number_id for n in numbers] == ["PN1", "PN2"]
        assert numbers[0].country == "US"
        assert numbers[0].capabilities.voice is True
        assert numbers[0].capabilities.sms is True
        assert numbers[0].capabilities.mms is False
        assert numbers[1].country == "unknown"
        # Numbers without a capabilities block are voice numbers
        assert numbers[1].capabilities.voice is True
        assert numbers[1].capabilities.sms is False

    @pytest.mark.parametrize(
        ("phone_number", "expected"),
        [
            ("+18005550100", NumberType.TOLLFREE),
            ("+18885550100", NumberType.TOLLFREE),
            ("+18775550100", NumberType.TOLLFREE),
            ("+14155550100", NumberType.LOCAL),
            ("+442071838750", NumberType.LOCAL),
        ],
    )
    async def test_number_type_from_prefix(
        self, twilio_credentials, phone_number: str, expected: NumberType
    ) -> None:
        client = mock_client(
            make_response(200, json={"incoming_phone_numbers": [{"sid": "PN1", "phone_number": phone_number}]})
        )

        numbers = await TwilioAdapter(http_client=client).list_numbers(twilio_credentials)

        assert numbers[0].type == expected

    async def test_list_numbers_unauthorized_raises(self, twilio_credentials) -> None:
        client = mock_client(make_response(401, json={"message": "Authenticate"}))

        with pytest.raises(VendorRequestError, match="Authenticate") as exc_info:
            await TwilioAdapter(http_client=client).list_numbers(twilio_credentials)
        assert exc_info.value.error_code == "401"

    async def test_list_numbers_server_error_raises(self, twilio_credentials) -> None:
        adapter = TwilioAdapter(http_client=mock_client(make_response(500, json={})))

        with pytest.raises(TelephonyProviderError, match="List numbers failed: 500"):
            await adapter.list_numbers(twilio_credentials)

    async def test_list_numbers_transport_error_raises(self, twilio_credentials) -> None:
        adapter = TwilioAdapter(http_client=mock_client(httpx.ConnectError("Connection refused")))

        with pytest.raises(VendorTransportError):
            await adapter.list_numbers(twilio_credentials)

    async def test_list_numbers_requires_credentials(self) -> None:
        client = mock_client()

        with pytest.raises(TelephonyProviderError, match="auth_token is required") as exc_info:
            await TwilioAdapter(http_client=client).list_numbers({"accountSid": "AC1"})
        assert exc_info.value.error_code == "MISSING_CREDENTIALS"
        client.request.assert_not_called()


class TestTwilioCallControl:
    async def test_hangup(self, twilio_credentials) -> None:
        client = mock_client(make_response(200, json={"sid": "CA1", "status": "completed"}))
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.hangup(twilio_credentials, "CA1")

        assert result.success is True
        method, url, kwargs = sent(client)
        assert (method, url) == ("POST", f"{BASE}/Calls/CA1.json")
        assert kwargs["data"] == {"Status": "completed"}

    async def test_blind_transfer_replaces_twiml(self, twilio_credentials) -> None:
        client = mock_client(make_response(200, json={"sid": "CA1"}))
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.transfer(
            twilio_credentials, TransferParams(call_id="CA1", to="+14155550111")
        )

        assert result.success is True
        assert sent(client)[2]["data"] == {"Twiml": "<Response><Dial>+14155550111</Dial></Response>"}

    async def test_warm_transfer_not_implemented(self, twilio_credentials) -> None:
        client = mock_client()
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.transfer(
            twilio_credentials,
            TransferParams(call_id="CA1", to="+14155550111", type=TransferType.WARM),
        )

        assert result.success is False
        assert result.error == "Warm transfer is not implemented for Twilio"
        client.request.assert_not_called()

    async def test_transfer_to_sip(self, twilio_credentials) -> None:
        client = mock_client(make_response(200, json={"sid": "CA1"}))
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.transfer_to_sip(twilio_credentials, "CA1", "sip:abc@sip.vapi.ai")

        assert result.success is True
        assert "<Sip>sip:abc@sip.vapi.ai</Sip>" in sent(client)[2]["data"]["Twiml"]

    async def test_send_sms(self, twilio_credentials) -> None:
        client = mock_client(make_response(201, json={"sid": "SM1"}))
        adapter = TwilioAdapter(http_client=client)

        result = await adapter.send_sms(
            twilio_credentials,
            SendSmsParams(
                from_number="+14155550100",
                to="+14155550199",
                body="hi",
                media_urls=["https://x/a.png"],
            ),
        )

        assert result.success is True
        assert result.message_id == "SM1"
        method, url, kwargs = sent(client)
        assert url == f"{BASE}/Messages.json"
        assert kwargs["data"]["Body"] == "hi"
        assert kwargs["data"]["MediaUrl"] == ["https://x/a.png"]


class TestTwilioParseWebhook:
    @pytest.fixture
    def adapter(self) -> TwilioAdapter:
        return TwilioAdapter(http_client=mock_client())

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("queued", CallEventType.RINGING),
            ("initiated", CallEventType.INITIATED),
            ("ringing", CallEventType.RINGING),
            ("in-progress", CallEventType.ANSWERED),
            ("completed", CallEventType.ENDED),
            ("busy", CallEventType.ENDED),
            ("failed", CallEventType.FAILED),
            ("no-answer", CallEventType.ENDED),
            ("canceled", CallEventType.ENDED),
        ],
    )
    def test_documented_statuses(self, adapter, status: str, expected: CallEventType) -> None:
        event = adapter.parse_webhook({"CallSid": "CA1", "CallStatus": status})

        assert event is not None
        assert event.type == expected

    def test_status_map_covers_documented_enum(self) -> None:
        documented = {
            "queued", "initiated", "ringing", "in-progress", "completed",
            "busy", "failed", "no-answer", "canceled",
        }
        assert set(TWILIO_STATUS_MAP) == documented

    @pytest.mark.parametrize("status", ["", "answered", "paused"])
    def test_unknown_status_returns_none(self, adapter, status: str) -> None:
        assert adapter.parse_webhook({"CallSid": "CA1", "CallStatus": status}) is None

    def test_missing_call_sid(self, adapter) -> None:
        assert adapter.parse_webhook({"CallStatus": "completed"}) is None

    def test_completed_call_fields(self, adapter) -> None:
        event = adapter.parse_webhook(
            {
                "CallSid": "CA1",
                "CallStatus": "completed",
                "From": "+14155550100",
                "To": "+14155550199",
                "Direction": "outbound-api",
                "CallDuration": "37",
                "Timestamp": "Mon, 01 Jan 2024 10:30:00 +0000",
            }
        )

        assert event.call_id == "CA1"
        assert event.provider_call_id == "CA1"
        assert event.from_number == "+14155550100"
        assert event.direction == CallDirection.OUTBOUND
        assert event.duration == 37
        assert event.end_reason == "completed"
        assert event.timestamp.year == 2024
        assert event.raw_payload["CallSid"] == "CA1"

    def test_inbound_direction(self, adapter) -> None:
        event = adapter.parse_webhook({"CallSid": "CA1", "CallStatus": "ringing", "Direction": "inbound"})

        assert event.direction == CallDirection.INBOUND
        assert event.end_reason is None

    def test_recording_ready(self, adapter) -> None:
        event = adapter.parse_webhook(
            {
                "CallSid": "CA1",
                "RecordingStatus": "completed",
                "RecordingUrl": "https://api.twilio.com/rec/RE1",
                "RecordingDuration": "12",
            }
        )

        assert event.type == CallEventType.RECORDING_READY
        assert event.recording_url == "https://api.twilio.com/rec/RE1"
        assert event.duration == 12

    def test_inbound_sms(self, adapter) -> None:
        message = adapter.parse_message_webhook(
            {
                "MessageSid": "SM1",
                "From": "+14155550100",
                "To": "+14155550199",
                "Body": "Hello",
                "NumMedia": "2",
                "MediaUrl0": "https://x/0.jpg",
                "MediaUrl1": "https://x/1.jpg",
            }
        )

        assert message.message_id == "SM1"
        assert message.body == "Hello"
        assert message.media_urls == ["https://x/0.jpg", "https://x/1.jpg"]

    def test_message_webhook_ignores_calls(self, adapter) -> None:
        assert adapter.parse_message_webhook({"CallSid": "CA1"}) is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"CallSid": 12345, "CallStatus": "ringing"},
            {"CallSid": ["CA1"], "CallStatus": "ringing"},
            {"CallSid": "CA1", "CallStatus": ["completed"]},
            {"CallSid": "CA1", "CallStatus": "completed", "From": {"number": "+1"}},
            {"CallSid": "CA1", "CallStatus": "failed", "ErrorMessage": 31005},
        ],
    )
    def test_malformed_call_event_returns_none(self, adapter, payload) -> None:
        assert adapter.parse_webhook(payload) is None

    def test_non_string_recording_url_ignored(self, adapter) -> None:
        event = adapter.parse_webhook(
            {"CallSid": "CA1", "CallStatus": "completed", "RecordingStatus": "completed", "RecordingUrl": 7}
        )

        assert event.type == CallEventType.ENDED
        assert event.recording_url is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"MessageSid": 99, "Body": "hi"},
            {"MessageSid": "SM1", "Body": ["hi"]},
        ],
    )
    def test_malformed_message_returns_none(self, adapter, payload) -> None:
        assert adapter.parse_message_webhook(payload) is None

    def test_media_count_is_capped(self, adapter) -> None:
        payload = {"MessageSid": "SM1", "NumMedia": "1000000"}
        payload.update({f"MediaUrl{i}": f"https://x/{i}.jpg" for i in range(12)})

        message = adapter.parse_message_webhook(payload)

        assert len(message.media_urls) == 10


class TestTwilioValidateWebhook:
    URL = "https://crm.example.com/webhooks/twilio/voice"

    def test_valid_signature(self) -> None:
        params = {"CallSid": "CA1", "CallStatus": "ringing", "From": "+14155550100"}
        signature = compute_twilio_signature("token", self.URL, params)

        assert TwilioAdapter().validate_webhook(signature, params, "token", url=self.URL) is True

    def test_valid_signature_raw_form_body(self) -> None:
        body = "From=%2B14155550100&CallSid=CA1"
        signature = compute_twilio_signature("token", self.URL, {"CallSid": "CA1", "From": "+14155550100"})

        assert TwilioAdapter().validate_webhook(signature, body, "token", url=self.URL) is True

    def test_tampered_params(self) -> None:
        params = {"CallSid": "CA1", "CallStatus": "ringing"}
        signature = compute_twilio_signature("token", self.URL, params)

        assert (
            TwilioAdapter().validate_webhook(
                signature, {**params, "CallStatus": "completed"}, "token", url=self.URL
            )
            is False
        )

    def test_wrong_token(self) -> None:
        params = {"CallSid": "CA1"}
        signature = compute_twilio_signature("token", self.URL, params)

        assert TwilioAdapter().validate_webhook(signature, params, "other", url=self.URL) is False

    def test_url_required(self) -> None:
        params = {"CallSid": "CA1"}
        signature = compute_twilio_signature("token", self.URL, params)

        assert TwilioAdapter().validate_webhook(signature, params, "token") is False


class TestTwilioTwiml:
    def test_forward_normalizes_number(self) -> None:
        document = TwilioAdapter().forward_response("8 800 555 35 35", caller_id="+14155550100")

        assert "<Number>+88005553535</Number>" in document
        assert 'callerId="+14155550100"' in document


class TestTwilioHealth:
    async def test_healthy(self, twilio_credentials) -> None:
        client = mock_client(make_response(200, json={"sid": "AC_TEST_ACCOUNT_SID"}))

        result = await TwilioAdapter(http_client=client).check_health(twilio_credentials)

        assert result.healthy is True
        assert result.reachable is True
        method, url, kwargs = sent(client)
        assert (method, url) == ("GET", f"{BASE}.json")
        assert kwargs["auth"] == ("AC_TEST_ACCOUNT_SID", "test_auth_token_12345")

    @pytest.mark.parametrize("status", [401, 403])
    async def test_rejected_credentials_still_reachable(self, twilio_credentials, status: int) -> None:
        client = mock_client(make_response(status, json={"message": "Authenticate"}))

        result = await TwilioAdapter(http_client=client).check_health(twilio_credentials)

        assert result.healthy is False
        assert result.reachable is True

    @pytest.mark.parametrize("status", [404, 500, 503])
    async def test_other_failures_unreachable(self, twilio_credentials, status: int) -> None:
        client = mock_client(make_response(status))

        result = await TwilioAdapter(http_client=client).check_health(twilio_credentials)

        assert result.healthy is False
        assert result.reachable is False
        assert result.error.startswith(f"HTTP {status}")


class TestTwilioLiveCallControl:
    async def test_answer_not_supported(self, twilio_credentials) -> None:
        client = mock_client()

        result = await TwilioAdapter(http_client=client).answer_call(twilio_credentials, "CA1")

        assert result.success is False
        assert result.error == "Answer is not supported for Twilio"
        client.request.assert_not_called()

    async def test_hold_loops_music(self, twilio_credentials) -> None:
        client = mock_client(make_response(200, json={"sid": "CA1"}))

        result = await TwilioAdapter(http_client=client).hold_call(twilio_credentials, "CA1")

        assert result.success is True
        method, url, kwargs = sent(client)
        assert (method, url) == ("POST", f"{BASE}/Calls/CA1.json")
        assert kwargs["data"] == {
            "Twiml": f'<Response><Play loop="0">{TWILIO_HOLD_MUSIC_URL}</Play></Response>'
        }

    async def test_unhold_not_supported(self, twilio_credentials) -> None:
        client = mock_client()

        result = await TwilioAdapter(http_client=client).unhold_call(twilio_credentials, "CA1")

        assert result.success is False
        assert result.error == "Unhold is not supported for Twilio"
        client.request.assert_not_called()

    async def test_start_recording(self, twilio_credentials) -> None:
        client = mock_client(make_response(201, json={"sid": "RE1", "status": "in-progress"}))

        result = await TwilioAdapter(http_client=client).start_recording(twilio_credentials, "CA1")

        assert result.success is True
        assert result.recording_id == "RE1"
        assert sent(client)[:2] == ("POST", f"{BASE}/Calls/CA1/Recordings.json")

    async def test_stop_recording_picks_active(self, twilio_credentials) -> None:
        client = mock_client(
            make_response(
                200,
                json={
                    "recordings": [
                        {"sid": "RE0", "status": "completed"},
                        {"sid": "RE1", "status": "in-progress"},
                    ]
                },
            ),
            make_response(
                200,
                json={
                    "sid": "RE1",
                    "status": "stopped",
                    "uri": "/2010-04-01/Accounts/AC_TEST_ACCOUNT_SID/Recordings/RE1.json",
                },
            ),
        )

        result = await TwilioAdapter(http_client=client).stop_recording(twilio_credentials, "CA1")

        assert result.success is True
        assert result.recording_id == "RE1"
        assert result.recording_url == (
            "https://api.twilio.com/2010-04-01/Accounts/AC_TEST_ACCOUNT_SID/Recordings/RE1.mp3"
        )
        assert sent(client, 0)[:2] == ("GET", f"{BASE}/Calls/CA1/Recordings.json")
        method, url, kwargs = sent(client, 1)
        assert (method, url) == ("POST", f"{BASE}/Calls/CA1/Recordings/RE1.json")
        assert kwargs["data"] == {"Status": "stopped"}

    async def test_stop_recording_without_recordings(self, twilio_credentials) -> None:
        client = mock_client(make_response(200, json={"recordings": []}))

        result = await TwilioAdapter(http_client=client).stop_recording(twilio_credentials, "CA1")

        assert result.success is False
        assert result.error == "No recording found for call"
        assert client.request.call_count == 1

    async def test_play_text_escapes(self, twilio_credentials) -> None:
        client = mock_client(make_response(200, json={"sid": "CA1"}))

        result = await TwilioAdapter(http_client=client).play_text(
            twilio_credentials, "CA1", "Tom & Jerry", voice="Polly.Tatyana"
        )

        assert result.success is True
        assert sent(client)[2]["data"] == {
            "Twiml": '<Response><Say voice="Polly.Tatyana" language="ru-RU">Tom &amp; Jerry</Say></Response>'
        }

    async def test_play_audio(self, twilio_credentials) -> None:
        client = mock_client(make_response(200, json={"sid": "CA1"}))

        result = await TwilioAdapter(http_client=client).play_audio(
            twilio_credentials, "CA1", "https://x/beep.mp3"
        )

        assert result.success is True
        assert sent(client)[2]["data"] == {"Twiml": "<Response><Play>https://x/beep.mp3</Play></Response>"}

    async def test_live_update_rejected(self, twilio_credentials) -> None:
        client = mock_client(make_response(400, json={"message": "Call is not in-progress"}))

        result = await TwilioAdapter(http_client=client).play_audio(
            twilio_credentials, "CA1", "https://x/beep.mp3"
        )

        assert result.success is False
        assert result.error == "Call is not in-progress"
