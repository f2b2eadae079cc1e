"""
Normalized value types shared by every telephony adapter.

Vendor payloads are mapped into these shapes so callers never see
provider-specific vocabularies.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CallEventType(str, Enum):
    """Canonical call lifecycle event types."""

    INITIATED = "initiated"
    RINGING = "ringing"
    ANSWERED = "answered"
    ENDED = "ended"
    FAILED = "failed"
    RECORDING_READY = "recording_ready"


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class NumberType(str, Enum):
    LOCAL = "local"
    TOLLFREE = "tollfree"
    MOBILE = "mobile"
    UNKNOWN = "unknown"


class TransferType(str, Enum):
    BLIND = "blind"
    WARM = "warm"


class ProviderCredentials(BaseModel):
    """Loosely-typed bag of vendor credentials.

    Accepts the camelCase keys stored by the settings UI (``apiKey``,
    ``accountSid``...) as well as snake_case names. Unknown keys are kept.
    Secret fields never appear in ``repr``.
    """

    model_config = ConfigDict(
        alias_generator=AliasGenerator(validation_alias=to_camel),
        populate_by_name=True,
        extra="allow",
        frozen=True,
    )

    api_key: str | None = Field(default=None, repr=False)
    api_secret: str | None = Field(default=None, repr=False)
    account_sid: str | None = None
    auth_token: str | None = Field(default=None, repr=False)
    connection_id: str | None = None
    public_key: str | None = None
    application_id: str | None = None
    private_key: str | None = Field(default=None, repr=False)
    assistant_id: str | None = None
    agent_id: str | None = None
    voice_id: str | None = None
    default_voice: str | None = None
    webhook_secret: str | None = Field(default=None, repr=False)


class NormalizedCallEvent(BaseModel):
    """Vendor-independent call lifecycle event parsed from a webhook."""

    model_config = ConfigDict(frozen=True)

    type: CallEventType = Field(..., description="Canonical event type")
    call_id: str = Field(..., description="Identifier used for call control")
    provider_call_id: str = Field(..., description="Vendor call/leg identifier")
    from_number: str = Field(default="", description="Calling party")
    to: str = Field(default="", description="Called party")
    direction: CallDirection = Field(default=CallDirection.INBOUND)
    timestamp: datetime = Field(default_factory=_utcnow)
    duration: int | None = Field(default=None, description="Call duration in seconds")
    end_reason: str | None = Field(default=None, description="Vendor end/hangup cause")
    recording_url: str | None = Field(default=None)
    raw_payload: dict[str, Any] = Field(default_factory=dict)


class InboundMessageEvent(BaseModel):
    """Inbound SMS/MMS parsed from a webhook."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    from_number: str = ""
    to: str = ""
    body: str = ""
    media_urls: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utcnow)
    raw_payload: dict[str, Any] = Field(default_factory=dict)


class NumberCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    voice: bool = False
    sms: bool = False
    mms: bool = False
    fax: bool = False


class ProviderPhoneNumber(BaseModel):
    """Phone number owned by the vendor account."""

    model_config = ConfigDict(frozen=True)

    phone_number: str
    provider_number_id: str
    friendly_name: str | None = None
    type: NumberType = NumberType.UNKNOWN
    country: str = "unknown"
    capabilities: NumberCapabilities = Field(default_factory=NumberCapabilities)


class MakeCallParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_number: str
    to: str
    caller_id: str | None = None
    record: bool = False
    webhook_url: str | None = None


class MakeCallResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    call_id: str | None = None
    provider_call_id: str | None = None
    error: str | None = None


class TransferParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    call_id: str
    to: str
    type: TransferType = TransferType.BLIND


class CallControlResult(BaseModel):
    """Outcome of a call-control mutation such as hangup."""

    model_config = ConfigDict(frozen=True)

    success: bool
    error: str | None = None


class TransferCallResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    new_call_id: str | None = None
    error: str | None = None


class SendSmsParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    from_number: str
    to: str
    body: str
    media_urls: list[str] = Field(default_factory=list)


class SendMessageResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message_id: str | None = None
    error: str | None = None


class AccountInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    balance: float | None = None
    currency: str | None = None
    account_name: str | None = None
    account_id: str | None = None


class CredentialsValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    error: str | None = None
    account_info: AccountInfo | None = None


class RecordingResult(BaseModel):
    """Outcome of starting or stopping a live-call recording."""

    model_config = ConfigDict(frozen=True)

    success: bool
    recording_id: str | None = None
    recording_url: str | None = None
    error: str | None = None


class HealthCheckResult(BaseModel):
    """``reachable`` is True when the vendor answered: 2xx, or 401/403 for bad credentials."""

    model_config = ConfigDict(frozen=True)

    healthy: bool
    reachable: bool = False
    latency_ms: float | None = None
    error: str | None = None
