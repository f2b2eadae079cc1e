"""
Value types for AI voice agent adapters.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from callbridge.telephony.models import HealthCheckResult

__all__ = [
    "AgentCallSetup",
    "AgentContext",
    "AgentEndReason",
    "AgentReason",
    "AIAgentCallEndedEvent",
    "AssistantResult",
    "HealthCheckResult",
    "TranscriptTurn",
]


class AgentReason(str, Enum):
    """Why the call was diverted to the AI agent."""

    AFTER_HOURS = "after_hours"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    OVERFLOW = "overflow"


class AgentEndReason(str, Enum):
    CUSTOMER_ENDED = "customer_ended"
    ASSISTANT_ENDED = "assistant_ended"
    TRANSFERRED = "transferred"
    ERROR = "error"


class AgentContext(BaseModel):
    """Per-call prompt input. Built by the caller, consumed once, never stored."""

    model_config = ConfigDict(frozen=True)

    reason: AgentReason | None = None
    manager_name: str | None = None
    manager_phone: str | None = None
    company_name: str | None = None
    contact_name: str | None = None
    contact_company: str | None = None
    call_history: str | None = None


class TranscriptTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: str = Field(..., pattern="^(user|assistant)$")
    content: str = ""


class AIAgentCallEndedEvent(BaseModel):
    """Normalized end-of-call report from an AI agent platform."""

    model_config = ConfigDict(frozen=True)

    call_id: str
    assistant_id: str | None = None
    duration: float = 0
    end_reason: AgentEndReason = AgentEndReason.ERROR
    summary: str | None = None
    transcript: list[TranscriptTurn] = Field(default_factory=list)
    recording_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AssistantResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    assistant_id: str
    server_url_secret: str | None = Field(default=None, repr=False)


class AgentCallSetup(BaseModel):
    """Assistant provisioned for one call and the SIP URI to transfer it to."""

    model_config = ConfigDict(frozen=True)

    assistant_id: str
    sip_uri: str
    server_url_secret: str | None = Field(default=None, repr=False)
