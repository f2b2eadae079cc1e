"""
ElevenLabs Conversational AI adapter.

REST: https://api.elevenlabs.io/v1, ``xi-api-key`` header.
Calls reach an agent at ``sip:{agent_id}@sip.elevenlabs.io``. Post-call
webhooks carry ``ElevenLabs-Signature: t=<unix ts>,v0=<hex hmac>``.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any

import httpx

from callbridge.agents.interface import (
    AIAgentProviderError,
    BaseAIAgentAdapter,
    WebhookRequest,
)
from callbridge.agents.models import (
    AgentEndReason,
    AIAgentCallEndedEvent,
    AssistantResult,
    TranscriptTurn,
)
from callbridge.agents.prompts import PromptTone, first_message
from callbridge.config import get_settings
from callbridge.shared.logging import get_logger

logger = get_logger(__name__)

ELEVENLABS_END_REASONS: dict[str, AgentEndReason] = {
    "user_hangup": AgentEndReason.CUSTOMER_ENDED,
    "customer_ended": AgentEndReason.CUSTOMER_ENDED,
    "agent_hangup": AgentEndReason.ASSISTANT_ENDED,
    "assistant_ended": AgentEndReason.ASSISTANT_ENDED,
    "transferred": AgentEndReason.TRANSFERRED,
    "transfer": AgentEndReason.TRANSFERRED,
    "error": AgentEndReason.ERROR,
    "timeout": AgentEndReason.ASSISTANT_ENDED,
    "max_duration": AgentEndReason.ASSISTANT_ENDED,
}

CONVERSATION_ENDED_TYPES = {"conversation_ended", "conversation.ended"}
POST_CALL_TRANSCRIPTION = "post_call_transcription"

DEFAULT_TTS_VOICE = "EXAVITQu4vr4xnSDxMaL"
TTS_MODEL = "eleven_multilingual_v2"


def verify_elevenlabs_signature(
    secret: str,
    header: str | None,
    body: bytes,
    *,
    tolerance_seconds: int = 1800,
    now: float | None = None,
) -> bool:
    """Check an ``ElevenLabs-Signature`` header against the raw body."""
    if not secret or not header:
        return False

    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if sep:
            parts[key] = value

    timestamp, received = parts.get("t"), parts.get("v0")
    if not timestamp or not received:
        return False
    try:
        sent_at = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if sent_at < current - tolerance_seconds:
        logger.warning(
            "ElevenLabs webhook signature expired",
            extra={"timestamp": sent_at, "tolerance_seconds": tolerance_seconds},
        )
        return False

    message = f"{timestamp}.".encode("utf-8") + body
    expected = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), received.encode("utf-8"))


class ElevenLabsAdapter(BaseAIAgentAdapter):
    """ElevenLabs implementation of AIAgentAdapter."""

    provider_code = "elevenlabs"
    base_url = "https://api.elevenlabs.io/v1"
    sip_domain = "sip.elevenlabs.io"
    health_path = "/user"
    prompt_tone = PromptTone.EMPATHETIC
    missing_assistant_message = "Agent ID is required"

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        webhook_tolerance_seconds: int | None = None,
    ) -> None:
        super().__init__(http_client=http_client, timeout=timeout)
        self._webhook_tolerance_seconds = (
            webhook_tolerance_seconds
            if webhook_tolerance_seconds is not None
            else get_settings().elevenlabs_webhook_tolerance_seconds
        )

    def _get_headers(self) -> dict[str, str]:
        return {"xi-api-key": self.config.api_key or ""}

    def _default_assistant_id(self) -> str | None:
        return self.config.agent_id or self.config.assistant_id

    def _vendor_error_message(self, data: dict[str, Any]) -> str | None:
        detail = data.get("detail")
        if isinstance(detail, dict):
            return detail.get("message")
        return detail if isinstance(detail, str) else None

    async def create_or_update_assistant(
        self,
        name: str,
        system_prompt: str,
        voice: str | None = None,
        language: str | None = None,
        transfer_number: str | None = None,
        webhook_url: str | None = None,
    ) -> AssistantResult:
        """Create a Conversational AI agent.

        Transfers and post-call webhooks are configured workspace-wide in
        ElevenLabs, so ``transfer_number`` and ``webhook_url`` are not sent.
        """
        lang = language or self.language
        tts: dict[str, Any] = {}
        if voice or self.config.voice_id:
            tts["voice_id"] = voice or self.config.voice_id

        body = {
            "name": name,
            "conversation_config": {
                "agent": {
                    "prompt": {"prompt": system_prompt},
                    "first_message": first_message(lang),
                    "language": lang,
                },
                "asr": {"quality": "high", "user_input_audio_format": "pcm_16000"},
                "tts": tts,
                "turn": {"turn_timeout": 10, "mode": "turn_based"},
            },
        }

        data = await self._request_json(
            "POST", "/convai/agents/create", operation="Create agent", json=body
        )
        agent_id = data.get("agent_id")
        if not agent_id:
            raise AIAgentProviderError(
                "Create agent failed: missing agent_id", error_code="NO_ASSISTANT_ID"
            )

        logger.info("ElevenLabs agent created", extra={"agent_id": agent_id})
        return AssistantResult(assistant_id=agent_id)

    async def get_voices(self) -> list[dict[str, Any]]:
        data = await self._request_json("GET", "/voices", operation="List voices")
        voices = data.get("voices")
        return voices if isinstance(voices, list) else []

    async def text_to_speech(self, text: str, voice_id: str | None = None) -> bytes:
        """Synthesize ``text`` and return MP3 bytes."""
        voice = voice_id or self.config.voice_id or DEFAULT_TTS_VOICE
        response = await self._request(
            "POST",
            f"/text-to-speech/{voice}",
            operation="Text to speech",
            json={
                "text": text,
                "model_id": TTS_MODEL,
                "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
            },
        )
        return response.content

    def parse_webhook(self, request: WebhookRequest) -> AIAgentCallEndedEvent | None:
        self._ensure_initialized()
        data = request.json()
        if data is None:
            return None

        event_type = data.get("type") or data.get("event")
        if event_type == POST_CALL_TRANSCRIPTION:
            return _parse_post_call(data)
        if event_type in CONVERSATION_ENDED_TYPES:
            return _parse_conversation_ended(data)
        return None

    def validate_webhook(self, request: WebhookRequest) -> bool:
        secret = self.config.webhook_secret
        if not secret:
            logger.warning("ElevenLabs webhook secret not configured; rejecting webhook")
            return False
        return verify_elevenlabs_signature(
            secret,
            request.header("elevenlabs-signature"),
            request.body,
            tolerance_seconds=self._webhook_tolerance_seconds,
        )


def _end_reason(reason: Any) -> AgentEndReason:
    return ELEVENLABS_END_REASONS.get(str(reason or ""), AgentEndReason.ERROR)


def _turns(transcript: Any) -> list[TranscriptTurn]:
    if not isinstance(transcript, list):
        return []
    return [
        TranscriptTurn(
            role="user" if turn.get("role") == "user" else "assistant",
            content=turn.get("text") or turn.get("message") or "",
        )
        for turn in transcript
        if isinstance(turn, dict)
    ]


def _parse_conversation_ended(data: dict[str, Any]) -> AIAgentCallEndedEvent | None:
    conversation = data.get("conversation") or data
    call_id = conversation.get("conversation_id") or conversation.get("id")
    if not call_id:
        return None
    return AIAgentCallEndedEvent(
        call_id=call_id,
        assistant_id=conversation.get("agent_id"),
        duration=conversation.get("duration_seconds") or 0,
        end_reason=_end_reason(conversation.get("end_reason") or data.get("reason")),
        summary=conversation.get("summary"),
        transcript=_turns(conversation.get("transcript")),
        recording_url=conversation.get("recording_url"),
        metadata={"raw": data},
    )


def _parse_post_call(data: dict[str, Any]) -> AIAgentCallEndedEvent | None:
    body = data.get("data") or {}
    call_id = body.get("conversation_id")
    if not call_id:
        return None
    metadata = body.get("metadata") or {}
    analysis = body.get("analysis") or {}
    reason = metadata.get("termination_reason") or body.get("end_reason")
    return AIAgentCallEndedEvent(
        call_id=call_id,
        assistant_id=body.get("agent_id"),
        duration=metadata.get("call_duration_secs") or 0,
        end_reason=_end_reason(reason),
        summary=analysis.get("transcript_summary"),
        transcript=_turns(body.get("transcript")),
        metadata={
            "status": body.get("status"),
            "termination_reason": reason,
            "event_timestamp": data.get("event_timestamp"),
            "raw": data,
        },
    )
