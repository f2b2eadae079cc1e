"""
VAPI AI agent adapter.

REST: https://api.vapi.ai, Bearer API key.
Calls reach an assistant at ``sip:{assistant_id}@sip.vapi.ai``; the
end-of-call report is POSTed to the assistant's serverUrl with the
``x-vapi-secret`` header.
"""

from __future__ import annotations

import hmac
import secrets
from typing import Any

from callbridge.agents.interface import AIAgentProviderError, BaseAIAgentAdapter, WebhookRequest
from callbridge.agents.models import (
    AgentEndReason,
    AIAgentCallEndedEvent,
    AssistantResult,
    TranscriptTurn,
)
from callbridge.agents.prompts import PromptTone, first_message
from callbridge.shared.logging import get_logger

logger = get_logger(__name__)

VAPI_END_REASONS: dict[str, AgentEndReason] = {
    "customer-ended-call": AgentEndReason.CUSTOMER_ENDED,
    "assistant-ended-call": AgentEndReason.ASSISTANT_ENDED,
    "call-forwarded": AgentEndReason.TRANSFERRED,
    "assistant-error": AgentEndReason.ERROR,
    "max-duration-reached": AgentEndReason.ASSISTANT_ENDED,
    "silence-timed-out": AgentEndReason.ASSISTANT_ENDED,
}

DEFAULT_VOICE = "rachel"
SILENCE_TIMEOUT_SECONDS = 30
MAX_DURATION_SECONDS = 600


class VapiAdapter(BaseAIAgentAdapter):
    """VAPI implementation of AIAgentAdapter."""

    provider_code = "vapi"
    base_url = "https://api.vapi.ai"
    sip_domain = "sip.vapi.ai"
    health_path = "/assistant"
    prompt_tone = PromptTone.BUSINESS

    def _get_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _vendor_error_message(self, data: dict[str, Any]) -> str | None:
        message = data.get("message")
        if isinstance(message, list):
            return "; ".join(str(m) for m in message) or None
        return message if isinstance(message, str) else None

    async def create_or_update_assistant(
        self,
        name: str,
        system_prompt: str,
        voice: str | None = None,
        language: str | None = None,
        transfer_number: str | None = None,
        webhook_url: str | None = None,
    ) -> AssistantResult:
        config = self.config
        body: dict[str, Any] = {
            "name": name,
            "model": {
                "provider": "openai",
                "model": "gpt-4o",
                "systemPrompt": system_prompt,
                "temperature": 0.7,
            },
            "voice": {
                "provider": "elevenlabs",
                "voiceId": voice or config.default_voice or DEFAULT_VOICE,
            },
            "firstMessage": first_message(language or self.language),
            "firstMessageMode": "assistant-speaks-first",
            "silenceTimeoutSeconds": SILENCE_TIMEOUT_SECONDS,
            "maxDurationSeconds": MAX_DURATION_SECONDS,
        }
        if transfer_number:
            body["forwardingPhoneNumber"] = transfer_number

        server_url_secret = None
        if webhook_url:
            # Reuse the tenant's secret so validate_webhook can check reports
            server_url_secret = config.webhook_secret or secrets.token_hex(16)
            body["serverUrl"] = webhook_url
            body["serverUrlSecret"] = server_url_secret

        data = await self._request_json(
            "POST", "/assistant", operation="Create assistant", json=body
        )
        assistant_id = data.get("id")
        if not assistant_id:
            raise AIAgentProviderError(
                "Create assistant failed: missing assistant id", error_code="NO_ASSISTANT_ID"
            )

        logger.info("VAPI assistant created", extra={"assistant_id": assistant_id})
        return AssistantResult(assistant_id=assistant_id, server_url_secret=server_url_secret)

    def parse_webhook(self, request: WebhookRequest) -> AIAgentCallEndedEvent | None:
        self._ensure_initialized()
        data = request.json()
        if data is None:
            return None

        report = data.get("message") or {}
        if not isinstance(report, dict) or report.get("type") != "end-of-call-report":
            return None

        call = report.get("call") or data.get("call") or {}
        call_id = call.get("id")
        if not call_id:
            logger.warning("VAPI end-of-call report without call id")
            return None

        artifact = report.get("artifact") or {}
        ended_reason = report.get("endedReason")
        return AIAgentCallEndedEvent(
            call_id=call_id,
            assistant_id=(report.get("assistant") or {}).get("id") or call.get("assistantId"),
            duration=report.get("durationSeconds") or 0,
            end_reason=VAPI_END_REASONS.get(ended_reason or "", AgentEndReason.ERROR),
            summary=report.get("summary") or (report.get("analysis") or {}).get("summary"),
            transcript=_transcript(report.get("transcript"), artifact.get("messages")),
            recording_url=report.get("recordingUrl") or artifact.get("recordingUrl"),
            metadata={
                "ended_reason": ended_reason,
                "cost": report.get("cost"),
                "raw": data,
            },
        )

    def validate_webhook(self, request: WebhookRequest) -> bool:
        """Constant-time check of ``x-vapi-secret`` against the tenant's webhook secret."""
        expected = self.config.webhook_secret
        if not expected:
            logger.warning("VAPI webhook secret not configured; rejecting webhook")
            return False
        received = request.header("x-vapi-secret")
        if not received:
            return False
        return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))


def _transcript(turns: Any, messages: Any) -> list[TranscriptTurn]:
    source = turns if isinstance(turns, list) else messages if isinstance(messages, list) else []
    result = []
    for turn in source:
        if not isinstance(turn, dict):
            continue
        role = turn.get("role")
        if role not in ("user", "assistant", "bot"):
            # system prompts and tool calls
            continue
        result.append(
            TranscriptTurn(
                role="user" if role == "user" else "assistant",
                content=turn.get("message") or turn.get("content") or "",
            )
        )
    return result
