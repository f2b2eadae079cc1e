"""
Adapter registry.

Maps provider codes to adapter instances. Telephony adapters are stateless
and cached per code; AI agent adapters carry per-tenant config and are built
fresh on every request.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Any

import httpx

from callbridge.agents.elevenlabs import ElevenLabsAdapter
from callbridge.agents.interface import AIAgentAdapter
from callbridge.agents.vapi import VapiAdapter
from callbridge.config import get_settings
from callbridge.shared.logging import get_logger
from callbridge.telephony.adapters.telnyx import TelnyxAdapter
from callbridge.telephony.adapters.twilio import TwilioAdapter
from callbridge.telephony.adapters.vonage import VonageAdapter
from callbridge.telephony.interface import TelephonyAdapter, UnknownProviderError

logger = get_logger(__name__)


class TelephonyProviderCode(str, Enum):
    TELNYX = "telnyx"
    TWILIO = "twilio"
    VONAGE = "vonage"


class AIAgentProviderCode(str, Enum):
    VAPI = "vapi"
    ELEVENLABS = "elevenlabs"


class AdapterRegistry:
    """Process-wide adapter lookup, passed explicitly to whoever needs adapters."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._http_client = http_client
        self._timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else get_settings().http_timeout_seconds
        )
        self._adapters: dict[TelephonyProviderCode, TelephonyAdapter] = {}

    def _create_adapter(self, code: TelephonyProviderCode) -> TelephonyAdapter:
        kwargs: dict[str, Any] = {
            "http_client": self._http_client,
            "timeout": self._timeout_seconds,
        }
        if code == TelephonyProviderCode.TWILIO:
            return TwilioAdapter(**kwargs)
        if code == TelephonyProviderCode.TELNYX:
            return TelnyxAdapter(**kwargs)
        if code == TelephonyProviderCode.VONAGE:
            return VonageAdapter(**kwargs)
        raise UnknownProviderError(f"Unknown provider: {code}", error_code="UNKNOWN_PROVIDER")

    def get_adapter(self, code: str) -> TelephonyAdapter:
        """Return the cached adapter for a telephony provider code.

        Raises:
            UnknownProviderError: ``code`` is not a telephony provider.
        """
        try:
            provider = TelephonyProviderCode(code)
        except ValueError:
            raise UnknownProviderError(
                f"Unknown provider: {code}", error_code="UNKNOWN_PROVIDER"
            ) from None

        adapter = self._adapters.get(provider)
        if adapter is None:
            adapter = self._create_adapter(provider)
            self._adapters[provider] = adapter
            logger.info("Telephony adapter created", extra={"provider": provider.value})
        return adapter

    def get_all_adapters(self) -> list[TelephonyAdapter]:
        return [self.get_adapter(code.value) for code in TelephonyProviderCode]

    def is_provider_supported(self, code: str) -> bool:
        return code in self.supported_telephony_codes()

    def is_ai_agent_provider(self, code: str) -> bool:
        return code in self.supported_ai_agent_codes()

    @staticmethod
    def supported_telephony_codes() -> list[str]:
        return [code.value for code in TelephonyProviderCode]

    @staticmethod
    def supported_ai_agent_codes() -> list[str]:
        return [code.value for code in AIAgentProviderCode]

    async def create_ai_agent_adapter(self, code: str, config: dict[str, Any]) -> AIAgentAdapter:
        """Build and initialize a new AI agent adapter for ``config``.

        Raises:
            UnknownProviderError: ``code`` is not an AI agent provider.
            AgentConfigurationError: ``config`` lacks the API key.
        """
        try:
            provider = AIAgentProviderCode(code)
        except ValueError:
            raise UnknownProviderError(
                f"Unknown AI agent provider: {code}", error_code="UNKNOWN_PROVIDER"
            ) from None

        adapter: AIAgentAdapter
        if provider == AIAgentProviderCode.VAPI:
            adapter = VapiAdapter(http_client=self._http_client, timeout=self._timeout_seconds)
        else:
            adapter = ElevenLabsAdapter(
                http_client=self._http_client, timeout=self._timeout_seconds
            )
        await adapter.initialize(config)
        return adapter


@lru_cache(maxsize=1)
def get_adapter_registry() -> AdapterRegistry:
    """Return the process registry built from Settings."""
    return AdapterRegistry(timeout_seconds=get_settings().http_timeout_seconds)
