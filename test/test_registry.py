"""Tests for the adapter registry."""

import pytest

from callbridge.agents.elevenlabs import ElevenLabsAdapter
from callbridge.agents.interface import AgentConfigurationError
from callbridge.agents.vapi import VapiAdapter
from callbridge.telephony.adapters import TelnyxAdapter, TwilioAdapter, VonageAdapter
from callbridge.telephony.interface import UnknownProviderError
from callbridge.telephony.registry import AdapterRegistry, get_adapter_registry
from http_fakes import mock_client


@pytest.fixture
def registry() -> AdapterRegistry:
    return AdapterRegistry(http_client=mock_client(), timeout_seconds=7)


class TestTelephonyAdapters:
    @pytest.mark.parametrize(
        ("code", "adapter_class"),
        [("twilio", TwilioAdapter), ("telnyx", TelnyxAdapter), ("vonage", VonageAdapter)],
    )
    def test_get_adapter(self, registry: AdapterRegistry, code: str, adapter_class: type) -> None:
        adapter = registry.get_adapter(code)

        assert isinstance(adapter, adapter_class)
        assert adapter.provider_code == code
        assert adapter._timeout == 7

    def test_adapters_are_cached(self, registry: AdapterRegistry) -> None:
        assert registry.get_adapter("twilio") is registry.get_adapter("twilio")

    def test_all_adapters_in_stable_order(self, registry: AdapterRegistry) -> None:
        codes = [adapter.provider_code for adapter in registry.get_all_adapters()]

        assert codes == ["telnyx", "twilio", "vonage"]
        assert registry.get_all_adapters()[1] is registry.get_adapter("twilio")

    @pytest.mark.parametrize("code", ["plivo", "", "TWILIO", "vapi"])
    def test_unknown_code(self, registry: AdapterRegistry, code: str) -> None:
        with pytest.raises(UnknownProviderError) as exc_info:
            registry.get_adapter(code)

        assert exc_info.value.error_code == "UNKNOWN_PROVIDER"

    def test_supported_codes(self, registry: AdapterRegistry) -> None:
        assert registry.supported_telephony_codes() == ["telnyx", "twilio", "vonage"]
        assert registry.supported_ai_agent_codes() == ["vapi", "elevenlabs"]
        assert registry.is_provider_supported("vonage") is True
        assert registry.is_provider_supported("vapi") is False
        assert registry.is_ai_agent_provider("elevenlabs") is True
        assert registry.is_ai_agent_provider("twilio") is False


class TestAIAgentAdapters:
    @pytest.mark.parametrize(
        ("code", "adapter_class"), [("vapi", VapiAdapter), ("elevenlabs", ElevenLabsAdapter)]
    )
    async def test_created_initialized(
        self, registry: AdapterRegistry, code: str, adapter_class: type
    ) -> None:
        adapter = await registry.create_ai_agent_adapter(code, {"apiKey": "k", "assistantId": "a-1"})

        assert isinstance(adapter, adapter_class)
        assert adapter.config.api_key == "k"

    async def test_fresh_instance_per_call(self, registry: AdapterRegistry) -> None:
        first = await registry.create_ai_agent_adapter("vapi", {"apiKey": "tenant-a"})
        second = await registry.create_ai_agent_adapter("vapi", {"apiKey": "tenant-b"})

        assert first is not second
        assert first.config.api_key == "tenant-a"
        assert second.config.api_key == "tenant-b"

    async def test_unknown_agent_provider(self, registry: AdapterRegistry) -> None:
        with pytest.raises(UnknownProviderError):
            await registry.create_ai_agent_adapter("twilio", {"apiKey": "k"})

    async def test_missing_api_key(self, registry: AdapterRegistry) -> None:
        with pytest.raises(AgentConfigurationError):
            await registry.create_ai_agent_adapter("elevenlabs", {})


def test_process_registry_is_shared() -> None:
    assert get_adapter_registry() is get_adapter_registry()
