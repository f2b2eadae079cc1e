"""
AI voice agent adapter interface definition.

An adapter is initialized with one tenant's decrypted config, then used to
provision assistants, resolve the SIP URI a live call is transferred to and
read the platform's end-of-call webhooks.
"""

from __future__ import annotations

import json
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

import httpx

from callbridge.agents.models import (
    AgentCallSetup,
    AgentContext,
    AIAgentCallEndedEvent,
    AssistantResult,
    HealthCheckResult,
)
from callbridge.agents.prompts import PromptTone, build_system_prompt
from callbridge.config import get_settings
from callbridge.shared.logging import get_logger
from callbridge.telephony.interface import coerce_credentials, health_from_response
from callbridge.telephony.models import ProviderCredentials

logger = get_logger(__name__)

DEFAULT_LANGUAGE = "ru"


class AIAgentProviderError(Exception):
    """Base exception for AI agent platform errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}


class AdapterNotInitializedError(AIAgentProviderError):
    """A method was called before initialize()."""


class AgentConfigurationError(AIAgentProviderError):
    """The tenant config lacks a value the operation needs."""


@dataclass(frozen=True)
class WebhookRequest:
    """Raw inbound webhook: headers plus the exact body bytes."""

    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    def json(self) -> dict[str, Any] | None:
        """Decoded JSON object body, or None if the body is not one."""
        try:
            data = json.loads(self.body or b"null")
        except ValueError:
            return None
        return data if isinstance(data, dict) else None


class AIAgentAdapter(ABC):
    """Abstract interface for AI voice agent platforms."""

    provider_code: ClassVar[str]

    @abstractmethod
    async def initialize(self, config: ProviderCredentials | dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def check_health(self) -> HealthCheckResult:
        ...

    @abstractmethod
    async def get_sip_uri(
        self,
        assistant_id: str | None = None,
        context: AgentContext | None = None,
    ) -> str:
        """SIP URI a carrier transfers the call to."""
        ...

    @abstractmethod
    async def create_or_update_assistant(
        self,
        name: str,
        system_prompt: str,
        voice: str | None = None,
        language: str | None = None,
        transfer_number: str | None = None,
        webhook_url: str | None = None,
    ) -> AssistantResult:
        ...

    @abstractmethod
    async def create_assistant_for_call(
        self,
        context: AgentContext,
        webhook_url: str,
        transfer_number: str | None = None,
    ) -> AgentCallSetup:
        """Provision an assistant whose prompt carries this call's context."""
        ...

    @abstractmethod
    def parse_webhook(self, request: WebhookRequest) -> AIAgentCallEndedEvent | None:
        ...

    @abstractmethod
    def validate_webhook(self, request: WebhookRequest) -> bool:
        ...


class BaseAIAgentAdapter(AIAgentAdapter):
    """Shared config handling and HTTP plumbing for AI agent adapters."""

    base_url: ClassVar[str]
    sip_domain: ClassVar[str]
    health_path: ClassVar[str]
    prompt_tone: ClassVar[PromptTone] = PromptTone.BUSINESS
    missing_assistant_message: ClassVar[str] = "Assistant ID is required"

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self._http_client = http_client
        self._timeout = timeout if timeout is not None else get_settings().http_timeout_seconds
        self._config: ProviderCredentials | None = None

    async def initialize(self, config: ProviderCredentials | dict[str, Any]) -> None:
        creds = coerce_credentials(config)
        if not creds.api_key:
            raise AgentConfigurationError("api_key is required", error_code="MISSING_API_KEY")
        self._config = creds

    @property
    def config(self) -> ProviderCredentials:
        if self._config is None:
            raise AdapterNotInitializedError(
                f"{self.provider_code} adapter not initialized",
                error_code="NOT_INITIALIZED",
            )
        return self._config

    def _ensure_initialized(self) -> ProviderCredentials:
        return self.config

    @property
    def language(self) -> str:
        return (self.config.model_extra or {}).get("language") or DEFAULT_LANGUAGE

    @abstractmethod
    def _get_headers(self) -> dict[str, str]:
        ...

    def _default_assistant_id(self) -> str | None:
        return self.config.assistant_id

    def _vendor_error_message(self, data: dict[str, Any]) -> str | None:
        return data.get("message") if isinstance(data.get("message"), str) else None

    def sip_uri_for(self, assistant_id: str) -> str:
        return f"sip:{assistant_id}@{self.sip_domain}"

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}{path}"
        headers = self._get_headers()
        if self._http_client is not None:
            return await self._http_client.request(
                method, url, headers=headers, timeout=self._timeout, **kwargs
            )
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def _request(
        self, method: str, path: str, *, operation: str, **kwargs: Any
    ) -> httpx.Response:
        """Send a vendor request and return the successful response.

        Raises:
            AIAgentProviderError: transport failure or non-2xx response.
        """
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(
                "AI agent request failed",
                extra={"provider": self.provider_code, "operation": operation, "error": str(e)},
            )
            raise AIAgentProviderError(f"Network error: {e!s}", error_code="HTTP_ERROR") from e

        if response.status_code >= 400:
            data = _json_object(response)
            message = self._vendor_error_message(data) or (
                f"{operation} failed: {response.status_code}"
            )
            logger.error(
                "AI agent platform rejected request",
                extra={
                    "provider": self.provider_code,
                    "operation": operation,
                    "status_code": response.status_code,
                    "error": message,
                },
            )
            raise AIAgentProviderError(
                message,
                error_code=str(response.status_code),
                provider_response=data,
            )
        return response

    async def _request_json(
        self, method: str, path: str, *, operation: str, **kwargs: Any
    ) -> dict[str, Any]:
        response = await self._request(method, path, operation=operation, **kwargs)
        return _json_object(response)

    async def check_health(self) -> HealthCheckResult:
        start = time.perf_counter()
        try:
            response = await self._send("GET", self.health_path)
        except httpx.HTTPError as e:
            return HealthCheckResult(healthy=False, reachable=False, error=f"Network error: {e!s}")

        result = health_from_response(response, round((time.perf_counter() - start) * 1000, 1))
        if not result.healthy:
            logger.warning(
                "AI agent health check failed",
                extra={"provider": self.provider_code, "status_code": response.status_code},
            )
        return result

    async def get_sip_uri(
        self,
        assistant_id: str | None = None,
        context: AgentContext | None = None,
    ) -> str:
        self._ensure_initialized()
        resolved = assistant_id or self._default_assistant_id()
        if not resolved:
            raise AgentConfigurationError(
                self.missing_assistant_message, error_code="MISSING_ASSISTANT_ID"
            )
        return self.sip_uri_for(resolved)

    async def create_assistant_for_call(
        self,
        context: AgentContext,
        webhook_url: str,
        transfer_number: str | None = None,
    ) -> AgentCallSetup:
        language = self.language
        result = await self.create_or_update_assistant(
            name=f"CRM-Call-{int(time.time() * 1000)}",
            system_prompt=build_system_prompt(context, language=language, tone=self.prompt_tone),
            language=language,
            transfer_number=transfer_number,
            webhook_url=webhook_url,
        )
        logger.info(
            "Assistant provisioned for call",
            extra={"provider": self.provider_code, "assistant_id": result.assistant_id},
        )
        return AgentCallSetup(
            assistant_id=result.assistant_id,
            sip_uri=self.sip_uri_for(result.assistant_id),
            server_url_secret=result.server_url_secret,
        )


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
