"""
Text generation backends
One adapter per provider behind a common `generate(prompt, model_id, params)`
interface. Provider SDK errors are mapped onto the error taxonomy here so
the engine only ever sees SummarizationError subclasses.
"""
import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import anthropic
import httpx
import openai
import structlog

from summarizer.core.config import settings
from summarizer.utils.errors import ExternalAPIError, NetworkError, Severity, SummarizationError

logger = structlog.get_logger()


@dataclass(frozen=True)
class GenerationParams:
    max_tokens: int = 300
    temperature: float = 0.7
    system_prompt: Optional[str] = None


@dataclass(frozen=True)
class GenerationResult:
    text: str
    model_id: str
    tokens_used: int = 0


def _estimate_tokens(*texts: str) -> int:
    return sum(len(t or "") for t in texts) // 4


def map_status_error(provider: str, status_code: Optional[int], message: str) -> SummarizationError:
    """
    Map an HTTP status from a provider onto the taxonomy

    Authentication and exhausted-quota failures are not retryable; other
    4xx responses are not either, 429 and 5xx are.
    """
    details = {"provider": provider, "status_code": status_code}
    lowered = message.lower()
    if status_code in (401, 403):
        return ExternalAPIError(f"{provider} rejected credentials: {message}", retryable=False, details=details)
    if status_code == 429:
        if "quota" in lowered or "insufficient" in lowered or "billing" in lowered:
            return ExternalAPIError(f"{provider} quota exhausted: {message}", retryable=False, details=details)
        return ExternalAPIError(f"{provider} rate limited: {message}", severity=Severity.MEDIUM,
                                retryable=True, details=details)
    if status_code is not None and 500 <= status_code < 600:
        return ExternalAPIError(f"{provider} server error: {message}", retryable=True, details=details)
    return ExternalAPIError(f"{provider} request failed: {message}", retryable=False, details=details)


class TextGenerationBackend(ABC):
    """Provider adapter"""

    provider: str = ""

    @abstractmethod
    async def generate(self, prompt: str, model_id: str, params: GenerationParams) -> GenerationResult:
        """
        Generate text for a prompt

        Raises:
            SummarizationError: network, external_api or processing errors
        """


class OpenAICompatibleBackend(TextGenerationBackend):
    """DeepSeek / OpenAI chat completions through the openai SDK"""

    def __init__(self, api_key: str, base_url: Optional[str] = None, provider: str = "deepseek"):
        if not api_key:
            raise ValueError(f"{provider} API key is not configured")
        self.provider = provider
        self.client = openai.AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0)

    async def generate(self, prompt: str, model_id: str, params: GenerationParams) -> GenerationResult:
        messages = []
        if params.system_prompt:
            messages.append({"role": "system", "content": params.system_prompt})
        messages.append({"role": "user", "content": prompt})
        try:
            response = await self.client.chat.completions.create(
                model=model_id,
                messages=messages,
                temperature=params.temperature,
                max_tokens=params.max_tokens,
            )
        except openai.APITimeoutError as e:
            raise NetworkError(f"{self.provider} timed out: {e}", details={"provider": self.provider}) from e
        except openai.APIConnectionError as e:
            raise NetworkError(f"{self.provider} unreachable: {e}", details={"provider": self.provider}) from e
        except openai.APIStatusError as e:
            raise map_status_error(self.provider, e.status_code, str(e)) from e

        if not response.choices or not response.choices[0].message.content:
            raise ExternalAPIError(f"{self.provider} returned an empty completion",
                                   details={"provider": self.provider})
        content = response.choices[0].message.content.strip()
        tokens = response.usage.total_tokens if response.usage else _estimate_tokens(prompt, content)
        return GenerationResult(text=content, model_id=model_id, tokens_used=tokens)


class AnthropicBackend(TextGenerationBackend):
    """Anthropic messages API"""

    provider = "anthropic"

    def __init__(self, api_key: str):
        if not api_key:
            raise ValueError("Anthropic API key is not configured")
        self.client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0)

    async def generate(self, prompt: str, model_id: str, params: GenerationParams) -> GenerationResult:
        kwargs = {
            "model": model_id,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if params.system_prompt:
            kwargs["system"] = params.system_prompt
        try:
            response = await self.client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            raise NetworkError(f"anthropic timed out: {e}", details={"provider": self.provider}) from e
        except anthropic.APIConnectionError as e:
            raise NetworkError(f"anthropic unreachable: {e}", details={"provider": self.provider}) from e
        except anthropic.APIStatusError as e:
            raise map_status_error(self.provider, e.status_code, str(e)) from e

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text").strip()
        if not text:
            raise ExternalAPIError("anthropic returned an empty message", details={"provider": self.provider})
        usage = response.usage
        tokens = (usage.input_tokens + usage.output_tokens) if usage else _estimate_tokens(prompt, text)
        return GenerationResult(text=text, model_id=model_id, tokens_used=tokens)


class CloudflareBackend(TextGenerationBackend):
    """Cloudflare Workers AI REST endpoint"""

    provider = "cloudflare"

    def __init__(self, api_token: str, account_id: str, base_url: str = None,
                 client: Optional[httpx.AsyncClient] = None):
        if not api_token or not account_id:
            raise ValueError("Cloudflare API token and account id must be configured")
        self.base_url = f"{(base_url or settings.CLOUDFLARE_API_BASE).rstrip('/')}/{account_id}/ai/run"
        self.client = client or httpx.AsyncClient(
            headers={"Authorization": f"Bearer {api_token}"},
            timeout=settings.BACKEND_TIMEOUT_SECONDS,
        )

    async def generate(self, prompt: str, model_id: str, params: GenerationParams) -> GenerationResult:
        messages = []
        if params.system_prompt:
            messages.append({"role": "system", "content": params.system_prompt})
        messages.append({"role": "user", "content": prompt})
        try:
            response = await self.client.post(
                f"{self.base_url}/{model_id}",
                json={"messages": messages, "max_tokens": params.max_tokens, "temperature": params.temperature},
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise NetworkError(f"cloudflare timed out: {e}", details={"provider": self.provider}) from e
        except httpx.HTTPStatusError as e:
            raise map_status_error(self.provider, e.response.status_code, e.response.text[:500]) from e
        except httpx.TransportError as e:
            raise NetworkError(f"cloudflare unreachable: {e}", details={"provider": self.provider}) from e

        payload = response.json()
        text = ((payload.get("result") or {}).get("response") or "").strip()
        if not payload.get("success", True) or not text:
            raise ExternalAPIError(f"cloudflare returned no text: {payload.get('errors')}",
                                   details={"provider": self.provider})
        return GenerationResult(text=text, model_id=model_id, tokens_used=_estimate_tokens(prompt, text))


class MockFailureType(Enum):
    """Failures the mock backend can simulate"""
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    NETWORK_ERROR = "network_error"
    UNAUTHORIZED = "unauthorized"


class MockBackend(TextGenerationBackend):
    """
    Offline backend for test environments

    Echoes the leading sentences of the text it was asked to work on and
    fails with the configured probability. Must stay disabled in production.
    """

    def __init__(self, provider: str = "mock", failure_type: Optional[MockFailureType] = None,
                 failure_probability: Optional[float] = None, timeout_seconds: float = 60.0):
        self.provider = provider
        if failure_type is None:
            try:
                failure_type = MockFailureType(settings.AI_MOCK_FAILURE_TYPE)
            except ValueError:
                logger.warning("Invalid mock failure type, using timeout", failure_type=settings.AI_MOCK_FAILURE_TYPE)
                failure_type = MockFailureType.TIMEOUT
        self.failure_type = failure_type
        self.failure_probability = (
            settings.AI_MOCK_FAILURE_PROBABILITY if failure_probability is None else failure_probability
        )
        self.timeout_seconds = timeout_seconds

    async def _simulate_failure(self) -> None:
        logger.info("Simulating backend failure", provider=self.provider, failure_type=self.failure_type.value)
        if self.failure_type == MockFailureType.TIMEOUT:
            await asyncio.sleep(self.timeout_seconds)
            raise NetworkError(f"mock timeout after {self.timeout_seconds}s", details={"provider": self.provider})
        if self.failure_type == MockFailureType.NETWORK_ERROR:
            raise NetworkError("mock network error", details={"provider": self.provider})
        status = {
            MockFailureType.RATE_LIMIT: 429,
            MockFailureType.SERVER_ERROR: 500,
            MockFailureType.UNAUTHORIZED: 401,
        }[self.failure_type]
        raise map_status_error(self.provider, status, f"mock {self.failure_type.value}")

    async def generate(self, prompt: str, model_id: str, params: GenerationParams) -> GenerationResult:
        if self.failure_probability and random.random() < self.failure_probability:
            await self._simulate_failure()
        body = prompt.rsplit("\n\n", 1)[-1]
        words = body.split()[: max(10, params.max_tokens // 2)]
        text = " ".join(words)
        return GenerationResult(text=text, model_id=model_id, tokens_used=_estimate_tokens(prompt, text))


class BackendRegistry:
    """Provider name -> backend instance"""

    def __init__(self, backends: Dict[str, TextGenerationBackend]):
        self._backends = dict(backends)

    @classmethod
    def from_settings(cls) -> "BackendRegistry":
        """Backends for every provider with credentials configured"""
        if settings.ENABLE_AI_MOCK:
            logger.warning("AI mock enabled, all providers are served by the mock backend")
            providers = {settings.FAST_PROVIDER, settings.QUALITY_PROVIDER, "deepseek", "openai", "anthropic", "cloudflare"}
            return cls({name: MockBackend(provider=name) for name in providers})

        backends: Dict[str, TextGenerationBackend] = {}
        if settings.DEEPSEEK_API_KEY:
            backends["deepseek"] = OpenAICompatibleBackend(settings.DEEPSEEK_API_KEY, settings.DEEPSEEK_API_BASE)
        if settings.OPENAI_API_KEY:
            backends["openai"] = OpenAICompatibleBackend(settings.OPENAI_API_KEY, provider="openai")
        if settings.ANTHROPIC_API_KEY:
            backends["anthropic"] = AnthropicBackend(settings.ANTHROPIC_API_KEY)
        if settings.CLOUDFLARE_API_TOKEN and settings.CLOUDFLARE_ACCOUNT_ID:
            backends["cloudflare"] = CloudflareBackend(settings.CLOUDFLARE_API_TOKEN, settings.CLOUDFLARE_ACCOUNT_ID)
        logger.info("Text generation backends configured", providers=sorted(backends))
        return cls(backends)

    def providers(self):
        return sorted(self._backends)

    def get(self, provider: str) -> TextGenerationBackend:
        backend = self._backends.get(provider)
        if backend is None:
            raise ExternalAPIError(f"No backend configured for provider '{provider}'",
                                   retryable=False, details={"provider": provider})
        return backend
