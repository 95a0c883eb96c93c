"""
AI provider dispatch for description and tag generation.

Every provider is a ``BaseProvider`` variant selected by identifier through a
``ProviderRegistry``. Nothing above this module knows how a given provider is
called. Unknown identifiers resolve to ``UnknownProvider``, whose only
behaviour is to fail with ``ProviderError``.
"""

import base64
from typing import Any, Dict, List, Optional
import httpx
from .models import GenerationRequest, GenerationResult
from .imaging import sniff_image
from .logging import get_logger


class ProviderError(Exception):
    """Custom exception for generation failures."""
    pass


class BaseProvider:
    """Base class for generation providers."""

    name = "base"
    default_model: Optional[str] = None

    def __init__(self, base_url: str = "", api_key: str = "", timeout: float = 120.0,
                 max_tokens: int = 1024, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.transport = transport
        self.logger = get_logger(f"providers.{self.name}")

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Generate text for a request. Must be implemented by subclasses."""
        raise NotImplementedError

    def resolve_model(self, request: GenerationRequest) -> str:
        model = request.model or self.default_model
        if not model:
            raise ProviderError(f"No model configured for provider '{self.name}'")
        return model

    def require_api_key(self) -> str:
        if not self.api_key:
            raise ProviderError(f"API key for provider '{self.name}' is not configured")
        return self.api_key

    async def _post(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None,
                    params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST JSON once and return the decoded JSON response."""
        self.logger.debug(f"POST {url}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=headers, params=params)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"{self.name} HTTP {e.response.status_code}: {e.response.text[:500]}"
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(f"{self.name} request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(f"{self.name} returned invalid JSON: {e}") from e


def _encode_image(image: bytes) -> str:
    return base64.b64encode(image).decode("ascii")


def _sum_usage(*counts: Optional[int]) -> Optional[int]:
    known = [count for count in counts if isinstance(count, int)]
    return sum(known) if known else None


class OllamaProvider(BaseProvider):
    """Local Ollama server using the /api/generate endpoint."""

    name = "ollama"
    default_model = "llava"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        payload = {
            "model": self.resolve_model(request),
            "prompt": request.prompt,
            "images": [_encode_image(request.image)],
            "stream": False,
        }
        payload.update(request.provider_args)

        data = await self._post(f"{self.base_url}/api/generate", payload)
        if "response" not in data:
            raise ProviderError(f"Unexpected Ollama response: {list(data)}")

        return GenerationResult(
            text=str(data["response"]).strip(),
            usage=_sum_usage(data.get("prompt_eval_count"), data.get("eval_count")),
        )


class OpenAIProvider(BaseProvider):
    """OpenAI chat completions, also usable with compatible endpoints."""

    name = "openai"
    default_model = "gpt-4o-mini"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        mime_type = sniff_image(request.image).mime_type
        payload = {
            "model": self.resolve_model(request),
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": request.prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{_encode_image(request.image)}"},
                        },
                    ],
                }
            ],
        }
        payload.update(request.provider_args)
        headers = {"Authorization": f"Bearer {self.require_api_key()}"}

        data = await self._post(f"{self.base_url}/chat/completions", payload, headers=headers)
        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected OpenAI response: {e}") from e

        usage = data.get("usage") or {}
        return GenerationResult(text=content.strip(), usage=usage.get("total_tokens"))


class AnthropicProvider(BaseProvider):
    """Anthropic messages API."""

    name = "anthropic"
    default_model = "claude-3-5-sonnet-latest"
    api_version = "2023-06-01"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        mime_type = sniff_image(request.image).mime_type
        payload = {
            "model": self.resolve_model(request),
            "max_tokens": self.max_tokens,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {"type": "base64", "media_type": mime_type, "data": _encode_image(request.image)},
                        },
                        {"type": "text", "text": request.prompt},
                    ],
                }
            ],
        }
        payload.update(request.provider_args)
        headers = {"x-api-key": self.require_api_key(), "anthropic-version": self.api_version}

        data = await self._post(f"{self.base_url}/v1/messages", payload, headers=headers)
        blocks = data.get("content")
        if not isinstance(blocks, list):
            raise ProviderError(f"Unexpected Anthropic response: {list(data)}")

        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        usage = data.get("usage") or {}
        return GenerationResult(
            text=text.strip(),
            usage=_sum_usage(usage.get("input_tokens"), usage.get("output_tokens")),
        )


class GoogleProvider(BaseProvider):
    """Google Gemini generateContent API."""

    name = "google"
    default_model = "gemini-1.5-flash"

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        mime_type = sniff_image(request.image).mime_type
        model = self.resolve_model(request)
        payload: Dict[str, Any] = {
            "contents": [
                {
                    "parts": [
                        {"text": request.prompt},
                        {"inline_data": {"mime_type": mime_type, "data": _encode_image(request.image)}},
                    ]
                }
            ],
            "generationConfig": {"maxOutputTokens": self.max_tokens},
        }
        payload.update(request.provider_args)

        data = await self._post(
            f"{self.base_url}/v1beta/models/{model}:generateContent",
            payload,
            params={"key": self.require_api_key()},
        )
        try:
            parts = data["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Unexpected Gemini response: {e}") from e

        text = "".join(part.get("text", "") for part in parts)
        usage = data.get("usageMetadata") or {}
        return GenerationResult(text=text.strip(), usage=usage.get("totalTokenCount"))


class UnknownProvider(BaseProvider):
    """Stand-in for identifiers that are not registered."""

    name = "unknown"

    def __init__(self, provider_id: str):
        super().__init__()
        self.provider_id = provider_id

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        raise ProviderError(f"Unknown provider: '{self.provider_id}'")


class ProviderRegistry:
    """Maps provider identifiers to provider instances."""

    def __init__(self, providers: Optional[Dict[str, BaseProvider]] = None):
        self.logger = get_logger("providers")
        self._providers: Dict[str, BaseProvider] = {}
        for name, provider in (providers or {}).items():
            self.register(name, provider)

    def register(self, name: str, provider: BaseProvider) -> None:
        self._providers[name.strip().lower()] = provider

    def get(self, name: str) -> BaseProvider:
        return self._providers.get(name.strip().lower()) or UnknownProvider(name)

    def names(self) -> List[str]:
        return sorted(self._providers)

    def __contains__(self, name: str) -> bool:
        return name.strip().lower() in self._providers

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """Dispatch a request to its provider.

        Raises:
            ProviderError: for unknown providers and for any failure of the
                provider call.
        """
        provider = self.get(request.provider)
        try:
            result = await provider.generate(request)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{request.provider} failed: {e}") from e

        self.logger.debug(
            f"{request.provider} {request.task.value}: {len(result.text)} chars, usage={result.usage}"
        )
        return result


def create_provider_registry(settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> ProviderRegistry:
    """Factory function to build the registry of supported providers."""
    common = {
        "timeout": settings.request_timeout,
        "max_tokens": settings.max_tokens,
        "transport": transport,
    }
    registry = ProviderRegistry({
        "ollama": OllamaProvider(base_url=settings.ollama_base_url, **common),
        "openai": OpenAIProvider(base_url=settings.openai_base_url, api_key=settings.openai_api_key, **common),
        "anthropic": AnthropicProvider(
            base_url=settings.anthropic_base_url, api_key=settings.anthropic_api_key, **common
        ),
        "google": GoogleProvider(base_url=settings.google_base_url, api_key=settings.google_api_key, **common),
    })
    registry.register("gemini", registry.get("google"))
    return registry
