import json

import httpx
import pytest

from conftest import make_jpeg
from exif_ai.config import Settings
from exif_ai.models import GenerationRequest, TaskKind
from exif_ai.providers import (
    ProviderError,
    ProviderRegistry,
    UnknownProvider,
    create_provider_registry,
)


def make_request(provider, **kwargs):
    values = {
        "task": TaskKind.DESCRIPTION,
        "image": make_jpeg(),
        "provider": provider,
        "prompt": "Describe this image.",
    }
    values.update(kwargs)
    return GenerationRequest(**values)


def registry_with(handler, **settings_overrides):
    settings = Settings(
        _env_file=None,
        openai_api_key="sk-test",
        anthropic_api_key="ak-test",
        google_api_key="gk-test",
        **settings_overrides,
    )
    return create_provider_registry(settings, transport=httpx.MockTransport(handler))


class TestRegistry:
    """Lookup and dispatch."""

    def test_default_registry_names(self):
        registry = create_provider_registry(Settings(_env_file=None))
        assert registry.names() == ["anthropic", "gemini", "google", "ollama", "openai"]

    def test_lookup_is_case_insensitive(self):
        registry = create_provider_registry(Settings(_env_file=None))
        assert "OpenAI" in registry
        assert registry.get(" OLLAMA ").name == "ollama"

    def test_unknown_provider_variant(self):
        assert isinstance(ProviderRegistry().get("invalid"), UnknownProvider)

    @pytest.mark.asyncio
    async def test_unknown_provider_raises(self):
        with pytest.raises(ProviderError, match="Unknown provider"):
            await ProviderRegistry().generate(make_request("invalid"))

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_provider_errors(self):
        class Broken(UnknownProvider):
            async def generate(self, request):
                raise RuntimeError("boom")

        registry = ProviderRegistry({"broken": Broken("broken")})
        with pytest.raises(ProviderError, match="boom"):
            await registry.generate(make_request("broken"))


class TestOllamaProvider:

    @pytest.mark.asyncio
    async def test_generate(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": " A red square. ", "prompt_eval_count": 7, "eval_count": 5})

        registry = registry_with(handler)
        result = await registry.generate(make_request("ollama", provider_args={"options": {"temperature": 0}}))

        assert result.text == "A red square."
        assert result.usage == 12
        assert seen["url"] == "http://localhost:11434/api/generate"
        assert seen["body"]["model"] == "llava"
        assert seen["body"]["stream"] is False
        assert seen["body"]["options"] == {"temperature": 0}
        assert len(seen["body"]["images"]) == 1

    @pytest.mark.asyncio
    async def test_http_error(self):
        registry = registry_with(lambda request: httpx.Response(500, text="model not loaded"))
        with pytest.raises(ProviderError, match="HTTP 500"):
            await registry.generate(make_request("ollama"))

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        registry = registry_with(handler)
        with pytest.raises(ProviderError, match="request failed"):
            await registry.generate(make_request("ollama"))

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        registry = registry_with(lambda request: httpx.Response(200, text="not json"))
        with pytest.raises(ProviderError, match="invalid JSON"):
            await registry.generate(make_request("ollama"))


class TestOpenAIProvider:

    @pytest.mark.asyncio
    async def test_generate(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "choices": [{"message": {"content": "mountain, sky"}}],
                "usage": {"total_tokens": 42},
            })

        registry = registry_with(handler)
        result = await registry.generate(make_request("openai", task=TaskKind.TAG, model="gpt-4o"))

        assert result.text == "mountain, sky"
        assert result.usage == 42
        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o"
        image_part = seen["body"]["messages"][0]["content"][1]
        assert image_part["image_url"]["url"].startswith("data:image/jpeg;base64,")

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        settings = Settings(_env_file=None, openai_api_key="")
        registry = create_provider_registry(settings, transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        with pytest.raises(ProviderError, match="API key"):
            await registry.generate(make_request("openai"))

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        registry = registry_with(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(ProviderError, match="Unexpected OpenAI response"):
            await registry.generate(make_request("openai"))


class TestAnthropicProvider:

    @pytest.mark.asyncio
    async def test_generate(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "content": [{"type": "text", "text": "A red square."}],
                "usage": {"input_tokens": 100, "output_tokens": 4},
            })

        registry = registry_with(handler)
        result = await registry.generate(make_request("anthropic"))

        assert result.text == "A red square."
        assert result.usage == 104
        assert seen["url"] == "https://api.anthropic.com/v1/messages"
        assert seen["headers"]["x-api-key"] == "ak-test"
        assert seen["body"]["messages"][0]["content"][0]["source"]["media_type"] == "image/jpeg"


class TestGoogleProvider:

    @pytest.mark.asyncio
    async def test_generate(self):
        seen = {}

        def handler(request):
            seen["url"] = request.url
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "A red "}, {"text": "square."}]}}],
                "usageMetadata": {"totalTokenCount": 9},
            })

        registry = registry_with(handler)
        result = await registry.generate(make_request("gemini"))

        assert result.text == "A red square."
        assert result.usage == 9
        assert seen["url"].path == "/v1beta/models/gemini-1.5-flash:generateContent"
        assert seen["url"].params["key"] == "gk-test"
