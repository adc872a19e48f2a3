"""
Unit tests for the embedding clients.
"""

import json

import httpx
import pytest

from rag.config import EmbeddingConfig
from rag.embeddings import (
    CloudflareEmbeddingClient,
    OllamaEmbeddingClient,
    build_embedding_client,
)
from rag.errors import EmbeddingError


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestOllamaEmbeddingClient:
    @pytest.mark.asyncio
    async def test_embed(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"embedding": [1, 2, 3]})

        client = OllamaEmbeddingClient(
            base_url="http://ollama:11434/", model="nomic-embed-text", dimension=3,
            http_client=mock_client(handler),
        )
        vector = await client.embed("  Angular and Python  ")

        assert vector == [1.0, 2.0, 3.0]
        assert seen["url"] == "http://ollama:11434/api/embeddings"
        assert seen["body"] == {"model": "nomic-embed-text", "prompt": "Angular and Python"}

    @pytest.mark.asyncio
    async def test_input_truncated(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["prompt"] = json.loads(request.content)["prompt"]
            return httpx.Response(200, json={"embedding": [0.1, 0.2]})

        client = OllamaEmbeddingClient(model="m", dimension=2, max_input_chars=10, http_client=mock_client(handler))
        await client.embed("x" * 50)

        assert seen["prompt"] == "x" * 10

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self):
        client = OllamaEmbeddingClient(
            model="m", dimension=768,
            http_client=mock_client(lambda r: httpx.Response(200, json={"embedding": [0.1] * 384})),
        )
        with pytest.raises(EmbeddingError, match="384-dim"):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_missing_embedding(self):
        client = OllamaEmbeddingClient(
            model="m", dimension=3, http_client=mock_client(lambda r: httpx.Response(200, json={}))
        )
        with pytest.raises(EmbeddingError, match="no embedding"):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_non_object_reply(self):
        client = OllamaEmbeddingClient(
            model="m", dimension=2, http_client=mock_client(lambda r: httpx.Response(200, json=[1, 2]))
        )
        with pytest.raises(EmbeddingError, match="expected an object"):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = OllamaEmbeddingClient(
            model="m", dimension=3, http_client=mock_client(lambda r: httpx.Response(500, text="model not found"))
        )
        with pytest.raises(EmbeddingError, match="500"):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = OllamaEmbeddingClient(model="m", dimension=3, http_client=mock_client(handler))
        with pytest.raises(EmbeddingError, match="unreachable"):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_empty_text_never_calls_backend(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"embedding": [0.1]})

        client = OllamaEmbeddingClient(model="m", dimension=1, http_client=mock_client(handler))
        with pytest.raises(EmbeddingError, match="empty"):
            await client.embed("   ")
        assert calls == []


@pytest.mark.unit
class TestCloudflareEmbeddingClient:
    @pytest.mark.asyncio
    async def test_embed(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"result": {"data": [[0.5, 0.25]]}, "success": True})

        client = CloudflareEmbeddingClient(
            account_id="acc123", api_token="cf-token",
            model="@cf/baai/bge-base-en-v1.5", dimension=2, http_client=mock_client(handler),
        )
        vector = await client.embed("SQL and Power BI")

        assert vector == [0.5, 0.25]
        assert seen["path"] == "/client/v4/accounts/acc123/ai/run/@cf/baai/bge-base-en-v1.5"
        assert seen["auth"] == "Bearer cf-token"
        assert seen["body"] == {"text": ["SQL and Power BI"]}

    @pytest.mark.asyncio
    async def test_not_configured(self):
        client = CloudflareEmbeddingClient(account_id=None, api_token=None, model="m", dimension=2,
                                           http_client=mock_client(lambda r: httpx.Response(200)))
        with pytest.raises(EmbeddingError, match="not configured"):
            await client.embed("hello")

    @pytest.mark.asyncio
    async def test_malformed_result(self):
        client = CloudflareEmbeddingClient(
            account_id="a", api_token="t", model="m", dimension=2,
            http_client=mock_client(lambda r: httpx.Response(200, json={"result": {"data": []}})),
        )
        with pytest.raises(EmbeddingError, match="no embedding"):
            await client.embed("hello")


@pytest.mark.unit
def test_build_embedding_client_selects_provider():
    ollama = build_embedding_client(EmbeddingConfig(provider="ollama"))
    cloudflare = build_embedding_client(EmbeddingConfig(provider="cloudflare", model="@cf/baai/bge-base-en-v1.5"))

    assert isinstance(ollama, OllamaEmbeddingClient)
    assert isinstance(cloudflare, CloudflareEmbeddingClient)
    assert cloudflare.dimension == 768
