"""
Embedding clients.

One interface, three backends. The chat service and the ingestion pipeline
build their client from the same EmbeddingConfig, and every client checks the
returned vector length against ``dimension``: a model/index mismatch would
otherwise make retrieval return meaningless or empty results without any error.

Backends:
    - ollama: local Ollama server (POST /api/embeddings)
    - cloudflare: Workers AI REST API (@cf/baai/bge-base-en-v1.5, 768 dims)
    - huggingface: in-process sentence-transformers model via langchain_huggingface
"""

import asyncio
import logging
from typing import List, Optional

import httpx

from rag.config import EmbeddingConfig
from rag.errors import EmbeddingError

logger = logging.getLogger(__name__)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"


class BaseEmbeddingClient:
    """Shared input preparation and output validation."""

    def __init__(self, model: str, dimension: int, max_input_chars: int = 8000):
        self.model = model
        self.dimension = dimension
        self.max_input_chars = max_input_chars

    async def embed(self, text: str) -> List[float]:
        """
        Embed one text.

        Raises:
            EmbeddingError: Backend unreachable, no vector returned, or the
                vector has the wrong dimension
        """
        prepared = (text or "").strip()[: self.max_input_chars]
        if not prepared:
            raise EmbeddingError("Cannot embed empty text")

        vector = await self._embed(prepared)

        if not vector:
            raise EmbeddingError(f"{self.model} returned no embedding data")
        if len(vector) != self.dimension:
            raise EmbeddingError(
                f"{self.model} returned {len(vector)}-dim vector, index expects {self.dimension}"
            )
        return [float(v) for v in vector]

    async def _embed(self, text: str) -> Optional[List[float]]:
        raise NotImplementedError

    async def aclose(self):
        pass


class _HttpEmbeddingClient(BaseEmbeddingClient):
    def __init__(self, model: str, dimension: int, max_input_chars: int = 8000,
                 timeout: float = 10.0, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__(model, dimension, max_input_chars)
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0))

    async def _post(self, url: str, **kwargs) -> dict:
        try:
            response = await self.client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise EmbeddingError(f"Embedding backend unreachable: {e}") from e
        if not response.is_success:
            raise EmbeddingError(f"Embedding error {response.status_code}: {response.text[:200]}")
        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingError(f"Invalid embedding response: {e}") from e
        if not isinstance(data, dict):
            raise EmbeddingError(f"Invalid embedding response: expected an object, got {type(data).__name__}")
        return data

    async def aclose(self):
        await self.client.aclose()


class OllamaEmbeddingClient(_HttpEmbeddingClient):
    def __init__(self, base_url: str = "http://localhost:11434", **kwargs):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")

    async def _embed(self, text: str) -> Optional[List[float]]:
        data = await self._post(
            f"{self.base_url}/api/embeddings",
            json={"model": self.model, "prompt": text},
        )
        embedding = data.get("embedding")
        return embedding if isinstance(embedding, list) else None


class CloudflareEmbeddingClient(_HttpEmbeddingClient):
    def __init__(self, account_id: Optional[str], api_token: Optional[str], **kwargs):
        super().__init__(**kwargs)
        self.account_id = account_id
        self.api_token = api_token

    async def _embed(self, text: str) -> Optional[List[float]]:
        if not self.account_id or not self.api_token:
            raise EmbeddingError("Workers AI not configured (CLOUDFLARE_ACCOUNT_ID, CLOUDFLARE_API_TOKEN)")

        data = await self._post(
            f"{CLOUDFLARE_API_BASE}/accounts/{self.account_id}/ai/run/{self.model}",
            headers={"Authorization": f"Bearer {self.api_token}"},
            json={"text": [text]},
        )
        try:
            return data["result"]["data"][0]
        except (KeyError, IndexError, TypeError):
            return None


class HuggingFaceEmbeddingClient(BaseEmbeddingClient):
    """In-process model; requires the ``local`` extra."""

    def __init__(self, model: str, dimension: int, max_input_chars: int = 8000):
        super().__init__(model, dimension, max_input_chars)
        from langchain_huggingface import HuggingFaceEmbeddings

        self.embeddings = HuggingFaceEmbeddings(
            model_name=model,
            model_kwargs={"device": "cpu"},
            encode_kwargs={"normalize_embeddings": True},
        )
        logger.info(f"HuggingFace embeddings loaded: {model}")

    async def _embed(self, text: str) -> Optional[List[float]]:
        try:
            return await asyncio.to_thread(self.embeddings.embed_query, text)
        except Exception as e:
            raise EmbeddingError(f"Local embedding failed: {e}") from e


def build_embedding_client(config: EmbeddingConfig,
                           http_client: Optional[httpx.AsyncClient] = None) -> BaseEmbeddingClient:
    """Create the embedding client selected by ``config.provider``."""
    common = dict(model=config.model, dimension=config.dimension, max_input_chars=config.max_input_chars)

    if config.provider == "ollama":
        return OllamaEmbeddingClient(
            base_url=config.ollama_base_url, timeout=config.timeout, http_client=http_client, **common
        )
    if config.provider == "cloudflare":
        return CloudflareEmbeddingClient(
            account_id=config.cloudflare_account_id,
            api_token=config.cloudflare_api_token,
            timeout=config.timeout,
            http_client=http_client,
            **common,
        )
    return HuggingFaceEmbeddingClient(**common)
