"""
Contextual retrieval for ingestion.

A small local Ollama model writes a 2-3 sentence preface that situates each
chunk in its source document; the preface is prepended before embedding. When
the model is unavailable the raw chunk is used instead.

Reference: https://www.anthropic.com/news/contextual-retrieval
"""

import logging
from typing import Optional

import httpx

from rag.chunking import Chunk

logger = logging.getLogger(__name__)

DOCUMENT_TRUNCATION_MARKER = "\n...[document truncated]"

CONTEXT_PROMPT = """<document>
{document}
</document>

Here is a chunk from this document:
<chunk>
{chunk}
</chunk>

Give a short (2-3 sentence) context that situates this chunk within the overall document. This context will be prepended to the chunk to improve search retrieval. Only output the context sentences, nothing else."""


def truncate_document(document: str, max_chars: int = 8000) -> str:
    if len(document) <= max_chars:
        return document
    return document[:max_chars] + DOCUMENT_TRUNCATION_MARKER


class ContextualAugmenter:
    def __init__(self, base_url: str = "http://localhost:11434", model: str = "llama3.2:3b",
                 timeout: float = 30.0, max_document_chars: int = 8000,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_document_chars = max_document_chars
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0))

    async def generate_context(self, document: str, chunk: Chunk) -> str:
        """
        Ask the local model for a situating context.

        Raises:
            httpx.HTTPError: Ollama unreachable or returned an error status
            ValueError: Empty or malformed reply
        """
        prompt = CONTEXT_PROMPT.format(
            document=truncate_document(document, self.max_document_chars),
            chunk=chunk.text,
        )
        response = await self.client.post(
            f"{self.base_url}/api/generate",
            json={
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": 0.1, "num_predict": 150},
            },
        )
        response.raise_for_status()

        data = response.json()
        context = data.get("response") if isinstance(data, dict) else None
        if not isinstance(context, str):
            raise ValueError(f"Malformed context response: {type(data).__name__}")
        context = context.strip()
        if not context:
            raise ValueError("Empty context response")
        return context

    async def augment(self, document: str, chunk: Chunk) -> str:
        """Return ``context + "\\n\\n" + chunk.text``, or the raw chunk text on failure."""
        try:
            context = await self.generate_context(document, chunk)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(
                f"Context generation failed for chunk {chunk.chunk_index}: {e} - using raw chunk"
            )
            return chunk.text
        return f"{context}\n\n{chunk.text}"

    async def aclose(self):
        await self.client.aclose()
