"""
OpenAI-compatible chat completion client (Groq by default).

open_stream() returns the upstream response with its body still unread so the
relay can consume it incrementally; complete() is the small non-streaming call
used for query expansion.
"""

import logging
from typing import Dict, List, Optional

import httpx

from rag.errors import UpstreamGenerationError

logger = logging.getLogger(__name__)

Message = Dict[str, str]


class ChatCompletionClient:
    """
    Thin httpx client for ``POST {base_url}/chat/completions``.

    Attributes:
        model: Default model for streamed answers
        max_tokens / temperature / top_p: Sampling settings for streamed answers
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.groq.com/openai/v1",
        model: str = "llama-3.1-8b-instant",
        max_tokens: int = 512,
        temperature: float = 0.3,
        top_p: float = 0.9,
        timeout: Optional[httpx.Timeout] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.client = http_client or httpx.AsyncClient(
            timeout=timeout or httpx.Timeout(30.0, connect=10.0)
        )

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def open_stream(self, messages: List[Message]) -> httpx.Response:
        """
        Open a streaming completion.

        Returns:
            httpx.Response whose body has not been read; the caller owns it and
            must ``aclose()`` it

        Raises:
            UpstreamGenerationError: Missing key, connection failure or non-2xx
        """
        if not self.api_key:
            raise UpstreamGenerationError("GROQ_API_KEY not set in environment")

        request = self.client.build_request(
            "POST",
            f"{self.base_url}/chat/completions",
            headers=self._headers(),
            json={
                "model": self.model,
                "messages": messages,
                "stream": True,
                "max_tokens": self.max_tokens,
                "temperature": self.temperature,
                "top_p": self.top_p,
            },
        )

        try:
            response = await self.client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise UpstreamGenerationError(f"Completion API unreachable: {e}") from e

        if not response.is_success:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise UpstreamGenerationError(f"Completion API error {response.status_code}: {body[:300]}")

        return response

    async def complete(
        self,
        messages: List[Message],
        model: Optional[str] = None,
        max_tokens: int = 150,
        temperature: float = 0.5,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Non-streaming completion.

        Returns:
            The message content, stripped ("" when the reply has no content)

        Raises:
            UpstreamGenerationError: Missing key, transport failure or non-2xx
        """
        if not self.api_key:
            raise UpstreamGenerationError("GROQ_API_KEY not set in environment")

        try:
            response = await self.client.post(
                f"{self.base_url}/chat/completions",
                headers=self._headers(),
                json={
                    "model": model or self.model,
                    "messages": messages,
                    "stream": False,
                    "max_tokens": max_tokens,
                    "temperature": temperature,
                },
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.HTTPError as e:
            raise UpstreamGenerationError(f"Completion API unreachable: {e}") from e

        if not response.is_success:
            raise UpstreamGenerationError(
                f"Completion API error {response.status_code}: {response.text[:300]}"
            )

        try:
            content = response.json()["choices"][0]["message"].get("content")
        except (ValueError, KeyError, IndexError, TypeError, AttributeError):
            return ""
        return (content or "").strip()

    async def aclose(self):
        await self.client.aclose()
