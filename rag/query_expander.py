"""
HyDE query expansion.

Embedding a short hypothetical answer lands closer to the stored résumé chunks
than embedding the bare question. Expansion is best-effort: any failure falls
back to the original message.
"""

import logging
from typing import Optional

from rag.llm_client import ChatCompletionClient

logger = logging.getLogger(__name__)

HYDE_INSTRUCTIONS = (
    "You help a search engine find passages in a person's résumé and project portfolio. "
    "Write a short, plausible answer (2-4 sentences) to the visitor's question as if it were "
    "taken from that portfolio: mention likely roles, technologies, projects or dates. "
    "Write in English whatever the language of the question. Do not repeat or rephrase the question "
    "and do not add disclaimers. Output only the answer."
)


class QueryExpander:
    def __init__(self, llm: ChatCompletionClient, model: Optional[str] = None,
                 max_tokens: int = 150, timeout: float = 8.0, enabled: bool = True):
        self.llm = llm
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.enabled = enabled

    async def expand(self, message: str) -> str:
        if not self.enabled:
            return message

        try:
            hypothesis = await self.llm.complete(
                [
                    {"role": "system", "content": HYDE_INSTRUCTIONS},
                    {"role": "user", "content": message},
                ],
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.5,
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning(f"HyDE expansion failed, using original query: {e}")
            return message

        if not hypothesis:
            logger.warning("HyDE expansion returned no text, using original query")
            return message

        logger.debug(f"HyDE hypothesis for '{message[:40]}': {hypothesis[:80]}...")
        return hypothesis
