"""
Similarity search over the vector index.

Matches below the relevance floor or without text never reach the prompt.
"""

import logging
from dataclasses import dataclass
from typing import List, Sequence

from rag.errors import RetrievalError, VectorIndexError

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 5
MIN_RELEVANCE_SCORE = 0.55


@dataclass
class RetrievedChunk:
    text: str
    source: str
    type: str
    score: float


class VectorRetriever:
    def __init__(self, index, min_score: float = MIN_RELEVANCE_SCORE):
        self.index = index
        self.min_score = min_score

    async def search(self, vector: Sequence[float], top_k: int = DEFAULT_TOP_K) -> List[RetrievedChunk]:
        """
        Return up to ``top_k`` chunks in index order.

        Raises:
            RetrievalError: The index query failed
        """
        if self.index is None:
            raise RetrievalError("Vector index not configured")
        try:
            matches = await self.index.query(vector, top_k)
        except VectorIndexError as e:
            raise RetrievalError(str(e)) from e

        chunks = []
        for match in matches:
            if match.score < self.min_score:
                continue
            metadata = match.metadata or {}
            text = metadata.get("text") or ""
            if not isinstance(text, str) or not text.strip():
                continue
            chunks.append(RetrievedChunk(
                text=text,
                source=metadata.get("source") or "unknown",
                type=metadata.get("type") or "unknown",
                score=match.score,
            ))

        logger.info(f"Retrieved {len(chunks)}/{len(matches)} chunks above {self.min_score}")
        return chunks
