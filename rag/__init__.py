"""
Portfolio RAG Service

Answers questions about one person's résumé and projects: vector retrieval over
a pre-built index plus streamed generation from an OpenAI-compatible LLM API.

Components:
    - ChatService: rate limit, cache, HyDE, embed, retrieve, prompt, stream
    - RAGConfig / IngestionConfig: configuration loaded from environment variables
    - IngestionPipeline: chunk, contextualize, embed and upsert source documents
    - FastAPI app: POST /api/chat (SSE) and GET /health

Architecture:
    Client -> FastAPI -> Redis (rate limit, cache) -> HyDE -> Embeddings -> Vector index -> LLM stream -> SSE

Entry points:
    - uvicorn rag.app:app
    - python -m rag.index_builder [--force] [--clear]
"""

from rag.config import RAGConfig, IngestionConfig
from rag.chat_service import ChatService, ChatReply
from rag.index_builder import IngestionPipeline, BatchIndexer

__all__ = [
    "RAGConfig",
    "IngestionConfig",
    "ChatService",
    "ChatReply",
    "IngestionPipeline",
    "BatchIndexer",
]

__version__ = "1.0.0"
