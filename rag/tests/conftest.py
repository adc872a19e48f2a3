"""
Test configuration and fixtures for the portfolio RAG service.

Fakes from rag.tests.helpers stand in for Redis, the embedding backend, the
vector index and the completion API, so the suite runs without any external
service.
"""

import pytest

from rag.chat_service import ChatService
from rag.config import RAGConfig
from rag.prompt_builder import PromptProfile
from rag.query_expander import QueryExpander
from rag.rate_limiter import RateLimiter
from rag.response_cache import ResponseCache
from rag.retriever import VectorRetriever
from rag.tests.helpers import FakeClock, FakeEmbedder, FakeIndex, FakeLLM, InMemoryStore
from rag.vector_index import IndexMatch


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> InMemoryStore:
    return InMemoryStore(clock)


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_index() -> FakeIndex:
    index = FakeIndex()
    index.matches = [
        IndexMatch(id="experience_novigo_solutions_0", score=0.82,
                   metadata={"text": "Senior Software Developer at Novigo Solutions.",
                             "source": "experience_novigo_solutions", "type": "work_experience"}),
        IndexMatch(id="skills_data_0", score=0.40,
                   metadata={"text": "Python, SQL", "source": "skills_data", "type": "skills"}),
    ]
    return index


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def profile() -> PromptProfile:
    return PromptProfile(
        owner_name="Ada Example",
        headline="a data engineer based in Berlin",
        key_facts=("Work: Data Engineer at Example GmbH", "Skills: Python, SQL"),
        contact="ada@example.com",
        fallback_contact="ada@example.com",
        guidelines=("Answer from the context", "Keep answers concise"),
    )


@pytest.fixture
def rag_config() -> RAGConfig:
    """RAG configuration for testing."""
    return RAGConfig(llm_api_key="test_key")


@pytest.fixture
def chat_service(store, fake_embedder, fake_index, fake_llm, profile) -> ChatService:
    return ChatService(
        rate_limiter=RateLimiter(store, limit=10, window_seconds=60),
        cache=ResponseCache(store, ttl_seconds=86400),
        expander=QueryExpander(fake_llm),
        embedder=fake_embedder,
        retriever=VectorRetriever(fake_index),
        llm=fake_llm,
        profile=profile,
    )


# Configure pytest
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: End-to-end tests through the FastAPI app (fakes for externals)")
