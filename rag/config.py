"""
RAG Service Configuration

Settings for the portfolio chat service (online path) and the ingestion
pipeline (offline path). Both read from environment variables; the embedding
settings are shared so that ingestion and querying produce vectors of the same
dimension.

Reference:
    - rag/app.py - Service entry point (loads RAGConfig at startup)
    - rag/index_builder.py - Ingestion CLI (loads IngestionConfig)
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from rag.errors import IngestionConfigError

logger = logging.getLogger(__name__)

# Whitelisted response languages
SUPPORTED_LANGUAGES = {
    "en": "English",
    "de": "German",
}
DEFAULT_LANGUAGE = "en"

EMBEDDING_PROVIDERS = ("ollama", "cloudflare", "huggingface")
VECTOR_INDEX_BACKENDS = ("pinecone", "faiss")

DEFAULT_PROFILE_PATH = os.path.join(os.path.dirname(__file__), "data", "profile.json")


def env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def env_list(name: str, default: str) -> List[str]:
    return [v.strip() for v in os.getenv(name, default).split(",") if v.strip()]


def cors_origins_from_env() -> List[str]:
    """Browser origins allowed to call the API (``RAG_CORS_ORIGINS``, comma-separated)."""
    return env_list("RAG_CORS_ORIGINS", "http://localhost:3000")


@dataclass
class EmbeddingConfig:
    """
    Embedding backend settings, shared by the chat service and ingestion.

    Attributes:
        provider: ollama | cloudflare | huggingface
        model: Model name for the selected provider
        dimension: Expected vector length (must match the index)
        max_input_chars: Input is truncated to this many characters
        timeout: Request timeout in seconds
    """

    provider: str = "ollama"
    model: str = "nomic-embed-text"
    dimension: int = 768
    max_input_chars: int = 8000
    timeout: float = 10.0
    ollama_base_url: str = "http://localhost:11434"
    cloudflare_account_id: Optional[str] = None
    cloudflare_api_token: Optional[str] = None

    def __post_init__(self):
        if self.provider not in EMBEDDING_PROVIDERS:
            raise ValueError(
                f"embedding provider must be one of {EMBEDDING_PROVIDERS}, got {self.provider!r}"
            )
        if self.dimension <= 0:
            raise ValueError(f"embedding dimension must be positive, got {self.dimension}")
        if self.max_input_chars <= 0:
            raise ValueError(f"max_input_chars must be positive, got {self.max_input_chars}")

    @staticmethod
    def from_env() -> "EmbeddingConfig":
        provider = os.getenv("RAG_EMBEDDING_PROVIDER", "ollama")
        default_model = {
            "ollama": "nomic-embed-text",
            "cloudflare": "@cf/baai/bge-base-en-v1.5",
            "huggingface": "sentence-transformers/all-mpnet-base-v2",
        }.get(provider, "nomic-embed-text")
        return EmbeddingConfig(
            provider=provider,
            model=os.getenv("RAG_EMBEDDING_MODEL", default_model),
            dimension=int(os.getenv("RAG_EMBEDDING_DIMENSION", "768")),
            max_input_chars=int(os.getenv("RAG_EMBEDDING_MAX_CHARS", "8000")),
            timeout=float(os.getenv("RAG_EMBEDDING_TIMEOUT", "10.0")),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            cloudflare_account_id=os.getenv("CLOUDFLARE_ACCOUNT_ID") or None,
            cloudflare_api_token=os.getenv("CLOUDFLARE_API_TOKEN") or None,
        )


@dataclass
class VectorIndexConfig:
    """Vector index settings (Pinecone data plane or a local FAISS index)."""

    backend: str = "pinecone"
    pinecone_api_key: Optional[str] = None
    pinecone_host: Optional[str] = None
    faiss_path: str = "./index"
    timeout: float = 5.0

    def __post_init__(self):
        if self.backend not in VECTOR_INDEX_BACKENDS:
            raise ValueError(
                f"vector index backend must be one of {VECTOR_INDEX_BACKENDS}, got {self.backend!r}"
            )
        if self.pinecone_host and not self.pinecone_host.startswith("http"):
            self.pinecone_host = f"https://{self.pinecone_host}"

    def missing_settings(self) -> List[str]:
        """Names of required settings that are not configured."""
        if self.backend != "pinecone":
            return []
        missing = []
        if not self.pinecone_api_key:
            missing.append("PINECONE_API_KEY")
        if not self.pinecone_host:
            missing.append("PINECONE_HOST")
        return missing

    @staticmethod
    def from_env() -> "VectorIndexConfig":
        return VectorIndexConfig(
            backend=os.getenv("RAG_VECTOR_INDEX", "pinecone"),
            pinecone_api_key=os.getenv("PINECONE_API_KEY") or None,
            pinecone_host=os.getenv("PINECONE_HOST") or None,
            faiss_path=os.getenv("RAG_FAISS_PATH", "./index"),
            timeout=float(os.getenv("RAG_VECTOR_TIMEOUT", "5.0")),
        )


@dataclass
class RAGConfig:
    """
    Configuration for the chat service.

    Attributes:
        llm_api_key: API key for the OpenAI-compatible completion endpoint (Groq)
        llm_base_url: Completion endpoint base URL
        llm_model: Model used for the streamed answer
        hyde_model: Model used for hypothetical-answer query expansion
        enable_hyde: Expand queries before embedding
        top_k: Number of nearest chunks requested from the index
        min_score: Minimum cosine similarity for a chunk to be used
        rate_limit_requests: Requests allowed per identifier per window
        rate_limit_window: Sliding window length in seconds
        cache_ttl: Response cache TTL in seconds
        profile_path: JSON file with the assistant persona and key facts
    """

    llm_api_key: Optional[str] = None
    llm_base_url: str = "https://api.groq.com/openai/v1"
    llm_model: str = "llama-3.1-8b-instant"
    llm_max_tokens: int = 512
    llm_temperature: float = 0.3
    llm_top_p: float = 0.9
    llm_connect_timeout: float = 10.0
    llm_read_timeout: float = 30.0

    hyde_model: str = "llama-3.1-8b-instant"
    enable_hyde: bool = True
    hyde_max_tokens: int = 150
    hyde_timeout: float = 8.0

    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_index: VectorIndexConfig = field(default_factory=VectorIndexConfig)

    top_k: int = 5
    min_score: float = 0.55

    max_message_chars: int = 500
    max_history_messages: int = 6
    max_history_chars: int = 2000

    rate_limit_requests: int = 10
    rate_limit_window: int = 60
    rate_limit_fail_open_remaining: int = 99
    cache_ttl: int = 86400

    profile_path: str = DEFAULT_PROFILE_PATH

    def __post_init__(self):
        """Validate configuration after initialization."""

        if not 0.0 <= self.min_score <= 1.0:
            raise ValueError(f"min_score must be between 0.0 and 1.0, got {self.min_score}")

        if self.top_k <= 0:
            raise ValueError(f"top_k must be positive, got {self.top_k}")

        if self.rate_limit_requests <= 0 or self.rate_limit_window <= 0:
            raise ValueError(
                f"rate limit must be positive, got {self.rate_limit_requests}/{self.rate_limit_window}s"
            )

        if self.cache_ttl <= 0:
            raise ValueError(f"cache_ttl must be positive, got {self.cache_ttl}")

        if not self.llm_api_key:
            logger.warning("GROQ_API_KEY not set. Response generation will fail.")

    @staticmethod
    def from_env() -> "RAGConfig":
        """
        Load configuration from environment variables.

        Environment Variables:
            GROQ_API_KEY: Completion API key
            RAG_LLM_BASE_URL / RAG_LLM_MODEL / RAG_HYDE_MODEL: Completion endpoint and models
            RAG_ENABLE_HYDE: Enable query expansion (default: true)
            RAG_TOP_K / RAG_MIN_SCORE: Retrieval settings
            RAG_RATE_LIMIT_REQUESTS / RAG_RATE_LIMIT_WINDOW: Per-IP quota
            RAG_CACHE_TTL: Response cache TTL
            RAG_PROFILE_PATH: Persona/facts JSON file
            (plus EmbeddingConfig and VectorIndexConfig variables)
        """
        return RAGConfig(
            llm_api_key=os.getenv("GROQ_API_KEY", "").strip() or None,
            llm_base_url=os.getenv("RAG_LLM_BASE_URL", "https://api.groq.com/openai/v1"),
            llm_model=os.getenv("RAG_LLM_MODEL", "llama-3.1-8b-instant"),
            llm_max_tokens=int(os.getenv("RAG_LLM_MAX_TOKENS", "512")),
            hyde_model=os.getenv("RAG_HYDE_MODEL", os.getenv("RAG_LLM_MODEL", "llama-3.1-8b-instant")),
            enable_hyde=env_bool("RAG_ENABLE_HYDE", "true"),
            embedding=EmbeddingConfig.from_env(),
            vector_index=VectorIndexConfig.from_env(),
            top_k=int(os.getenv("RAG_TOP_K", "5")),
            min_score=float(os.getenv("RAG_MIN_SCORE", "0.55")),
            rate_limit_requests=int(os.getenv("RAG_RATE_LIMIT_REQUESTS", "10")),
            rate_limit_window=int(os.getenv("RAG_RATE_LIMIT_WINDOW", "60")),
            cache_ttl=int(os.getenv("RAG_CACHE_TTL", "86400")),
            profile_path=os.getenv("RAG_PROFILE_PATH", DEFAULT_PROFILE_PATH),
        )


@dataclass
class IngestionConfig:
    """
    Configuration for the offline ingestion pipeline.

    Attributes:
        data_dir: Directory holding PDFs and the experience/projects/skills JSON files
        skip_context: Skip LLM contextual augmentation (faster runs)
        context_model: Local Ollama model that writes the situating context
        batch_size: Records per upsert call
        github_owner / github_repos: READMEs fetched as extra sources (optional)
    """

    data_dir: str = "./data"
    skip_context: bool = False
    context_model: str = "llama3.2:3b"
    context_timeout: float = 30.0
    context_doc_chars: int = 8000
    ollama_base_url: str = "http://localhost:11434"
    batch_size: int = 100
    chunk_max_chars: int = 3200
    chunk_overlap: int = 600
    github_owner: Optional[str] = None
    github_repos: List[str] = field(default_factory=list)
    github_token: Optional[str] = None
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    vector_index: VectorIndexConfig = field(default_factory=VectorIndexConfig)

    def __post_init__(self):
        if self.chunk_overlap >= self.chunk_max_chars // 2:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < half of chunk_max_chars ({self.chunk_max_chars})"
            )
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")

    def validate(self) -> None:
        """
        Check required settings before any ingestion work starts.

        Raises:
            IngestionConfigError: If the index (or embedding backend) is not configured
        """
        missing = self.vector_index.missing_settings()
        if self.embedding.provider == "cloudflare":
            if not self.embedding.cloudflare_account_id:
                missing.append("CLOUDFLARE_ACCOUNT_ID")
            if not self.embedding.cloudflare_api_token:
                missing.append("CLOUDFLARE_API_TOKEN")
        if missing:
            raise IngestionConfigError(f"{', '.join(missing)} not set. Add it to .env")

    @staticmethod
    def from_env() -> "IngestionConfig":
        embedding = EmbeddingConfig.from_env()
        # Local embedding models are slow on first load; ingestion can wait longer
        if "RAG_EMBEDDING_TIMEOUT" not in os.environ:
            embedding.timeout = 30.0
        return IngestionConfig(
            data_dir=os.getenv("RAG_DATA_DIR", "./data"),
            skip_context=env_bool("SKIP_CONTEXT", "false"),
            context_model=os.getenv("CONTEXT_MODEL", "llama3.2:3b"),
            context_timeout=float(os.getenv("CONTEXT_TIMEOUT", "30.0")),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
            batch_size=int(os.getenv("RAG_UPSERT_BATCH_SIZE", "100")),
            github_owner=os.getenv("GITHUB_OWNER", "").strip() or None,
            github_repos=env_list("GITHUB_REPOS", ""),
            github_token=os.getenv("GITHUB_TOKEN", "").strip() or None,
            embedding=embedding,
            vector_index=VectorIndexConfig.from_env(),
        )
