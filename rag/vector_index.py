"""
Vector index backends.

    - PineconeIndex: Pinecone data-plane REST API over httpx (production)
    - LocalFaissIndex: on-disk FAISS index for local development, requires the
      ``local`` extra

Both expose the same four operations (query, upsert, delete_all,
describe_stats). Record ids are deterministic (``<source_id>_<chunk_index>``),
so upserting the same document again overwrites its records.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx
import numpy as np

from rag.config import VectorIndexConfig
from rag.errors import VectorIndexError

logger = logging.getLogger(__name__)

PINECONE_API_VERSION = "2024-07"


@dataclass
class VectorRecord:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "values": self.values, "metadata": self.metadata}


@dataclass
class IndexMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class IndexStats:
    total_records: int
    dimension: Optional[int] = None


class PineconeIndex:
    """Pinecone index addressed by its data-plane host."""

    def __init__(self, api_key: str, host: str, timeout: float = 5.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.host = host.rstrip("/")
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=5.0))
        self.headers = {
            "Api-Key": api_key,
            "Content-Type": "application/json",
            "X-Pinecone-API-Version": PINECONE_API_VERSION,
        }

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.client.post(f"{self.host}{path}", headers=self.headers, json=payload)
        except httpx.HTTPError as e:
            raise VectorIndexError(f"Pinecone {path} unreachable: {e}") from e
        if not response.is_success:
            raise VectorIndexError(f"Pinecone {path} error {response.status_code}: {response.text[:200]}")
        try:
            return response.json() if response.content else {}
        except ValueError as e:
            raise VectorIndexError(f"Pinecone {path} returned invalid JSON: {e}") from e

    async def query(self, vector: Sequence[float], top_k: int) -> List[IndexMatch]:
        data = await self._post("/query", {
            "vector": list(vector),
            "topK": top_k,
            "includeMetadata": True,
            "includeValues": False,
        })
        return [
            IndexMatch(id=m.get("id", ""), score=float(m.get("score", 0.0)), metadata=m.get("metadata") or {})
            for m in data.get("matches", [])
        ]

    async def upsert(self, records: Sequence[VectorRecord]) -> int:
        data = await self._post("/vectors/upsert", {"vectors": [r.to_dict() for r in records]})
        return int(data.get("upsertedCount", len(records)))

    async def delete_all(self) -> None:
        await self._post("/vectors/delete", {"deleteAll": True})

    async def describe_stats(self) -> IndexStats:
        data = await self._post("/describe_index_stats", {})
        return IndexStats(
            total_records=int(data.get("totalVectorCount") or data.get("totalRecordCount") or 0),
            dimension=data.get("dimension"),
        )

    async def aclose(self):
        await self.client.aclose()


class LocalFaissIndex:
    """
    Flat inner-product FAISS index over L2-normalized vectors (cosine).

    Files under ``path``:
        index.faiss   vectors, row i belongs to ids[i]
        records.json  {"ids": [...], "metadata": {id: {...}}}
    """

    def __init__(self, path: str, dimension: int):
        import faiss

        self._faiss = faiss
        self.path = path
        self.dimension = dimension
        self.ids: List[str] = []
        self.metadata: Dict[str, Dict[str, Any]] = {}
        self.index = faiss.IndexFlatIP(dimension)
        self._load()

    @property
    def _index_file(self) -> str:
        return os.path.join(self.path, "index.faiss")

    @property
    def _records_file(self) -> str:
        return os.path.join(self.path, "records.json")

    def _load(self):
        if not (os.path.exists(self._index_file) and os.path.exists(self._records_file)):
            logger.info(f"No FAISS index at {self.path}, starting empty")
            return
        self.index = self._faiss.read_index(self._index_file)
        if self.index.d != self.dimension:
            logger.warning(
                f"FAISS index at {self.path} has {self.index.d} dims, configured for {self.dimension}"
            )
        with open(self._records_file, "r", encoding="utf-8") as f:
            records = json.load(f)
        self.ids = records.get("ids", [])
        self.metadata = records.get("metadata", {})
        logger.info(f"FAISS index loaded: {self.index.ntotal} vectors from {self.path}")

    def _save(self):
        os.makedirs(self.path, exist_ok=True)
        self._faiss.write_index(self.index, self._index_file)
        with open(self._records_file, "w", encoding="utf-8") as f:
            json.dump({"ids": self.ids, "metadata": self.metadata}, f, ensure_ascii=False)

    def _normalize(self, vectors: np.ndarray) -> np.ndarray:
        vectors = np.asarray(vectors, dtype="float32")
        if vectors.ndim == 1:
            vectors = vectors.reshape(1, -1)
        if vectors.shape[1] != self.index.d:
            raise VectorIndexError(f"Vector has {vectors.shape[1]} dims, index expects {self.index.d}")
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        return vectors / norms

    async def query(self, vector: Sequence[float], top_k: int) -> List[IndexMatch]:
        if self.index.ntotal == 0:
            return []
        query = self._normalize(np.asarray(vector))
        try:
            scores, rows = self.index.search(query, min(top_k, self.index.ntotal))
        except (AssertionError, RuntimeError) as e:
            raise VectorIndexError(f"FAISS search failed: {e}") from e
        matches = []
        for score, row in zip(scores[0], rows[0]):
            if row < 0:
                continue
            record_id = self.ids[row]
            matches.append(IndexMatch(id=record_id, score=float(score), metadata=self.metadata.get(record_id, {})))
        return matches

    async def upsert(self, records: Sequence[VectorRecord]) -> int:
        if not records:
            return 0
        existing = self.index.reconstruct_n(0, self.index.ntotal) if self.index.ntotal else np.zeros((0, self.dimension), dtype="float32")
        rows = {record_id: existing[i] for i, record_id in enumerate(self.ids)}
        for record in records:
            rows[record.id] = self._normalize(np.asarray(record.values))[0]

        ids = list(rows.keys())
        index = self._faiss.IndexFlatIP(self.dimension)
        try:
            index.add(np.vstack([rows[i] for i in ids]).astype("float32"))
        except (AssertionError, RuntimeError, ValueError) as e:
            raise VectorIndexError(f"FAISS upsert failed: {e}") from e
        self.ids = ids
        self.index = index
        for record in records:
            self.metadata[record.id] = record.metadata
        self._save()
        return len(records)

    async def delete_all(self) -> None:
        self.ids = []
        self.metadata = {}
        self.index = self._faiss.IndexFlatIP(self.dimension)
        self._save()

    async def describe_stats(self) -> IndexStats:
        return IndexStats(total_records=int(self.index.ntotal), dimension=int(self.index.d))

    async def aclose(self):
        pass


def build_vector_index(config: VectorIndexConfig, dimension: int,
                       http_client: Optional[httpx.AsyncClient] = None):
    """Create the index backend selected by ``config.backend``."""
    if config.backend == "faiss":
        return LocalFaissIndex(config.faiss_path, dimension)

    missing = config.missing_settings()
    if missing:
        raise VectorIndexError(f"Pinecone not configured: {', '.join(missing)} not set")
    return PineconeIndex(config.pinecone_api_key, config.pinecone_host, config.timeout, http_client)
