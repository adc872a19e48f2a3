"""
In-memory fakes for Redis, the embedding backend, the vector index and the
completion API, plus SSE helpers shared by the test modules.
"""

import json
from typing import Dict, List, Optional, Sequence

import httpx

from rag.errors import EmbeddingError, UpstreamGenerationError, VectorIndexError
from rag.vector_index import IndexMatch, IndexStats


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class InMemoryStore:
    """KeyValueStore with the same sliding-window semantics as the Redis script."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.values: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.windows: Dict[str, List[float]] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("store down")

    async def get(self, key: str) -> Optional[str]:
        self._check()
        return self.values.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check()
        self.values[key] = value
        self.ttls[key] = ttl_seconds

    async def sliding_window_increment(self, key: str, limit: int, window_seconds: int):
        self._check()
        now = self.clock()
        hits = [t for t in self.windows.get(key, []) if t > now - window_seconds]
        allowed = len(hits) < limit
        if allowed:
            hits.append(now)
        self.windows[key] = hits
        return allowed, len(hits)


class FakeEmbedder:
    def __init__(self, dimension: int = 4):
        self.dimension = dimension
        self.fail = False
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding backend down")
        return [0.5] * self.dimension

    async def aclose(self):
        pass


class FakeIndex:
    def __init__(self, dimension: int = 4):
        self.dimension = dimension
        self.matches: List[IndexMatch] = []
        self.records: Dict[str, object] = {}
        self.upsert_calls: List[int] = []
        self.delete_calls = 0
        self.fail = False

    async def query(self, vector: Sequence[float], top_k: int) -> List[IndexMatch]:
        if self.fail:
            raise VectorIndexError("index down")
        return self.matches[:top_k]

    async def upsert(self, records) -> int:
        self.upsert_calls.append(len(records))
        for record in records:
            self.records[record.id] = record
        return len(records)

    async def delete_all(self):
        self.delete_calls += 1
        self.records.clear()

    async def describe_stats(self) -> IndexStats:
        return IndexStats(total_records=len(self.records), dimension=self.dimension)

    async def aclose(self):
        pass


def sse_payload(deltas: Sequence[str], done: bool = True) -> bytes:
    lines = [
        f"data: {json.dumps({'choices': [{'delta': {'content': delta}}]}, ensure_ascii=False)}\n\n"
        for delta in deltas
    ]
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def streaming_response(chunks: Sequence[bytes], error: Optional[Exception] = None) -> httpx.Response:
    async def body():
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error

    return httpx.Response(200, content=body())


class FakeLLM:
    """ChatCompletionClient stand-in that streams canned deltas."""

    def __init__(self, deltas: Sequence[str] = ("Nishan ", "builds ", "data apps.")):
        self.deltas = list(deltas)
        self.hypothesis = "I built dashboards in Power BI and Python."
        self.fail_open = False
        self.fail_complete = False
        self.stream_error: Optional[Exception] = None
        self.stream_calls: List[list] = []
        self.complete_calls: List[list] = []
        self.responses: List[httpx.Response] = []

    async def open_stream(self, messages) -> httpx.Response:
        self.stream_calls.append(messages)
        if self.fail_open:
            raise UpstreamGenerationError("Completion API error 500")
        response = streaming_response([sse_payload(self.deltas, done=self.stream_error is None)], self.stream_error)
        self.responses.append(response)
        return response

    async def complete(self, messages, **kwargs) -> str:
        self.complete_calls.append(messages)
        if self.fail_complete:
            raise UpstreamGenerationError("Completion API unreachable")
        return self.hypothesis

    async def aclose(self):
        pass


def parse_sse(body: str) -> List[object]:
    """Decode this service's outgoing events into payloads ("[DONE]" stays a string)."""
    events = []
    for block in body.split("\n\n"):
        block = block.strip()
        if not block.startswith("data:"):
            continue
        data = block[len("data:"):].strip()
        events.append(data if data == "[DONE]" else json.loads(data))
    return events
