"""
Server-Sent Events framing.

SSEStreamDecoder turns the raw bytes of an OpenAI-compatible streaming
completion into content deltas. It is a pure state machine (bytes in, deltas
out) with no I/O, so the same bytes produce the same deltas no matter how the
transport splits them.

Outgoing events use this service's own envelope:

    data: {"content": "<delta>"}\\n\\n
    data: {"error": "<message>"}\\n\\n
    data: [DONE]\\n\\n
"""

import codecs
import json
from typing import List, Optional, Union

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class _Done:
    """Sentinel for the end-of-stream marker."""

    def __repr__(self) -> str:
        return "DONE"


DONE = _Done()

StreamItem = Union[str, _Done]


def extract_delta(line: str) -> Optional[StreamItem]:
    """
    Parse one upstream SSE line.

    Returns:
        DONE for the termination marker, the content delta for a content line,
        or None for anything else (comments, keep-alives, role-only deltas,
        malformed JSON)
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None

    data = line[len(DATA_PREFIX):].strip()
    if data == DONE_MARKER:
        return DONE

    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        return None

    try:
        content = parsed["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None

    if not isinstance(content, str) or content == "":
        return None
    return content


class SSEStreamDecoder:
    """
    Incremental line-buffered decoder.

    Bytes are decoded with an incremental UTF-8 decoder (a multi-byte character
    may be split across reads) and the trailing incomplete line is held back
    until the next feed. Once DONE has been emitted the decoder ignores input.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.finished = False

    def feed(self, data: bytes) -> List[StreamItem]:
        if self.finished:
            return []
        self._buffer += self._decoder.decode(data)
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._consume(lines)

    def flush(self) -> List[StreamItem]:
        """Process whatever is left once the upstream body has ended."""
        if self.finished:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        return self._consume([remainder]) if remainder.strip() else []

    def _consume(self, lines: List[str]) -> List[StreamItem]:
        items: List[StreamItem] = []
        for line in lines:
            item = extract_delta(line)
            if item is None:
                continue
            items.append(item)
            if item is DONE:
                self.finished = True
                break
        return items


def format_content_event(content: str) -> bytes:
    return f"data: {json.dumps({'content': content})}\n\n".encode("utf-8")


def format_error_event(message: str) -> bytes:
    return f"data: {json.dumps({'error': message})}\n\n".encode("utf-8")


def format_done_event() -> bytes:
    return f"data: {DONE_MARKER}\n\n".encode("utf-8")
