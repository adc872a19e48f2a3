"""
Token-stream relay.

A background task reads the upstream completion body, decodes it with
SSEStreamDecoder and writes re-framed events into an SSEChannel that the HTTP
response iterates. The channel always ends with exactly one ``[DONE]`` event and
is always closed, whatever happens upstream.

Reference:
    - rag/chat_service.py - spawns one relay per streamed answer
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Coroutine, Optional, Set

import httpx

from rag.errors import StreamInterrupted
from rag.sse import DONE, SSEStreamDecoder, format_content_event, format_done_event, format_error_event

logger = logging.getLogger(__name__)

STREAM_INTERRUPTED_MESSAGE = "Stream interrupted"

_CLOSED = object()


def spawn_background(coro: Coroutine, tasks: Set[asyncio.Task], name: Optional[str] = None) -> asyncio.Task:
    """Start a detached task and hold a reference to it until it finishes."""
    task = asyncio.create_task(coro, name=name)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task


class SSEChannel:
    """
    Single-producer, single-consumer pipe of encoded SSE events.

    The queue is unbounded so the producer never waits on a slow client. If
    the consumer stops early (client disconnect), the attached producer task
    is cancelled.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.producer: Optional[asyncio.Task] = None

    def attach(self, producer: asyncio.Task):
        self.producer = producer

    async def send(self, event: bytes):
        if self.closed:
            return
        await self._queue.put(event)

    async def close(self):
        if self.closed:
            return
        self.closed = True
        await self._queue.put(_CLOSED)

    async def events(self) -> AsyncIterator[bytes]:
        drained = False
        try:
            while True:
                item = await self._queue.get()
                if item is _CLOSED:
                    drained = True
                    break
                yield item
        finally:
            if not drained and self.producer is not None and not self.producer.done():
                logger.info("Client went away, cancelling stream relay")
                self.producer.cancel()


async def _read_upstream(upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for raw in upstream.aiter_bytes():
            yield raw
    except httpx.HTTPError as e:
        raise StreamInterrupted(f"Upstream stream failed: {e}") from e


class GenerationStreamer:
    """Relays one upstream completion into one channel."""

    def __init__(self, background_tasks: Optional[Set[asyncio.Task]] = None):
        self.background_tasks = background_tasks if background_tasks is not None else set()

    async def relay(
        self,
        upstream: httpx.Response,
        channel: SSEChannel,
        on_complete: Optional[Callable[[str], Awaitable[None]]] = None,
    ) -> str:
        """
        Forward every content delta as soon as it is decoded.

        Returns:
            The accumulated response text ("" if nothing was generated)
        """
        decoder = SSEStreamDecoder()
        parts = []
        failed = False

        try:
            async for raw in _read_upstream(upstream):
                for item in decoder.feed(raw):
                    if item is DONE:
                        break
                    parts.append(item)
                    await channel.send(format_content_event(item))
                if decoder.finished:
                    break
            else:
                for item in decoder.flush():
                    if item is not DONE:
                        parts.append(item)
                        await channel.send(format_content_event(item))
        except asyncio.CancelledError:
            failed = True
            raise
        except StreamInterrupted as e:
            failed = True
            logger.warning(f"Generation stream interrupted: {e}")
            await channel.send(format_error_event(STREAM_INTERRUPTED_MESSAGE))
        except Exception as e:
            failed = True
            logger.error(f"Generation relay error: {e}", exc_info=True)
            await channel.send(format_error_event(STREAM_INTERRUPTED_MESSAGE))
        finally:
            await channel.send(format_done_event())
            await channel.close()
            try:
                await upstream.aclose()
            except Exception as e:
                logger.warning(f"Closing upstream stream failed: {e}")

        text = "".join(parts)
        logger.info(f"Stream finished: {len(parts)} deltas, {len(text)} chars")

        if text and not failed and on_complete is not None:
            spawn_background(self._run_callback(on_complete, text), self.background_tasks, name="cache-write")
        return text

    @staticmethod
    async def _run_callback(on_complete: Callable[[str], Awaitable[None]], text: str):
        try:
            await on_complete(text)
        except Exception as e:
            logger.warning(f"Post-stream callback failed: {e}")
