"""Pass-through byte streams that observe request and response bodies."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from typing import Callable

import httpx

logger = logging.getLogger(__name__)

RequestStream = httpx.SyncByteStream | httpx.AsyncByteStream


class RequestBodyObserver(httpx.SyncByteStream, httpx.AsyncByteStream):
    """Wraps ``request.stream`` and keeps a copy of every chunk the transport writes.

    Chunks are yielded unchanged. When the stream is exhausted ``on_complete``
    receives the whole body, or None when nothing was written. Iterating again
    (a retried send) starts a fresh capture.
    """

    def __init__(self, stream: RequestStream, on_complete: Callable[[bytes | None], None]):
        self.stream = stream
        self._on_complete = on_complete
        self._chunks: list[bytes] = []

    @classmethod
    def wrap(
        cls, stream: RequestStream, on_complete: Callable[[bytes | None], None]
    ) -> RequestBodyObserver:
        # Redirects that keep the method reuse the previous hop's stream.
        while isinstance(stream, RequestBodyObserver):
            stream = stream.stream
        return cls(stream, on_complete)

    def __iter__(self) -> Iterator[bytes]:
        self._chunks = []
        for chunk in self.stream:  # type: ignore[union-attr]
            self._chunks.append(chunk)
            yield chunk
        self._complete()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        self._chunks = []
        async for chunk in self.stream:  # type: ignore[union-attr]
            self._chunks.append(chunk)
            yield chunk
        self._complete()

    def close(self) -> None:
        close = getattr(self.stream, 'close', None)
        if close is not None:
            close()

    async def aclose(self) -> None:
        aclose = getattr(self.stream, 'aclose', None)
        if aclose is not None:
            await aclose()

    def _complete(self) -> None:
        body = b''.join(self._chunks)
        self._chunks = []
        self._on_complete(body or None)


class ResponseBodyObserver(httpx.AsyncByteStream):
    """Wraps a response stream to count raw (still encoded) bytes as they arrive."""

    def __init__(
        self,
        stream: httpx.AsyncByteStream,
        on_data: Callable[[int], None],
        on_complete: Callable[[], object],
    ):
        self.stream = stream
        self._on_data = on_data
        self._on_complete = on_complete

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self.stream:
            self._on_data(len(chunk))
            yield chunk
        self._on_complete()

    async def aclose(self) -> None:
        await self.stream.aclose()
