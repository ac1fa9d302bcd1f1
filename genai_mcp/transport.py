"""
Per-request HTTP transport.

A session answers either with one materialized JSON document (Immediate) or
with a live event stream (Streaming). The transport owns the outbound event
queue of a streaming session and watches the connection for a client
disconnect.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0
KEEPALIVE_COMMENT = b": keep-alive\n\n"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

Receive = Callable[[], Awaitable[Dict[str, Any]]]

_END = object()


@dataclass(frozen=True)
class Immediate:
    """A single JSON document; body None means an empty 202-style reply."""
    body: Optional[Any]
    status_code: int = 200
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Streaming:
    """A server-sent event stream."""
    channel: AsyncIterator[bytes]
    status_code: int = 200
    headers: Dict[str, str] = field(default_factory=lambda: dict(STREAM_HEADERS))

    def with_channel(self, channel: AsyncIterator[bytes]) -> "Streaming":
        return replace(self, channel=channel)


SessionOutput = Union[Immediate, Streaming]


def encode_event(message: Dict[str, Any]) -> bytes:
    """One JSON-RPC message as an SSE event."""
    return f"event: message\ndata: {json.dumps(message, ensure_ascii=False)}\n\n".encode("utf-8")


class StreamableHTTPTransport:
    """
    Outbound side of one protocol session.

    `receive` is the ASGI receive callable of the request, used only to
    observe http.disconnect once the body has been read. `shutdown` is the
    process-wide draining flag; open streams end when it is set.
    """

    def __init__(
        self,
        receive: Optional[Receive] = None,
        shutdown: Optional[asyncio.Event] = None,
        keepalive_interval: float = KEEPALIVE_SECONDS,
    ):
        self._receive = receive
        self._shutdown = shutdown
        self._keepalive_interval = keepalive_interval
        self._queue: asyncio.Queue = asyncio.Queue()
        self._disconnected = asyncio.Event()
        self._watcher: Optional[asyncio.Task] = None
        self.closed = False

    @property
    def disconnected(self) -> bool:
        return self._disconnected.is_set()

    def start(self) -> None:
        """Begin watching for a client disconnect."""
        if self._watcher is None and self._receive is not None and not self.closed:
            self._watcher = asyncio.ensure_future(self._watch_disconnect())

    async def _watch_disconnect(self) -> None:
        while True:
            message = await self._receive()
            if message.get("type") == "http.disconnect":
                logger.info("🔌 Client disconnected")
                self._disconnected.set()
                return

    async def wait_disconnected(self) -> None:
        await self._disconnected.wait()

    async def send(self, message: Dict[str, Any]) -> None:
        if self.closed:
            return
        await self._queue.put(message)

    async def end(self) -> None:
        """No more messages will be sent; the stream finishes after draining."""
        await self._queue.put(_END)

    async def events(self) -> AsyncIterator[bytes]:
        """
        Encoded events until the session ends its output, the client
        disconnects or the process starts shutting down.
        """
        self.start()
        disconnect = asyncio.ensure_future(self._disconnected.wait())
        shutdown = asyncio.ensure_future(self._shutdown.wait()) if self._shutdown is not None else None
        getter: Optional[asyncio.Future] = None

        try:
            while True:
                if getter is None:
                    getter = asyncio.ensure_future(self._queue.get())

                waiters = {getter, disconnect}
                if shutdown is not None:
                    waiters.add(shutdown)

                done, _ = await asyncio.wait(
                    waiters,
                    timeout=self._keepalive_interval,
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if getter in done:
                    message = getter.result()
                    getter = None
                    if message is _END:
                        return
                    yield encode_event(message)
                    continue

                if disconnect in done:
                    return
                if shutdown is not None and shutdown in done:
                    logger.info("Closing event stream for shutdown")
                    return

                yield KEEPALIVE_COMMENT
        finally:
            for pending in (getter, disconnect, shutdown):
                if pending is not None and not pending.done():
                    pending.cancel()

    async def close(self) -> None:
        """Stop watching the connection and release any waiting stream. Idempotent."""
        if self.closed:
            return
        self.closed = True
        if self._watcher is not None and not self._watcher.done():
            self._watcher.cancel()
        self._queue.put_nowait(_END)
