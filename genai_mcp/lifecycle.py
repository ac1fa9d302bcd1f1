"""
Lifecycle Supervisor

Builds a fresh registry, transport and session for every request, runs the
exchange and tears all three down exactly once, whichever way the request
ends. Also owns process shutdown: draining open streams on a termination
signal and force-exiting when the grace window runs out.
"""

import asyncio
import logging
import os
import signal
import threading
from contextlib import aclosing
from enum import Enum
from types import FrameType
from typing import AsyncIterator, Awaitable, Callable, Optional

import anyio
import uvicorn
from fastapi import Request
from fastapi.responses import Response
from starlette.background import BackgroundTask

from .config import SHUTDOWN_GRACE_SECONDS, Settings
from .negotiation import InboundRequest, materialize, to_response
from .protocol import internal_error_envelope
from .registry import ToolRegistry, create_registry
from .session import ProtocolSession, SessionState
from .transport import Immediate, SessionOutput, StreamableHTTPTransport, Streaming

logger = logging.getLogger(__name__)

# nginx's "client closed request"; the body is never read.
CLIENT_CLOSED_REQUEST = 499

RegistryFactory = Callable[[Settings], Awaitable[ToolRegistry]]


class Outcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


_SESSION_STATES = {
    Outcome.COMPLETED: SessionState.COMPLETED,
    Outcome.FAILED: SessionState.FAILED,
    Outcome.ABORTED: SessionState.ABORTED,
}


class Teardown:
    """
    The single teardown routine of one request.

    run() may be reached from the normal path, the error path and the
    disconnect path; only the first call does anything.
    """

    def __init__(self, session: ProtocolSession, registry: ToolRegistry, transport: StreamableHTTPTransport):
        self.session = session
        self.registry = registry
        self.transport = transport
        self.outcome: Optional[Outcome] = None

    @property
    def done(self) -> bool:
        return self.outcome is not None

    async def run(self, outcome: Outcome) -> bool:
        if self.outcome is not None:
            return False
        self.outcome = outcome
        self.session.finish(_SESSION_STATES[outcome])

        try:
            await self.transport.close()
            await self.session.close()
        finally:
            await self.registry.close()

        logger.info(f"🔒 Session closed ({outcome.value})")
        return True


class LifecycleSupervisor:
    """Request-scoped construction and teardown, plus the process draining flag."""

    def __init__(self, settings: Settings, registry_factory: RegistryFactory = create_registry):
        self.settings = settings
        self.registry_factory = registry_factory
        self.draining = asyncio.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def begin_shutdown(self) -> None:
        """Ask open streams to finish. Safe to call from a signal handler."""
        if self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self.draining.set)
        else:
            self.draining.set()

    async def handle(self, request: Request) -> Response:
        if self.draining.is_set():
            return Response("Server is shutting down", status_code=503)

        registry: Optional[ToolRegistry] = None
        teardown: Optional[Teardown] = None
        try:
            inbound = await materialize(request)
            self._log_inbound(inbound)

            registry = await self.registry_factory(self.settings)
            transport = StreamableHTTPTransport(request.receive, self.draining)
            session = ProtocolSession(registry, transport, self.settings)
            teardown = Teardown(session, registry, transport)

            output = await self._exchange(session, transport, inbound)
        except Exception:
            logger.exception("❌ MCP processing error")
            if teardown is not None:
                await teardown.run(Outcome.FAILED)
            elif registry is not None:
                await registry.close()
            return to_response(Immediate(internal_error_envelope(), status_code=500))

        if isinstance(output, Streaming):
            channel = self._supervise(output.channel, session, transport, teardown)
            return to_response(
                output.with_channel(channel),
                background=BackgroundTask(teardown.run, Outcome.COMPLETED),
            )

        await teardown.run(self._outcome(session, transport))
        return to_response(output)

    async def _exchange(
        self,
        session: ProtocolSession,
        transport: StreamableHTTPTransport,
        inbound: InboundRequest,
    ) -> SessionOutput:
        """Run the session, giving up as soon as the client disconnects."""
        transport.start()
        handling = asyncio.ensure_future(session.handle(inbound))
        disconnected = asyncio.ensure_future(transport.wait_disconnected())

        try:
            done, _ = await asyncio.wait({handling, disconnected}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            disconnected.cancel()

        if handling in done:
            return handling.result()

        handling.cancel()
        try:
            await handling
        except asyncio.CancelledError:
            pass
        return Immediate(None, status_code=CLIENT_CLOSED_REQUEST)

    async def _supervise(
        self,
        channel: AsyncIterator[bytes],
        session: ProtocolSession,
        transport: StreamableHTTPTransport,
        teardown: Teardown,
    ) -> AsyncIterator[bytes]:
        outcome = Outcome.ABORTED
        try:
            async with aclosing(channel) as events:
                async for chunk in events:
                    yield chunk
            outcome = self._outcome(session, transport)
        except Exception:
            logger.exception("❌ Event stream failed")
            outcome = Outcome.FAILED
            raise
        finally:
            with anyio.CancelScope(shield=True):
                await teardown.run(outcome)

    @staticmethod
    def _outcome(session: ProtocolSession, transport: StreamableHTTPTransport) -> Outcome:
        if transport.disconnected:
            return Outcome.ABORTED
        if session.rejected or session.state is SessionState.FAILED:
            return Outcome.FAILED
        return Outcome.COMPLETED

    @staticmethod
    def _log_inbound(inbound: InboundRequest) -> None:
        if inbound.has_body:
            body = inbound.body.decode("utf-8", errors="replace")
            logger.info(f"🔍 {inbound.method} /mcp  Body: {body[:2000]}")
        else:
            logger.info(f"🔍 {inbound.method} /mcp  SSE stream start")


class GracefulServer(uvicorn.Server):
    """
    uvicorn server whose termination signals drain open streams and arm a
    forced exit after the grace window.

    The signal is not recorded for re-raising, so a drained shutdown exits 0.
    """

    def __init__(self, config: uvicorn.Config, supervisor: LifecycleSupervisor,
                 grace_seconds: float = SHUTDOWN_GRACE_SECONDS):
        super().__init__(config)
        self.supervisor = supervisor
        self.grace_seconds = grace_seconds
        self._force_exit_timer: Optional[threading.Timer] = None

    def handle_exit(self, sig: int, frame: Optional[FrameType]) -> None:
        if self.should_exit and sig == signal.SIGINT:
            self.force_exit = True
        else:
            self.should_exit = True

        if self._force_exit_timer is None:
            logger.info("🛑 Shutting down gracefully...")
            self.supervisor.begin_shutdown()
            self._force_exit_timer = threading.Timer(self.grace_seconds, self._force_exit)
            self._force_exit_timer.daemon = True
            self._force_exit_timer.start()

    def _force_exit(self) -> None:
        logger.warning("⚠️ Forced shutdown due to timeout")
        logging.shutdown()
        os._exit(0)

    def cancel_force_exit(self) -> None:
        if self._force_exit_timer is not None:
            self._force_exit_timer.cancel()
