"""
One-shot websocket session driven by registry values.

    idle -> dialing -> connected -> exchanging -> closed
    dialing | connected | exchanging -> failed

The supervisor dials ``<scheme>://<host>/ws/<appId>``, sends the handshake
token as a text frame, reads exactly one server frame, then closes. Every
outcome is reported through the log only; callers that need to know when
the attempt is over await ``wait_ready()``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional, Set

from client.ws_client import FrameType, Payload, Transport, WebsocketTransport
from registry.registry import ConfigRegistry
from shared.errors import CloseError, ConnectionAttemptError, DialError, ReceiveError, SendError
from shared.log import get_logger

logger = get_logger(__name__)

DEFAULT_SCHEME = "ws"
HANDSHAKE_PAYLOAD = "OK+OK"


class ConnectionState(str, Enum):
    IDLE = "idle"
    DIALING = "dialing"
    CONNECTED = "connected"
    EXCHANGING = "exchanging"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionState.CLOSED, ConnectionState.FAILED)


@dataclass(frozen=True)
class ConnectionTarget:
    scheme: str
    host: str
    path: str

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}{self.path}"

    @classmethod
    def from_registry(cls, registry: ConfigRegistry) -> ConnectionTarget:
        """Missing host or appId give empty parts, never an error."""
        return cls(
            scheme=registry.get_string("scheme") or DEFAULT_SCHEME,
            host=registry.get_string("host") or "",
            path="/ws/" + (registry.get_string("appId") or ""),
        )


@dataclass(frozen=True)
class ConnectionOutcome:
    state: ConnectionState
    target: ConnectionTarget
    received: Optional[Payload] = None
    frame_type: Optional[FrameType] = None
    error: Optional[ConnectionAttemptError] = None

    @property
    def ok(self) -> bool:
        return self.state is ConnectionState.CLOSED


class ConnectionSupervisor:
    """
    Runs a single connection attempt and releases a completion signal.

    The registry is borrowed, not owned. The optional ``timeout`` duration in
    the registry bounds the read; without it the read waits for as long as
    the server takes.
    """

    def __init__(self, registry: ConfigRegistry, transport: Optional[Transport] = None) -> None:
        self.registry = registry
        self.target = ConnectionTarget.from_registry(registry)
        self.transport: Transport = transport if transport is not None else WebsocketTransport()
        self.read_timeout: Optional[timedelta] = registry.get_duration("timeout")
        self.state = ConnectionState.IDLE
        self.outcome: Optional[ConnectionOutcome] = None
        self._completion: Optional[asyncio.Future] = None
        self._background_tasks: Set[asyncio.Task] = set()

    # ========================================
    #           COMPLETION SIGNAL
    # ========================================

    def _completion_future(self) -> asyncio.Future:
        if self._completion is None:
            self._completion = asyncio.get_running_loop().create_future()
        return self._completion

    @property
    def ready(self) -> bool:
        return self._completion is not None and self._completion.done()

    async def wait_ready(self) -> ConnectionOutcome:
        """Block until the attempt has finished, successfully or not."""
        return await asyncio.shield(self._completion_future())

    def _release(self, outcome: ConnectionOutcome) -> ConnectionOutcome:
        self.outcome = outcome
        future = self._completion_future()
        if not future.done():
            future.set_result(outcome)
        return outcome

    # ========================================
    #           LIFECYCLE
    # ========================================

    def _transition(self, state: ConnectionState) -> None:
        logger.debug(f"{self.state.value} -> {state.value}", extra={"target": self.target.url})
        self.state = state

    def _fail(self, error: ConnectionAttemptError) -> ConnectionOutcome:
        self._transition(ConnectionState.FAILED)
        return self._release(ConnectionOutcome(ConnectionState.FAILED, self.target, error=error))

    async def _discard_transport(self) -> None:
        """Close after a failed send/receive; the failure already decided the outcome."""
        try:
            await self.transport.close()
        except Exception as e:
            logger.debug(f"close after failure: {e}")

    def spawn(self) -> asyncio.Task:
        """Run ``start()`` as a background task on the running loop."""
        task = asyncio.create_task(self.start())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def start(self) -> ConnectionOutcome:
        """
        Dial, send the handshake, read one frame, close.

        Never raises for network failures: each one is logged, ends the
        attempt in the ``failed`` state and still releases the completion
        signal. Only one attempt per supervisor.
        """
        if self.state is not ConnectionState.IDLE:
            raise RuntimeError(f"connection attempt already made (state={self.state.value})")
        self._completion_future()

        try:
            return await self._run()
        except BaseException as exc:
            # cancellation or a bug: waiters must still be unblocked
            if not self.ready:
                self._fail(ConnectionAttemptError(f"attempt aborted: {exc!r}", exc))
            raise

    async def _run(self) -> ConnectionOutcome:
        url = self.target.url
        self._transition(ConnectionState.DIALING)
        try:
            await self.transport.dial(url)
        except Exception as e:
            logger.error(f"can not connect: {e}", extra={"target": url})
            return self._fail(DialError(str(e), e))

        self._transition(ConnectionState.CONNECTED)
        logger.info("connected")

        try:
            await self.transport.write(HANDSHAKE_PAYLOAD, FrameType.TEXT)
        except Exception as e:
            logger.error(f"can not send: {e}")
            await self._discard_transport()
            return self._fail(SendError(str(e), e))
        logger.info(f"send: {HANDSHAKE_PAYLOAD}, type: {FrameType.TEXT.value}")

        self._transition(ConnectionState.EXCHANGING)
        try:
            if self.read_timeout is None:
                payload, frame_type = await self.transport.read()
            else:
                payload, frame_type = await asyncio.wait_for(
                    self.transport.read(), self.read_timeout.total_seconds()
                )
        except Exception as e:
            detail = str(e) or type(e).__name__
            logger.error(f"can not receive: {detail}")
            await self._discard_transport()
            return self._fail(ReceiveError(detail, e))
        logger.info(f"receive: {payload!s}, type: {frame_type.value}")

        try:
            await self.transport.close()
        except Exception as e:
            # reported, but the exchange itself succeeded
            logger.error(f"can not close: {e}", extra={"state": self.state.value})
            close_error: Optional[CloseError] = CloseError(str(e), e)
        else:
            logger.info("closed")
            close_error = None

        self._transition(ConnectionState.CLOSED)
        return self._release(
            ConnectionOutcome(ConnectionState.CLOSED, self.target, payload, frame_type, error=close_error)
        )
