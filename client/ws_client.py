from __future__ import annotations
from enum import Enum
from typing import Optional, Protocol, Tuple, Union

import websockets

from shared.log import get_logger

logger = get_logger(__name__)


Payload = Union[str, bytes]


class FrameType(str, Enum):
    """Websocket data frame opcodes the client can see."""
    TEXT = "text"
    BINARY = "binary"

    @classmethod
    def of(cls, payload: Payload) -> FrameType:
        return cls.BINARY if isinstance(payload, (bytes, bytearray)) else cls.TEXT


class Transport(Protocol):
    """Socket primitives the connection supervisor drives, one call at a time."""

    async def dial(self, url: str) -> None: ...

    async def write(self, payload: Payload, frame_type: FrameType = FrameType.TEXT) -> None: ...

    async def read(self) -> Tuple[Payload, FrameType]: ...

    async def close(self) -> None: ...


class WebsocketTransport:
    """
    Client side of a single websocket connection.

    Exceptions from ``websockets`` propagate unchanged; the supervisor decides
    what a failure means for the attempt.
    """

    def __init__(self, *, open_timeout: Optional[float] = 10, ping_interval: Optional[float] = 15,
                 ping_timeout: Optional[float] = 45) -> None:
        self.open_timeout = open_timeout
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.websocket: Optional[websockets.ClientConnection] = None

    async def dial(self, url: str) -> None:
        """Open the websocket connection"""
        self.websocket = await websockets.connect(
            url,
            open_timeout=self.open_timeout,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_timeout,
        )
        logger.debug(f"Opened websocket to {url}")

    async def write(self, payload: Payload, frame_type: FrameType = FrameType.TEXT) -> None:
        assert self.websocket is not None
        if frame_type is FrameType.TEXT and isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        elif frame_type is FrameType.BINARY and isinstance(payload, str):
            payload = payload.encode("utf-8")
        await self.websocket.send(payload)

    async def read(self) -> Tuple[Payload, FrameType]:
        """Next data frame from the server, whatever its type"""
        assert self.websocket is not None
        payload = await self.websocket.recv()
        return payload, FrameType.of(payload)

    async def close(self) -> None:
        if self.websocket:
            await self.websocket.close(code=1000)
