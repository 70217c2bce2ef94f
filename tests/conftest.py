import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("RETCON_LOG_DIR", str(ROOT / "logs"))


class DummyTransport:
    """Scripted stand-in for the websocket transport."""

    def __init__(
        self,
        *,
        reply=("PONG", "text"),
        dial_error: Optional[Exception] = None,
        write_error: Optional[Exception] = None,
        read_error: Optional[Exception] = None,
        close_error: Optional[Exception] = None,
        read_delay: float = 0.0,
    ) -> None:
        self.reply = reply
        self.dial_error = dial_error
        self.write_error = write_error
        self.read_error = read_error
        self.close_error = close_error
        self.read_delay = read_delay
        self.calls: List[str] = []
        self.dialed_url: Optional[str] = None
        self.sent: list = []
        self.closed = False

    async def dial(self, url: str) -> None:
        self.calls.append("dial")
        self.dialed_url = url
        if self.dial_error:
            raise self.dial_error

    async def write(self, payload, frame_type=None) -> None:
        self.calls.append("write")
        if self.write_error:
            raise self.write_error
        self.sent.append((payload, frame_type))

    async def read(self):
        from client.ws_client import FrameType

        self.calls.append("read")
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if self.read_error:
            raise self.read_error
        payload, frame_type = self.reply
        return payload, FrameType(frame_type)

    async def close(self) -> None:
        self.calls.append("close")
        if self.close_error:
            raise self.close_error
        self.closed = True


class ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def messages(self, level: int = logging.INFO) -> List[str]:
        return [r.getMessage() for r in self.records if r.levelno >= level]


@pytest.fixture
def dummy_transport_factory():
    return DummyTransport


@pytest.fixture
def supervisor_logs():
    """Collects what the supervisor logs (our loggers do not propagate, so caplog misses them)."""
    from client import supervisor as supervisor_module

    handler = ListHandler()
    supervisor_module.logger.addHandler(handler)
    yield handler
    supervisor_module.logger.removeHandler(handler)


@pytest.fixture
def registry_logs():
    from registry import registry as registry_module

    handler = ListHandler()
    registry_module.logger.addHandler(handler)
    yield handler
    registry_module.logger.removeHandler(handler)
