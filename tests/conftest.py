import asyncio
import re
from typing import Dict, List, Optional, Tuple

import pytest

from tk700.services.power_state import PowerStateManager
from tk700.services.projector_client import ProjectorClient

_REQUEST_RE = re.compile(r"\*(?P<cmd>[a-z0-9]+)=(?P<arg>[^#]*)#")

DEFAULT_VALUES = {
    "pow": "ON",
    "vol": "5",
    "tmp1": "41.5",
    "fan1": "1500",
    "appmod": "CINE",
    "bri": "50",
    "con": "50",
    "sharp": "8",
}


def projector_reply(values: Dict[str, str], rejected: set, cmd: str, arg: str) -> str:
    """What a BenQ projector answers to one request, mutating ``values`` for set commands."""
    if cmd in rejected:
        return "*Block item#"
    if cmd not in values:
        return "*Unsupported item#"
    if arg in ("+", "-"):
        values[cmd] = str(int(values[cmd]) + (1 if arg == "+" else -1))
    elif arg != "?":
        values[cmd] = arg.upper()
    return f"*{cmd.upper()}={values[cmd]}#"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLink:
    """In-memory stand-in for DeviceLink speaking the BenQ ASCII protocol."""

    def __init__(self, values: Optional[Dict[str, str]] = None, delay: float = 0.0):
        self.values = dict(DEFAULT_VALUES if values is None else values)
        self.rejected: set = set()
        self.failing: Dict[str, Exception] = {}
        self.garbled: set = set()
        self.delay = delay
        self.log: List[Tuple[str, str]] = []
        self.connected = True
        self.closed = False
        self._lock = asyncio.Lock()

    def count(self, cmd: str) -> int:
        return sum(1 for c, _ in self.log if c == cmd)

    async def exchange(self, request: bytes, accept=None) -> bytes:
        async with self._lock:
            m = _REQUEST_RE.search(request.decode("ascii"))
            assert m, f"malformed request frame {request!r}"
            cmd, arg = m.group("cmd"), m.group("arg")
            self.log.append((cmd, arg))
            if self.delay:
                await asyncio.sleep(self.delay)
            if cmd in self.failing:
                raise self.failing[cmd]
            if cmd in self.garbled:
                return b"\r\n*garbage"
            reply = projector_reply(self.values, self.rejected, cmd, arg)
            return f"\r\n{reply}".encode("ascii")

    def is_connected(self) -> bool:
        return self.connected

    async def close(self) -> None:
        self.closed = True


class FakeProjectorServer:
    """TCP server behaving like the TK700 serial bridge: echo, then reply."""

    def __init__(self, delay: float = 0.0):
        self.values = dict(DEFAULT_VALUES)
        self.rejected: set = set()
        self.delay = delay
        self.silent: set = set()
        self.hangup: set = set()
        # frames the bridge sends after the reply to a command, unasked
        self.trailing: Dict[str, str] = {}
        self.received: List[Tuple[str, str]] = []
        self.connections = 0
        self._writers: set = set()
        self._server: Optional[asyncio.AbstractServer] = None
        self.port = 0

    async def start(self) -> "FakeProjectorServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        self._server.close()
        for w in list(self._writers):
            w.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        try:
            while True:
                try:
                    raw = await reader.readuntil(b"#")
                except (asyncio.IncompleteReadError, ConnectionError):
                    return
                m = _REQUEST_RE.search(raw.decode("ascii"))
                if not m:
                    continue
                cmd, arg = m.group("cmd"), m.group("arg")
                self.received.append((cmd, arg))
                writer.write(f">*{cmd}={arg}#".encode("ascii"))
                if cmd in self.hangup:
                    self.hangup.discard(cmd)
                    await writer.drain()
                    return
                if cmd in self.silent:
                    continue
                if self.delay:
                    await asyncio.sleep(self.delay)
                reply = projector_reply(self.values, self.rejected, cmd, arg)
                writer.write(f"\r\n{reply}\r\n{self.trailing.get(cmd, '')}".encode("ascii"))
                await writer.drain()
        finally:
            self._writers.discard(writer)
            writer.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def power(clock) -> PowerStateManager:
    return PowerStateManager(clock=clock)


@pytest.fixture
def link() -> FakeLink:
    return FakeLink()


@pytest.fixture
def client(link) -> ProjectorClient:
    return ProjectorClient(link)


@pytest.fixture
async def projector_server():
    server = await FakeProjectorServer().start()
    yield server
    await server.stop()
