import asyncio
import logging
from typing import Callable, Optional

from tk700.exceptions.projector import DeviceConnectionError, LinkClosed, LinkTimeout, ProtocolError

log = logging.getLogger("tk700.link")

# How long to wait for more stale bytes before writing a request, seconds.
STALE_GRACE = 0.005


def _any_frame(frame: bytes) -> bool:
    return True


class DeviceLink:
    """
    Single TCP connection to the projector's serial bridge.

      - one exchange on the wire at a time; callers queue on an asyncio.Lock,
        which wakes waiters in arrival order
      - every exchange is bounded by the response timeout
      - any failure, timeout or cancellation drops the socket so a late reply
        can never be read by the next caller; the next exchange reconnects
      - bytes already buffered when a request is about to go out are discarded
    """

    def __init__(
        self,
        host: str,
        port: int,
        timeout_ms: int = 5000,
        connect_timeout_ms: Optional[int] = None,
        terminator: bytes = b"#",
    ):
        self.host, self.port = host, port
        self.timeout_ms = timeout_ms
        self.connect_timeout_ms = connect_timeout_ms or timeout_ms
        self._terminator = terminator
        self._lock = asyncio.Lock()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    def is_connected(self) -> bool:
        return (
            self._writer is not None
            and not self._writer.is_closing()
            and not self._reader.at_eof()
        )

    async def open(self) -> None:
        async with self._lock:
            await self._connect()

    async def _connect(self) -> None:
        if self.is_connected():
            return
        self._drop()
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.connect_timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            raise DeviceConnectionError(
                f"Connect to {self.host}:{self.port} timed out after {self.connect_timeout_ms}ms",
                {"host": self.host, "port": self.port},
            ) from None
        except OSError as e:
            raise DeviceConnectionError(
                f"Connect to {self.host}:{self.port} failed: {e}",
                {"host": self.host, "port": self.port},
            ) from e
        log.info("Projector link open %s:%s", self.host, self.port)

    async def exchange(self, request: bytes, accept: Callable[[bytes], bool] = _any_frame) -> bytes:
        """Send ``request`` and return the first received frame that ``accept`` takes as the reply."""
        async with self._lock:
            await self._connect()
            ok = False
            try:
                reply = await asyncio.wait_for(self._roundtrip(request, accept), timeout=self.timeout_ms / 1000.0)
                ok = True
                return reply
            except asyncio.TimeoutError:
                raise LinkTimeout(self.timeout_ms, {"request": request.decode("ascii", "replace").strip()}) from None
            except asyncio.IncompleteReadError:
                raise LinkClosed({"host": self.host, "port": self.port}) from None
            except asyncio.LimitOverrunError as e:
                raise ProtocolError(f"no frame terminator within {e.consumed} bytes") from e
            except OSError as e:
                raise DeviceConnectionError(f"Projector link failed: {e}", {"host": self.host, "port": self.port}) from e
            finally:
                if not ok:
                    self._drop()

    async def _roundtrip(self, request: bytes, accept: Callable[[bytes], bool]) -> bytes:
        reader, writer = self._reader, self._writer
        await self._discard_stale(reader)
        log.debug("TX %r", request)
        writer.write(request)
        await writer.drain()
        while True:
            frame = await reader.readuntil(self._terminator)
            if accept(frame):
                log.debug("RX %r", frame)
                return frame
            log.debug("RX (skipped) %r", frame)

    @staticmethod
    async def _discard_stale(reader: asyncio.StreamReader) -> None:
        # Bytes already waiting belong to no caller; an extra or unsolicited
        # frame left here would be read as the reply to the next request.
        while True:
            try:
                stale = await asyncio.wait_for(reader.read(4096), timeout=STALE_GRACE)
            except asyncio.TimeoutError:
                return
            if not stale:
                return
            log.debug("RX (stale) %r", stale)

    def _drop(self) -> None:
        writer, self._reader, self._writer = self._writer, None, None
        if writer is not None:
            writer.close()
            log.info("Projector link dropped %s:%s", self.host, self.port)

    async def close(self) -> None:
        # waits for an in-flight exchange so it never loses its streams mid-read
        async with self._lock:
            writer = self._writer
            self._drop()
        if writer is not None:
            try:
                await writer.wait_closed()
            except OSError:
                log.debug("wait_closed failed", exc_info=True)
