"""Passive-mode data connections.

Only one passive data channel can be outstanding per control session:
requesting a second one before the first is consumed makes the server hand
out a port nobody is listening on anymore. Callers must serialize transfers.
"""

import asyncio
import logging
import re
from typing import AsyncIterator, Callable, List, NamedTuple, Optional, TYPE_CHECKING

from ftpwire.exceptions import (
    ClientConnectionError,
    DataTimeoutError,
    ParseError,
)
from ftpwire.pipeline import CommandPipeline, resolve_future
from ftpwire.response import PASSIVE_MODE_CODE, Response
from ftpwire.transport import DEFAULT_CONNECT_TIMEOUT, open_proxy_socket

if TYPE_CHECKING:
    from ftpwire.config import ProxyConfig

logger = logging.getLogger(__name__)

DEFAULT_DATA_TIMEOUT = 10 * 60.0
CHUNK_SIZE = 64 * 1024

RE_PASV = re.compile(r"(\d+),(\d+),(\d+),(\d+),(\d+),(\d+)")


class PassiveEndpoint(NamedTuple):
    host: str
    port: int


def parse_pasv_response(text: str) -> PassiveEndpoint:
    """Extract the data endpoint from a ``227 Entering Passive Mode`` reply.

    Raises:
        ParseError: If the reply does not contain ``h1,h2,h3,h4,p1,p2``
    """
    match = RE_PASV.search(text)
    if match is None:
        raise ParseError(f"PASV: Bad host/port combination in {text!r}")

    numbers = [int(group) for group in match.groups()]
    if any(octet > 255 for octet in numbers[:4]):
        raise ParseError(f"PASV: Bad host address in {text!r}")

    host = ".".join(str(octet) for octet in numbers[:4])
    port = (numbers[4] & 255) * 256 + (numbers[5] & 255)
    return PassiveEndpoint(host, port)


class DataChannel:
    """A passive data connection with an idle timeout.

    Every read or write re-arms the timer. When it fires the connection is
    closed, the failure listeners are notified once, and any further I/O
    raises :class:`DataTimeoutError`.

    ``status`` resolves with the control reply that closed the transfer, or
    with None when the control connection went away before it arrived.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        idle_timeout: Optional[float] = DEFAULT_DATA_TIMEOUT,
        endpoint: Optional[PassiveEndpoint] = None,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.idle_timeout = idle_timeout
        self.endpoint = endpoint
        self.bytes_read = 0
        self.bytes_written = 0

        self._loop = asyncio.get_running_loop()
        self.status: "asyncio.Future[Optional[Response]]" = self._loop.create_future()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._failure: Optional[Exception] = None
        self._listeners: List[Callable[[Exception], None]] = []
        self._closed = False
        self._arm()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def failure(self) -> Optional[Exception]:
        return self._failure

    def add_failure_listener(self, listener: Callable[[Exception], None]) -> None:
        if self._failure is not None:
            listener(self._failure)
        else:
            self._listeners.append(listener)

    def set_status(self, error: Optional[Exception], response: Optional[Response]) -> None:
        """Record how the server ended the transfer; failures close the channel."""
        if not self.status.done():
            self.status.set_result(response)
        if error is not None:
            self._fail(error)
            if not self._closed:
                self._shutdown()

    def _arm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self.idle_timeout and not self._closed:
            self._timer = self._loop.call_later(self.idle_timeout, self._timed_out)

    def _timed_out(self) -> None:
        self._timer = None
        logger.warning("Data connection idle for %s seconds, closing it", self.idle_timeout)
        self._fail(DataTimeoutError(f"Data connection idle for {self.idle_timeout} seconds"))
        self._shutdown()

    def _fail(self, exc: Exception) -> None:
        if self._failure is not None:
            return
        self._failure = exc
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(exc)

    def _check(self) -> None:
        if self._failure is not None:
            raise self._failure

    def _shutdown(self) -> None:
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.writer.close()

    async def read(self, n: int = CHUNK_SIZE) -> bytes:
        """Read up to ``n`` bytes; an empty result means the server is done."""
        self._check()
        try:
            data = await self.reader.read(n)
        except OSError as e:
            error = ClientConnectionError(f"Data connection failed: {e}")
            self._fail(error)
            raise error from e
        self._check()
        self.bytes_read += len(data)
        if data:
            self._arm()
        elif self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return data

    async def read_all(self) -> bytes:
        chunks = [chunk async for chunk in self]
        return b"".join(chunks)

    async def _iter_chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self.read()
            if not chunk:
                return
            yield chunk

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._iter_chunks()

    async def write(self, data: bytes) -> None:
        self._check()
        if self._closed:
            raise ClientConnectionError("Data connection is closed")
        try:
            self.writer.write(data)
            await self.writer.drain()
        except OSError as e:
            error = ClientConnectionError(f"Data connection failed: {e}")
            self._fail(error)
            raise error from e
        self._check()
        self.bytes_written += len(data)
        self._arm()

    def write_eof(self) -> None:
        """Half-close the connection after an upload, keeping it readable."""
        self._check()
        if not self._closed and self.writer.can_write_eof():
            self.writer.write_eof()

    async def close(self) -> None:
        """Close the connection; for uploads this marks the end of the file."""
        if not self._closed:
            self._shutdown()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        try:
            await self.writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing data connection: %s", e)


class PassiveChannelManager:
    """Opens data channels announced by ``PASV`` replies.

    The PASV command goes through the command pipeline like any other
    command; the data connection itself never touches the control channel.
    """

    def __init__(
        self,
        pipeline: CommandPipeline,
        *,
        idle_timeout: Optional[float] = DEFAULT_DATA_TIMEOUT,
        connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
        proxy_config: Optional["ProxyConfig"] = None,
    ) -> None:
        self.pipeline = pipeline
        self.idle_timeout = idle_timeout
        self.connect_timeout = connect_timeout
        self.proxy_config = proxy_config
        self.current: Optional[DataChannel] = None

    async def request_endpoint(self) -> PassiveEndpoint:
        """Send ``PASV`` and parse the endpoint out of the reply.

        Raises:
            ProtocolError: If the server refuses passive mode
            ParseError: If the reply is not a well-formed 227
        """
        reply: "asyncio.Future[Response]" = asyncio.get_running_loop().create_future()
        self.pipeline.enqueue("PASV", resolve_future(reply))
        response = await reply
        if response.code != PASSIVE_MODE_CODE:
            raise ParseError(f"Unexpected reply to PASV: {response.text}")
        return parse_pasv_response(response.text)

    async def open_data_channel(self) -> DataChannel:
        """Enter passive mode and connect to the announced endpoint.

        The returned channel is connected but not yet confirmed: the server
        confirms it with a 125/150 mark once the transfer command is sent.
        """
        endpoint = await self.request_endpoint()
        logger.debug("Opening data connection to %s:%d", endpoint.host, endpoint.port)
        try:
            reader, writer = await asyncio.wait_for(
                self._open_connection(endpoint), self.connect_timeout
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise ClientConnectionError(
                f"Could not open data connection to {endpoint.host}:{endpoint.port}: {e}"
            ) from e

        channel = DataChannel(reader, writer, self.idle_timeout, endpoint)
        self.current = channel
        return channel

    async def _open_connection(
        self, endpoint: PassiveEndpoint
    ) -> "tuple[asyncio.StreamReader, asyncio.StreamWriter]":
        if self.proxy_config is not None:
            sock = await open_proxy_socket(
                self.proxy_config, endpoint.host, endpoint.port, self.connect_timeout
            )
            return await asyncio.open_connection(sock=sock)
        return await asyncio.open_connection(endpoint.host, endpoint.port)

    async def close(self) -> None:
        channel, self.current = self.current, None
        if channel is not None:
            await channel.close()
