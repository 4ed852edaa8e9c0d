"""Control connection: an asyncio protocol feeding the response framer."""

import asyncio
import codecs
import logging
import socket
from typing import Optional, TYPE_CHECKING

from ftpwire.exceptions import ClientConnectionError
from ftpwire.pipeline import CommandPipeline, ReadyCallback
from ftpwire.response import ResponseFramer

if TYPE_CHECKING:
    from ftpwire.config import ProxyConfig

try:
    import socks

    SOCKS_AVAILABLE = True
except ImportError:
    SOCKS_AVAILABLE = False

logger = logging.getLogger(__name__)

DEFAULT_PORT = 21
DEFAULT_CONNECT_TIMEOUT = 30.0


async def open_proxy_socket(
    proxy_config: "ProxyConfig",
    host: str,
    port: int,
    timeout: Optional[float] = None,
) -> socket.socket:
    """Connect a socket to ``host:port`` through a SOCKS5 proxy.

    PySocks sockets connect synchronously, so the handshake runs in a worker
    thread. The returned socket is non-blocking and ready to be handed to
    the event loop.
    """
    if not SOCKS_AVAILABLE:
        raise RuntimeError(
            "PySocks is required for SOCKS5 proxy support. "
            "Install with: pip install pysocks"
        )

    def connect() -> socket.socket:
        sock = socks.socksocket(socket.AF_INET, socket.SOCK_STREAM)
        sock.set_proxy(
            socks.SOCKS5,
            proxy_config.host,
            proxy_config.port,
            username=proxy_config.username,
            password=proxy_config.password,
        )
        if timeout is not None:
            sock.settimeout(timeout)
        try:
            sock.connect((host, port))
        except OSError:
            sock.close()
            raise
        sock.setblocking(False)
        return sock

    return await asyncio.to_thread(connect)


class ControlProtocol(asyncio.Protocol):
    """Hands received bytes and connection loss to its :class:`ControlTransport`."""

    def __init__(self, owner: "ControlTransport") -> None:
        self.owner = owner
        self.transport: Optional[asyncio.Transport] = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        assert isinstance(transport, asyncio.Transport)
        self.transport = transport

    def data_received(self, data: bytes) -> None:
        self.owner.data_received(self, data)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.owner.connection_lost(self, exc)


class ControlTransport:
    """The byte stream between the client and the server's control port.

    Incoming bytes are decoded, framed into responses and delivered to the
    attached :class:`CommandPipeline`. Only the most recent connection
    reports to the pipeline; a connection replaced by :meth:`reconnect` is
    closed silently.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        *,
        encoding: str = "utf-8",
        connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT,
        proxy_config: Optional["ProxyConfig"] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.encoding = encoding
        self.connect_timeout = connect_timeout
        self.proxy_config = proxy_config
        self.framer = ResponseFramer()
        self.pipeline: Optional[CommandPipeline] = None

        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._protocol: Optional[ControlProtocol] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reconnect_task: Optional["asyncio.Task[None]"] = None

    def attach(self, pipeline: CommandPipeline) -> None:
        self.pipeline = pipeline

    @property
    def connected(self) -> bool:
        return self.is_writable()

    async def connect(self) -> None:
        """Open the control connection.

        Raises:
            ClientConnectionError: If the server cannot be reached
        """
        self._loop = asyncio.get_running_loop()
        protocol = ControlProtocol(self)
        try:
            if self.proxy_config is not None:
                sock = await asyncio.wait_for(
                    open_proxy_socket(
                        self.proxy_config, self.host, self.port, self.connect_timeout
                    ),
                    self.connect_timeout,
                )
                connection = self._loop.create_connection(lambda: protocol, sock=sock)
            else:
                connection = self._loop.create_connection(
                    lambda: protocol, self.host, self.port
                )
            await asyncio.wait_for(connection, self.connect_timeout)
        except (OSError, asyncio.TimeoutError) as e:
            raise ClientConnectionError(
                f"Failed to connect to {self.host}:{self.port}: {e}"
            ) from e

        self.framer.reset()
        self._decoder.reset()
        self._protocol = protocol
        logger.info("Connected to %s:%d", self.host, self.port)

    def is_writable(self) -> bool:
        return (
            self._protocol is not None
            and self._protocol.transport is not None
            and not self._protocol.transport.is_closing()
        )

    def write(self, data: bytes) -> None:
        if not self.is_writable():
            raise BrokenPipeError("Control connection is closed")
        assert self._protocol is not None and self._protocol.transport is not None
        self._protocol.transport.write(data)

    def reconnect(self, on_ready: ReadyCallback) -> None:
        """Replace the current connection; ``on_ready`` gets the outcome."""
        self._detach()
        loop = self._loop or asyncio.get_running_loop()
        self._reconnect_task = loop.create_task(self._reconnect(on_ready))

    async def _reconnect(self, on_ready: ReadyCallback) -> None:
        logger.info("Reconnecting to %s:%d", self.host, self.port)
        try:
            await self.connect()
        except ClientConnectionError as e:
            logger.warning("Reconnect failed: %s", e)
            on_ready(e)
            return
        on_ready(None)

    def close(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None
        self._detach()

    def drop(self, exc: Exception) -> None:
        """Abandon the current connection as if the server had closed it.

        The next command reconnects.
        """
        logger.warning("Dropping control connection to %s: %s", self.host, exc)
        self._detach()
        if self.pipeline is not None:
            self.pipeline.connection_lost(exc)

    def _detach(self) -> None:
        protocol, self._protocol = self._protocol, None
        if protocol is not None and protocol.transport is not None:
            protocol.transport.close()

    def data_received(self, protocol: ControlProtocol, data: bytes) -> None:
        if protocol is not self._protocol or self.pipeline is None:
            return
        for response in self.framer.feed(self._decoder.decode(data)):
            self.pipeline.on_response(response)

    def connection_lost(self, protocol: ControlProtocol, exc: Optional[Exception]) -> None:
        if protocol is not self._protocol:
            return
        self._protocol = None
        if exc is not None:
            logger.warning("Control connection lost: %s", exc)
        else:
            logger.info("Control connection closed by %s", self.host)
        if self.pipeline is not None:
            self.pipeline.connection_lost(exc)
