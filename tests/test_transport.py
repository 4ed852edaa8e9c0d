"""Tests for the control connection and SOCKS5 sockets."""

import asyncio
import socket
import unittest
from unittest.mock import MagicMock, Mock, patch

from ftpwire.config import ProxyConfig
from ftpwire.exceptions import ClientConnectionError, DataTimeoutError
from ftpwire.response import Response
from ftpwire.transport import ControlTransport, open_proxy_socket


async def start_greeter(*lines: bytes):
    """Server writing ``lines`` to every client, then idling until closed."""
    writers = []

    async def serve(reader, writer):
        writers.append(writer)
        for line in lines:
            writer.write(line)
        await writer.drain()
        await reader.read()
        writer.close()

    server = await asyncio.start_server(serve, "127.0.0.1", 0)
    return server, server.sockets[0].getsockname()[1], writers


class TestControlTransport(unittest.TestCase):
    """Test cases for ControlTransport."""

    def test_responses_reach_pipeline(self) -> None:
        """Test that framed replies reach the pipeline."""
        async def run_test() -> None:
            server, port, _ = await start_greeter(
                b"220 Welcome\r\n", b"211-Features:\r\n MDTM\r\n", b"211 End\r\n"
            )
            async with server:
                transport = ControlTransport("127.0.0.1", port)
                pipeline = Mock()
                transport.attach(pipeline)

                await transport.connect()
                self.assertTrue(transport.connected)
                await asyncio.sleep(0.1)

                responses = [c.args[0] for c in pipeline.on_response.call_args_list]
                self.assertEqual(responses[0], Response(220, "220 Welcome"))
                self.assertEqual(responses[1].code, 211)
                self.assertTrue(responses[1].is_multiline)

                transport.write(b"NOOP\r\n")
                transport.close()
                self.assertFalse(transport.is_writable())
                with self.assertRaises(BrokenPipeError):
                    transport.write(b"NOOP\r\n")

        asyncio.run(run_test())

    def test_connection_lost_is_reported(self) -> None:
        """Test that a server hangup is reported."""
        async def run_test() -> None:
            server, port, writers = await start_greeter(b"220 Welcome\r\n")
            async with server:
                transport = ControlTransport("127.0.0.1", port)
                pipeline = Mock()
                transport.attach(pipeline)
                await transport.connect()
                await asyncio.sleep(0.05)

                writers[0].close()
                await asyncio.sleep(0.1)

                pipeline.connection_lost.assert_called_once()
                self.assertFalse(transport.is_writable())

        asyncio.run(run_test())

    def test_reconnect(self) -> None:
        """Test replacing the connection."""
        async def run_test() -> None:
            server, port, _ = await start_greeter(b"220 Welcome\r\n")
            async with server:
                transport = ControlTransport("127.0.0.1", port)
                pipeline = Mock()
                transport.attach(pipeline)
                await transport.connect()

                ready = asyncio.get_running_loop().create_future()
                transport.reconnect(ready.set_result)

                self.assertIsNone(await asyncio.wait_for(ready, 5))
                self.assertTrue(transport.is_writable())
                # The replaced connection closes silently
                pipeline.connection_lost.assert_not_called()
                transport.close()

        asyncio.run(run_test())

    def test_drop_reports_connection_lost(self) -> None:
        """Test that dropping the connection reports it as lost."""
        async def run_test() -> None:
            server, port, _ = await start_greeter(b"220 Welcome\r\n")
            async with server:
                transport = ControlTransport("127.0.0.1", port)
                pipeline = Mock()
                transport.attach(pipeline)
                await transport.connect()

                error = DataTimeoutError("No reply to the transfer")
                transport.drop(error)
                await asyncio.sleep(0.05)

                self.assertFalse(transport.is_writable())
                pipeline.connection_lost.assert_called_once_with(error)

        asyncio.run(run_test())

    def test_connect_refused(self) -> None:
        """Test connecting to a closed port."""
        async def run_test() -> None:
            closed_server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
            port = closed_server.sockets[0].getsockname()[1]
            closed_server.close()
            await closed_server.wait_closed()

            transport = ControlTransport("127.0.0.1", port, connect_timeout=2)
            with self.assertRaises(ClientConnectionError):
                await transport.connect()

            ready = asyncio.get_running_loop().create_future()
            transport.reconnect(ready.set_result)
            self.assertIsInstance(await asyncio.wait_for(ready, 5), ClientConnectionError)

        asyncio.run(run_test())


class TestProxySocket(unittest.TestCase):
    """Test cases for SOCKS5 socket creation."""

    def setUp(self) -> None:
        """Set up test fixtures."""
        self.proxy = ProxyConfig(
            host="proxy.example.com", port=1081, username="puser", password="ppass"
        )

    @patch("ftpwire.transport.socks", create=True)
    def test_open_proxy_socket(self, mock_socks) -> None:
        """Test opening a SOCKS5 socket."""
        mock_sock = MagicMock()
        mock_socks.socksocket.return_value = mock_sock

        sock = asyncio.run(open_proxy_socket(self.proxy, "ftp.example.com", 21, 10))

        self.assertIs(sock, mock_sock)
        mock_socks.socksocket.assert_called_once_with(socket.AF_INET, socket.SOCK_STREAM)
        mock_sock.set_proxy.assert_called_once_with(
            mock_socks.SOCKS5,
            "proxy.example.com",
            1081,
            username="puser",
            password="ppass",
        )
        mock_sock.settimeout.assert_called_once_with(10)
        mock_sock.connect.assert_called_once_with(("ftp.example.com", 21))
        mock_sock.setblocking.assert_called_once_with(False)

    @patch("ftpwire.transport.socks", create=True)
    def test_open_proxy_socket_failure_closes(self, mock_socks) -> None:
        """Test that a failed proxy connect closes the socket."""
        mock_sock = MagicMock()
        mock_sock.connect.side_effect = ConnectionRefusedError("refused")
        mock_socks.socksocket.return_value = mock_sock

        with self.assertRaises(ConnectionRefusedError):
            asyncio.run(open_proxy_socket(self.proxy, "ftp.example.com", 21))

        mock_sock.close.assert_called_once()
        mock_sock.settimeout.assert_not_called()

    @patch("ftpwire.transport.SOCKS_AVAILABLE", False)
    def test_missing_pysocks(self) -> None:
        """Test the error raised without PySocks installed."""
        with self.assertRaises(RuntimeError) as ctx:
            asyncio.run(open_proxy_socket(self.proxy, "ftp.example.com", 21))

        self.assertIn("PySocks", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
