"""Listener and registry: accepts sockets and runs a WebSocketConnection for each."""

from __future__ import annotations

import selectors
import socket
import ssl
from typing import Callable

from wsserver.utils.logging import get_logger, setup_logging
from wsserver.utils.types import ConnectionState, TransportError
from wsserver.server.connection import WebSocketConnection
from wsserver.server.transport import SocketTransport

logger = get_logger(__name__)

LISTENER = "listener"

class WebSocketServer:
    """
    Accepts TCP (or TLS) connections and runs a WebSocketConnection for each.
    Connections are tracked in `connections` from handshake until close.
    """

    def __init__(self, host: str = "localhost", port: int = 80, ssl_context: ssl.SSLContext | None = None, on_connection: Callable[[WebSocketConnection], None] | None = None, backlog: int = 100) -> None:
        self.host = host
        self.port = port
        self.ssl_context = ssl_context
        self.on_connection = on_connection
        self.backlog = backlog
        self.selector = selectors.DefaultSelector()
        self.lsock: socket.socket | None = None
        self.connections: list[WebSocketConnection] = []
        self._pending: dict[SocketTransport, WebSocketConnection] = {}

    @property
    def address(self) -> tuple[str, int]:
        """The bound (host, port); useful when listening on port 0."""
        if self.lsock is None:
            return self.host, self.port
        return self.lsock.getsockname()[:2]

    def get_connections(self) -> list[WebSocketConnection]:
        return list(self.connections)

    def listen(self) -> WebSocketServer:
        lsock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        lsock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        lsock.bind((self.host, self.port))
        lsock.listen(self.backlog)
        lsock.setblocking(False)
        self.selector.register(lsock, selectors.EVENT_READ, data=LISTENER)
        self.lsock = lsock
        scheme = "wss" if self.ssl_context else "ws"
        host, port = self.address
        logger.info(f"Listening on {scheme}://{host}:{port}")
        return self

    def _accept(self) -> None:
        if self.lsock is None:
            return
        try:
            cs, addr = self.lsock.accept()
        except BlockingIOError:
            return
        if self.ssl_context is not None:
            try:
                cs = self.ssl_context.wrap_socket(cs, server_side=True, do_handshake_on_connect=False)
            except (ssl.SSLError, OSError) as e:
                logger.error("TLS setup failed for %s: %s", addr, e)
                cs.close()
                return

        transport = SocketTransport(cs, addr)
        conn = WebSocketConnection(transport, f"{addr[0]}:{addr[1]}")
        self._pending[transport] = conn

        def opened() -> None:
            self.connections.append(conn)
            if callable(self.on_connection):
                try:
                    self.on_connection(conn)
                except Exception as e:
                    logger.error("on_connection callback error: %s", e)

        conn.on_open = opened
        transport.on_write_pending = lambda: self._want_write(transport)
        self.selector.register(cs, selectors.EVENT_READ, data=transport)
        logger.info("Accepted connection from %s", addr)

    def _want_write(self, transport: SocketTransport) -> None:
        # Writes can be queued from another connection's callbacks
        if transport.closed or transport not in self._pending:
            return
        self.selector.modify(transport.socket, selectors.EVENT_READ | selectors.EVENT_WRITE, data=transport)

    def _service(self, transport: SocketTransport, mask: int) -> None:
        conn = self._pending[transport]
        try:
            if mask & selectors.EVENT_READ:
                data = transport.read()
                if data == b"":
                    transport.close()
                elif data:
                    conn.feed(data)
            if mask & selectors.EVENT_WRITE and not transport.closed:
                transport.flush_writes()
        except TransportError as e:
            transport.close()
            conn.connection_lost(e)

        if transport.closed:
            self._drop(transport)
            return

        # Update interest in WRITE based on queue
        newmask = selectors.EVENT_READ | (selectors.EVENT_WRITE if transport.want_write else 0)
        if newmask != self.selector.get_key(transport.socket).events:
            self.selector.modify(transport.socket, newmask, data=transport)

    def _drop(self, transport: SocketTransport) -> None:
        conn = self._pending.pop(transport)
        # Peer went away without a close frame
        conn.connection_lost()
        try:
            self.selector.unregister(transport.socket)
        except (KeyError, ValueError):
            pass
        if conn in self.connections:
            self.connections.remove(conn)
        logger.info("Connection removed; %d active", len(self.connections))

    def poll(self, timeout: float | None = 1.0) -> None:
        """Run one round of the selector loop."""
        for key, mask in self.selector.select(timeout=timeout):
            if key.data == LISTENER:
                self._accept()
            else:
                self._service(key.data, mask)

    def serve_forever(self, poll_interval: float = 1.0) -> None:
        if self.lsock is None:
            self.listen()
        try:
            while self.lsock is not None:
                self.poll(poll_interval)
        except KeyboardInterrupt:
            logger.info("Shutting down...")
        finally:
            self.close()

    def close(self) -> None:
        """Stop listening and drop every live connection."""
        for transport in list(self._pending):
            transport.close()
            self._drop(transport)
        if self.lsock is not None:
            try:
                self.selector.unregister(self.lsock)
            except (KeyError, ValueError):
                pass
            self.lsock.close()
            self.lsock = None
            logger.info("Server closed")


def run(host: str = "127.0.0.1", port: int = 8765, certfile: str | None = None, keyfile: str | None = None, log_level: str | int = "INFO") -> None:
    """Run an echo server until interrupted."""
    setup_logging(log_level)
    ssl_context = None
    if certfile:
        ssl_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
        ssl_context.load_cert_chain(certfile, keyfile)

    def wire(conn: WebSocketConnection) -> None:
        conn.on_text = lambda msg: conn.send_text(f"Echo: {msg}")
        conn.on_binary = lambda data: conn.send_binary(data)
        conn.on_error = lambda e: logger.debug("Connection error: %s", e)
        conn.on_close = lambda code: logger.info("WebSocket CLOSED (%s)", code)
        logger.info("WebSocket OPEN (%d active)", len(server.connections))

    server = WebSocketServer(host, port, ssl_context=ssl_context, on_connection=wire)
    server.serve_forever()
