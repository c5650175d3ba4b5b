"""
Non-blocking socket transport for one accepted TCP (or TLS) socket.
Queues outbound writes and drains inbound bytes for a selector loop.
"""

from __future__ import annotations

from socket import socket, SHUT_RDWR
from collections import deque
import ssl
from typing import Callable

from wsserver.utils.logging import get_logger
from wsserver.utils.types import TransportError, WriteCallback

RECV_SIZE = 4096

class SocketTransport:
    """
    Byte stream over a non-blocking socket.
    Call read() when the socket is readable and flush_writes() when writable.
    """

    def __init__(self, sock: socket, addr: tuple[str, int]) -> None:
        self.socket = sock
        self.socket.setblocking(False)
        self.addr = addr
        self.logger = get_logger(f"server.transport[{addr[0]}:{addr[1]}]")
        self.write_queue: deque[tuple[bytes, WriteCallback | None]] = deque()
        self.closed = False
        self._ending = False
        # Called when the write queue goes from empty to non-empty
        self.on_write_pending: Callable[[], None] | None = None

    def write(self, data: bytes, on_complete: WriteCallback | None = None) -> None:
        """Queue bytes for sending. on_complete fires once all of them are sent."""
        if self.closed or self._ending:
            raise TransportError("Transport is closed")
        was_idle = not self.write_queue
        self.write_queue.append((bytes(data), on_complete))
        if was_idle and callable(self.on_write_pending):
            self.on_write_pending()

    def end(self) -> None:
        """Close the socket once every queued write has been flushed."""
        if self.closed:
            return
        self._ending = True
        if not self.write_queue:
            self.close()

    @property
    def want_write(self) -> bool:
        """Return True if there's data enqueued to send (register for EVENT_WRITE)."""
        return bool(self.write_queue)

    def read(self) -> bytes | None:
        """
        Drain what is available without blocking.

        Returns:
            The bytes read, None if nothing was available yet (e.g. a TLS
            record still incomplete), or b"" once the peer closed the stream.
        """
        data = bytearray()
        while True:
            try:
                chunk = self.socket.recv(RECV_SIZE)
            except (BlockingIOError, ssl.SSLWantReadError, ssl.SSLWantWriteError):
                break
            except OSError as e:
                self.logger.error("Recv error: %s", e)
                raise TransportError(f"Recv failed: {e}") from e
            if not chunk:
                if not data:
                    return b""
                break
            data.extend(chunk)
        return bytes(data) if data else None

    def flush_writes(self) -> None:
        """
        Non-blocking writer: send queued bytes; call when socket is writable.
        """
        while self.write_queue:
            buf, on_complete = self.write_queue[0]
            try:
                sent = self.socket.send(buf)
            except (BlockingIOError, ssl.SSLWantReadError, ssl.SSLWantWriteError):
                self.logger.debug("Socket not writable; waiting...")
                return
            except OSError as e:
                self.logger.error("Send error: %s", e)
                self.close()
                raise TransportError(f"Send failed: {e}") from e
            if sent == 0:
                self.logger.error("Socket write returned 0")
                self.close()
                raise TransportError("Socket write returned 0")
            if sent < len(buf):
                # Keep the unsent tail
                self.write_queue[0] = (buf[sent:], on_complete)
                return
            self.write_queue.popleft()
            if callable(on_complete):
                try:
                    on_complete()
                except Exception as e:
                    self.logger.error("write callback error: %s", e)

        if self._ending:
            self.close()

    def fileno(self) -> int:
        return self.socket.fileno()

    def close(self) -> None:
        """Shut down and close the socket, dropping anything still queued."""
        if self.closed:
            return
        self.closed = True
        self.write_queue.clear()
        try:
            try:
                self.socket.shutdown(SHUT_RDWR)
            except OSError:
                pass
            self.socket.close()
        finally:
            self.logger.info("Transport closed")
