"""
WebSocket connection handling module for one byte stream.
Handles the connection's lifecycle and state machine.
"""

from __future__ import annotations

import threading
from typing import Callable

from wsserver.utils.logging import get_logger
from wsserver.utils.types import (
    ConnectionState, Opcode, CloseCode, Headers, Transport, WriteCallback, REQUEST_LINE_KEY,
    ProtocolError, MessageTooBigError, HandshakeError, StateError, TransportError,
)
from wsserver.utils.protocol import (
    decode_frame, split_frames, make_text, make_binary, make_close, make_ping, make_pong
)
from wsserver.utils.validate import parse_close_payload
from wsserver.server.handshake import parse_headers, get_websocket_key, build_accept_response

HEAD_TERMINATOR = b"\r\n\r\n"

class WebSocketConnection:
    """
    Manages a single WebSocket connection over a transport.
    Lifecycle: CONNECTING -> OPEN -> CLOSING -> CLOSED

    Inbound bytes go through feed(); outbound messages through the send_*
    methods. Events are delivered synchronously through the on_* callbacks.
    """

    TEXT_FRAGMENT_SIZE = 256 * 1024
    BINARY_FRAGMENT_SIZE = 512 * 1024

    def __init__(self, transport: Transport, name: str = "?") -> None:
        self.transport = transport
        self.logger = get_logger(f"server.connection[{name}]")
        self.state = ConnectionState.CONNECTING
        self.headers: Headers = {}
        self.read_buffer = bytearray()
        self.message_buffer = bytearray()
        self._message_opcode: Opcode | None = None
        self._lock = threading.RLock()
        # Close info
        self.close_code: int | None = None
        self.close_reason: str | None = None
        # Optional callbacks (set these from server/higher layer)
        self.on_open: Callable[[], None] | None = None
        self.on_text: Callable[[str], None] | None = None
        self.on_binary: Callable[[bytes], None] | None = None
        self.on_close: Callable[[int], None] | None = None
        self.on_error: Callable[[Exception], None] | None = None

    def _emit(self, name: str, *args) -> None:
        callback = getattr(self, f"on_{name}")
        if not callable(callback):
            self.logger.debug("%s event dropped (no on_%s handler set)", name, name)
            return
        try:
            callback(*args)
        except Exception as e:
            self.logger.error("on_%s callback error: %s", name, e)

    def _error(self, error: Exception) -> None:
        self.logger.warning("%s: %s", type(error).__name__, error)
        self._emit("error", error)

    def _write(self, data: bytes, on_complete: WriteCallback | None = None) -> bool:
        try:
            self.transport.write(data, on_complete)
        except TransportError as e:
            self.connection_lost(e)
            return False
        return True

    # Inbound
    def feed(self, chunk: bytes) -> None:
        """
        Handle bytes received from the transport: the handshake request while
        CONNECTING, frames while OPEN or CLOSING. Ignored once CLOSED.
        """
        with self._lock:
            if self.state == ConnectionState.CONNECTING:
                self._handle_handshake(bytes(chunk))
            elif self.state in (ConnectionState.OPEN, ConnectionState.CLOSING):
                self.read_buffer.extend(chunk)
                self._process_frames()
            else:
                self.logger.debug("Ignoring %d bytes in state=%s", len(chunk), self.state)

    def _handle_handshake(self, chunk: bytes) -> None:
        # The chunk is taken as the whole request head; anything after the
        # blank line is already frame data.
        head, sep, rest = chunk.partition(HEAD_TERMINATOR)
        headers = parse_headers(head)
        key = get_websocket_key(headers)
        if not key:
            self._error(HandshakeError("Missing Sec-WebSocket-Key header"))
            return

        if not self._write(build_accept_response(key)):
            return
        self.headers = headers
        self.state = ConnectionState.OPEN
        self.logger.info("Handshake answered; state=OPEN (%s)", headers.get(REQUEST_LINE_KEY, ""))
        self._emit("open")

        if sep and rest and self.state == ConnectionState.OPEN:
            self.read_buffer.extend(rest)
            self._process_frames()

    def _process_frames(self) -> None:
        """
        Process the complete frames currently in the read buffer.
        """
        try:
            raw_frames, remainder = split_frames(self.read_buffer)
        except MessageTooBigError as e:
            # The frame boundary is unknown past this point.
            self.read_buffer.clear()
            self._error(e)
            return
        self.read_buffer = bytearray(remainder)

        for raw in raw_frames:
            if self.state == ConnectionState.CLOSED:
                self.logger.debug("Dropping frames received after close")
                self.read_buffer.clear()
                return
            try:
                frame = decode_frame(raw)
            except ProtocolError as e:
                self._error(e)
                continue

            if not frame.masked:
                self.logger.debug("Unmasked %s frame from client", frame.opcode.name)

            if not frame.fin:
                if frame.opcode in (Opcode.TEXT, Opcode.BINARY):
                    self._message_opcode = frame.opcode
                self.message_buffer.extend(frame.payload)
                continue

            match frame.opcode:
                case Opcode.CONTINUATION | Opcode.TEXT | Opcode.BINARY:
                    self.message_buffer.extend(frame.payload)
                    opcode = self._message_opcode if frame.opcode == Opcode.CONTINUATION else frame.opcode
                    message = bytes(self.message_buffer)
                    self.message_buffer.clear()
                    self._message_opcode = None
                    if opcode == Opcode.TEXT:
                        self._emit("text", message.decode('utf-8', errors='replace'))
                    elif opcode == Opcode.BINARY:
                        self._emit("binary", message)
                    else:
                        self.logger.debug("Final continuation frame without a message in progress")
                case Opcode.CLOSE:
                    self._handle_close(frame.payload)
                case Opcode.PING:
                    if self.state == ConnectionState.OPEN:
                        self._write(make_pong(frame.payload))
                    else:
                        self.logger.debug("Ignoring PING in state=%s", self.state)
                case Opcode.PONG:
                    self.logger.debug("PONG %r", frame.payload)

        # split_frames stops short of a header with an out-of-range length;
        # scanning again reports it and drops the bytes from there on.
        if raw_frames and self.read_buffer and self.state != ConnectionState.CLOSED:
            self._process_frames()

    def _handle_close(self, payload: bytes) -> None:
        self.close_code, self.close_reason = parse_close_payload(payload)
        # Answer a peer-initiated close; a server-initiated one was already sent.
        if self.state == ConnectionState.OPEN:
            code = self.close_code
            if code == CloseCode.NO_STATUS_RECEIVED:
                code = CloseCode.NORMAL_CLOSURE
            if not self._write(make_close(code)):
                return
        self.transport.end()
        self.state = ConnectionState.CLOSED
        self.read_buffer.clear()
        self.message_buffer.clear()
        self.logger.info("Connection closed by peer (code=%s)", self.close_code)
        self._emit("close", self.close_code)

    def connection_lost(self, exc: Exception | None = None) -> None:
        """
        Called by the transport owner when the stream closes or fails
        without a close handshake.
        """
        with self._lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSED
            self.close_code = CloseCode.ABNORMAL_CLOSURE
            self.logger.info("Transport lost; state=CLOSED")
            if exc is not None:
                error = exc if isinstance(exc, TransportError) else TransportError(str(exc))
                self._error(error)
            self._emit("close", self.close_code)

    # Send helpers
    def _check_open(self, action: str) -> bool:
        if self.state != ConnectionState.OPEN:
            self._error(StateError(f"Cannot {action} while connection is {self.state.value}"))
            return False
        return True

    def _send_fragmented(self, payload: bytes, fragment_size: int, build: Callable[..., bytes], on_complete: WriteCallback | None) -> None:
        if not payload:
            self._write(build(b"", fin=True, first=True), on_complete)
            return
        for start in range(0, len(payload), fragment_size):
            end = start + fragment_size
            frame = build(payload[start:end], fin=end >= len(payload), first=start == 0)
            if not self._write(frame, on_complete):
                return

    def send_text(self, data: str | bytes, on_complete: WriteCallback | None = None) -> None:
        """
        Send a text message, fragmented every TEXT_FRAGMENT_SIZE bytes.
        """
        with self._lock:
            if not self._check_open("send text"):
                return
            payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
            self._send_fragmented(payload, self.TEXT_FRAGMENT_SIZE, make_text, on_complete)

    def send_binary(self, data: bytes, on_complete: WriteCallback | None = None) -> None:
        """
        Send a binary message, fragmented every BINARY_FRAGMENT_SIZE bytes.
        """
        with self._lock:
            if not self._check_open("send binary"):
                return
            self._send_fragmented(bytes(data), self.BINARY_FRAGMENT_SIZE, make_binary, on_complete)

    def send_ping(self, data: bytes = b"", on_complete: WriteCallback | None = None) -> None:
        """
        Send a PING frame.
        """
        with self._lock:
            if not self._check_open("send ping"):
                return
            self._write(make_ping(data), on_complete)

    def close(self, code: int = CloseCode.NORMAL_CLOSURE, reason: str = "", on_complete: WriteCallback | None = None) -> None:
        """
        Initiate a close handshake (server side). The connection is CLOSED
        once the peer answers with its own close frame.
        """
        with self._lock:
            if not self._check_open("close"):
                return
            if not self._write(make_close(code, reason), on_complete):
                return
            self.state = ConnectionState.CLOSING
            self.logger.info("Close frame sent (code=%s); state=CLOSING", code)
