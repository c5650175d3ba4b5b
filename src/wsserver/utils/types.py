"""Module for all the types used throughout the WebSocket server"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Callable, Protocol, TypeAlias


# === HTTP / Handshake ===

# Header names are kept exactly as received.
Headers: TypeAlias = dict[str, str]

# Synthetic header entry holding the raw request line
REQUEST_LINE_KEY = "httpInfo"


# === Protocol / Framing ===

class Opcode(IntEnum):
    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA

# Largest payload length representable without loss in a 53-bit mantissa
MAX_PAYLOAD_LENGTH = 2 ** 53 - 1

# 4-byte masking key for client->server frames
MaskingKey: TypeAlias = bytes

@dataclass(slots=True)
class Frame:
    fin: bool
    opcode: Opcode
    masking_key: MaskingKey | None
    payload: bytes

    @property
    def masked(self) -> bool:
        return self.masking_key is not None


class CloseCode(IntEnum):
    NORMAL_CLOSURE = 1000
    GOING_AWAY = 1001
    PROTOCOL_ERROR = 1002
    UNSUPPORTED_DATA = 1003
    NO_STATUS_RECEIVED = 1005
    ABNORMAL_CLOSURE = 1006
    INVALID_PAYLOAD = 1007
    POLICY_VIOLATION = 1008
    MESSAGE_TOO_BIG = 1009
    INTERNAL_ERROR = 1011


# === Errors ===

class WebSocketError(Exception):
    """Base class for everything the WebSocket core reports."""

class HandshakeError(WebSocketError):
    """Raised when the HTTP Upgrade/WebSocket handshake fails."""

class ProtocolError(WebSocketError):
    """Raised for RFC 6455 protocol violations."""

class MessageTooBigError(ProtocolError):
    """Raised when a frame length exceeds MAX_PAYLOAD_LENGTH."""

class StateError(WebSocketError):
    """Raised when an operation is not allowed in the current connection state."""

class TransportError(WebSocketError):
    """Raised when the underlying byte stream fails."""

# Other aliases
BytesLike: TypeAlias = bytes | bytearray | memoryview


# === Connection ===

class ConnectionState(Enum):
    CONNECTING = "CONNECTING"
    OPEN = "OPEN"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


WriteCallback: TypeAlias = Callable[[], None]

class Transport(Protocol):
    """Byte stream a connection reads from and writes to."""

    def write(self, data: bytes, on_complete: WriteCallback | None = None) -> None:
        """Queue bytes for sending; on_complete fires once they are written."""
        ...

    def end(self) -> None:
        """Flush pending writes, then close the stream."""
        ...
