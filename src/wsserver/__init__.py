"""Server side of the WebSocket protocol (RFC 6455) over a plain byte stream."""

from wsserver.utils.types import (
    Opcode, Frame, CloseCode, ConnectionState, Transport, MAX_PAYLOAD_LENGTH,
    WebSocketError, HandshakeError, ProtocolError, MessageTooBigError, StateError, TransportError,
)
from wsserver.utils.protocol import (
    encode_frame, decode_frame, apply_mask, make_text, make_binary, make_close, make_ping, make_pong,
)
from wsserver.server.handshake import parse_headers, compute_accept, build_accept_response
from wsserver.server.connection import WebSocketConnection
from wsserver.server.transport import SocketTransport
from wsserver.server.server import WebSocketServer, run

__version__ = "0.1.0"
