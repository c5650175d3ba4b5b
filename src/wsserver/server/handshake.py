"""Module for handling WebSocket handshakes"""

from __future__ import annotations
from wsserver.utils.types import Headers, BytesLike, REQUEST_LINE_KEY
from wsserver.utils.logging import get_logger
from hashlib import sha1
import base64

logger = get_logger(__name__)

GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
KEY_HEADER = "Sec-WebSocket-Key"

def parse_headers(raw: BytesLike | str) -> Headers:
    """
    Parses a raw HTTP upgrade request into a header mapping.

    The request line is stored verbatim under REQUEST_LINE_KEY. Header
    names keep the case they were sent with. Lines without a ": "
    separator are skipped.

    Args:
        raw: The raw HTTP request, as bytes or text.

    Returns:
        An ordered mapping of header name to value.
    """
    if not isinstance(raw, str):
        raw = bytes(raw).decode('latin-1')
    head = raw.split('\r\n\r\n', 1)[0]
    lines = head.split('\r\n')

    headers: Headers = {REQUEST_LINE_KEY: lines[0]}
    for line in lines[1:]:
        if not line:
            continue
        name, sep, value = line.partition(": ")
        if not sep:
            logger.debug("Skipping malformed header line: %r", line)
            continue
        headers[name] = value
    return headers


def get_websocket_key(headers: Headers) -> str | None:
    """Return the Sec-WebSocket-Key value, matching the name case-insensitively if needed."""
    if KEY_HEADER in headers:
        return headers[KEY_HEADER]
    wanted = KEY_HEADER.lower()
    for name, value in headers.items():
        if name.lower() == wanted:
            return value
    return None


def compute_accept(sec_websocket_key: str | None) -> str:
    """
    Computes the Sec-WebSocket-Accept value from the Sec-WebSocket-Key.

    A missing key is hashed as the string "undefined"; callers are expected
    to reject requests without a key before answering them.
    """
    if sec_websocket_key is None:
        sec_websocket_key = "undefined"
    # RFC 6455: Sec-WebSocket-Accept = base64( SHA1( key + GUID ) )
    sha = sha1((sec_websocket_key + GUID).encode("utf-8")).digest()
    return base64.b64encode(sha).decode("ascii")


def build_accept_response(sec_websocket_key: str | None) -> bytes:
    """
    Builds the 101 Switching Protocols response for a client key.

    Args:
        sec_websocket_key: The Sec-WebSocket-Key from the client request.

    Returns:
        The raw HTTP response bytes, terminated by a blank line.
    """
    return (
        "HTTP/1.1 101 Switching Protocols\r\n"
        "Upgrade: websocket\r\n"
        "Connection: Upgrade\r\n"
        f"Sec-WebSocket-Accept: {compute_accept(sec_websocket_key)}\r\n"
        "\r\n"
    ).encode("latin-1")
