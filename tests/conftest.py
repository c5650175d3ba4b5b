import pytest

from wsserver.server.connection import WebSocketConnection
from wsserver.utils.protocol import decode_frame, encode_frame
from wsserver.utils.types import TransportError

HANDSHAKE = (
    b"GET /chat HTTP/1.1\r\n"
    b"Host: example.com\r\n"
    b"Upgrade: websocket\r\n"
    b"Connection: Upgrade\r\n"
    b"Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==\r\n"
    b"Sec-WebSocket-Version: 13\r\n"
    b"\r\n"
)


class FakeTransport:
    """In-memory transport recording every write."""

    def __init__(self):
        self.writes = []
        self.ended = False
        self.fail_writes = False

    def write(self, data, on_complete=None):
        if self.fail_writes:
            raise TransportError("broken pipe")
        self.writes.append(bytes(data))
        if on_complete is not None:
            on_complete()

    def end(self):
        self.ended = True

    def frames(self):
        return [decode_frame(w) for w in self.writes]


class Recorder:
    """Collects every event a connection emits."""

    def __init__(self, conn):
        self.events = []
        conn.on_open = lambda: self.events.append(("open", None))
        conn.on_text = lambda s: self.events.append(("text", s))
        conn.on_binary = lambda b: self.events.append(("binary", b))
        conn.on_close = lambda c: self.events.append(("close", c))
        conn.on_error = lambda e: self.events.append(("error", e))

    def of(self, kind):
        return [value for name, value in self.events if name == kind]


def client_frame(op, payload=b"", fin=True):
    """Frame as a browser would send it: always masked."""
    return encode_frame(op, payload, fin=fin, masked=True, masking_key=b"\x37\xfa\x21\x3d")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def conn(transport):
    return WebSocketConnection(transport, "test")


@pytest.fixture
def recorder(conn):
    return Recorder(conn)


@pytest.fixture
def open_conn(conn, transport, recorder):
    conn.feed(HANDSHAKE)
    transport.writes.clear()
    recorder.events.clear()
    return conn
