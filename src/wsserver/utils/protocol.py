"""WebSocket frame codec. Pure functions, no shared state."""

from __future__ import annotations
import os
from wsserver.utils.types import Opcode, MaskingKey, ProtocolError, MessageTooBigError, Frame, BytesLike
from wsserver.utils.logging import get_logger
from wsserver.utils.validate import validate_frame, validate_payload_length

logger = get_logger(__name__)

FIN_BIT = 0x80
RSV_BITS = 0x70
OPCODE_BITS = 0x0F
MASK_BIT = 0x80
LENGTH_BITS = 0x7F

def encode_frame(op: Opcode, payload: BytesLike, fin: bool = True, masked: bool = False, masking_key: MaskingKey | None = None) -> bytes:
    """
    Encodes a WebSocket frame.

    Args:
        op: The opcode of the WebSocket frame.
        payload: The payload data to include in the frame.
        fin: Whether this is the final fragment in a message.
        masked: Whether to mask the payload. Servers send unmasked frames.
        masking_key: The masking key to use (4 bytes). A random key is
            generated when masking is requested without one.

    Returns:
        The encoded frame as bytes.
    """
    payload = bytes(payload)
    if masked and masking_key is None:
        masking_key = os.urandom(4)
    frame = Frame(
        fin=fin,
        opcode=op,
        payload=payload,
        masking_key=masking_key if masked else None
    )
    validate_frame(frame)

    # Construct header
    length = len(payload)
    message = bytearray()
    message.append((FIN_BIT if fin else 0) | op.value)
    message.append(MASK_BIT if masked else 0)
    if length < 126:
        message[-1] |= length
    elif length < 65536:
        message[-1] |= 126
        message.extend(length.to_bytes(2, byteorder='big'))
    else:
        message[-1] |= 127
        message.extend(length.to_bytes(8, byteorder='big'))

    if frame.masking_key is not None:
        message.extend(frame.masking_key)
        message.extend(apply_mask(payload, frame.masking_key))
    else:
        message.extend(payload)
    return bytes(message)


def _read_length(data: bytes) -> tuple[int, int] | None:
    """Return (payload_length, header_length_without_mask) or None if incomplete."""
    if len(data) < 2:
        return None
    length = data[1] & LENGTH_BITS
    if length == 126:
        if len(data) < 4:
            return None
        return int.from_bytes(data[2:4], byteorder='big'), 4
    if length == 127:
        if len(data) < 10:
            return None
        high = int.from_bytes(data[2:6], byteorder='big')
        low = int.from_bytes(data[6:10], byteorder='big')
        length = (high << 32) | low
        validate_payload_length(length)
        return length, 10
    return length, 2


def decode_frame(frame: BytesLike) -> Frame:
    """
    Decodes a single WebSocket frame.

    Args:
        frame: The raw frame bytes. Bytes past the frame's declared length
            are ignored.

    Returns:
        A Frame object with the payload unmasked.

    Raises:
        ProtocolError: on reserved bits, an unknown opcode or truncated data.
        MessageTooBigError: if the declared length is out of range.
    """
    if not isinstance(frame, (bytes, bytearray, memoryview)):
        raise ProtocolError("Frame must be bytes, bytearray, or memoryview")

    frame = bytes(frame)

    if len(frame) < 2:
        raise ProtocolError("Frame too short")

    first_byte = frame[0]
    # Extensions are never negotiated, so RSV1-3 must be clear.
    if first_byte & RSV_BITS:
        logger.debug("Reserved bits set in frame header: %#04x", first_byte)
        raise ProtocolError("Reserved bits set without a negotiated extension")
    fin = (first_byte & FIN_BIT) != 0
    try:
        opcode = Opcode(first_byte & OPCODE_BITS)
    except ValueError:
        raise ProtocolError(f"Invalid opcode {first_byte & OPCODE_BITS:#x}")

    masked = (frame[1] & MASK_BIT) != 0
    lengths = _read_length(frame)
    if lengths is None:
        raise ProtocolError("Frame too short for extended payload length")
    payload_length, header_length = lengths

    masking_key: MaskingKey | None = None
    if masked:
        masking_key = frame[header_length:header_length + 4]
        if len(masking_key) != 4:
            raise ProtocolError("Invalid masking key length")
        header_length += 4

    payload_end = header_length + payload_length
    if len(frame) < payload_end:
        raise ProtocolError("Frame too short for specified payload length")
    payload = frame[header_length:payload_end]

    if masking_key is not None:
        payload = apply_mask(payload, masking_key)

    res = Frame(
        fin=fin,
        opcode=opcode,
        masking_key=masking_key,
        payload=payload
    )
    validate_frame(res)
    return res


def peek_frame_header(data: BytesLike) -> int | None:
    """
    Return the total length in bytes of the first frame in data, or None
    if not enough bytes have arrived yet. Does not validate RSV/opcode.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise ProtocolError("Data must be bytes, bytearray, or memoryview")

    data = bytes(data[:10])
    lengths = _read_length(data)
    if lengths is None:
        return None
    payload_length, header_length = lengths
    masked = (data[1] & MASK_BIT) != 0
    return header_length + (4 if masked else 0) + payload_length


def split_frames(buffer: BytesLike) -> tuple[list[bytes], bytes]:
    """
    Carve zero or more complete raw frames off the front of buffer.
    Return (frames, remainder); frames are not decoded.

    A header with an out-of-range length ends the scan: the frames before
    it are returned and the remainder starts at that header. It raises
    MessageTooBigError only when it is the first header in buffer.
    """
    if not isinstance(buffer, (bytes, bytearray, memoryview)):
        raise ProtocolError("Buffer must be bytes, bytearray, or memoryview")

    buffer = bytes(buffer)
    frames = []
    offset = 0
    while offset < len(buffer):
        try:
            frame_length = peek_frame_header(memoryview(buffer)[offset:])
        except MessageTooBigError:
            if not frames:
                raise
            break
        if frame_length is None or len(buffer) - offset < frame_length:
            break
        frames.append(buffer[offset:offset + frame_length])
        offset += frame_length

    return frames, buffer[offset:]


# Convenience builders
def make_text(data: str | BytesLike, fin: bool = True, first: bool = True, masked: bool = False) -> bytes:
    """Create a Text frame, or a Continuation frame when it is not the first fragment."""
    payload = data.encode('utf-8') if isinstance(data, str) else data
    return encode_frame(Opcode.TEXT if first else Opcode.CONTINUATION, payload, fin=fin, masked=masked)


def make_binary(data: BytesLike, fin: bool = True, first: bool = True, masked: bool = False) -> bytes:
    """Create a Binary frame, or a Continuation frame when it is not the first fragment."""
    return encode_frame(Opcode.BINARY if first else Opcode.CONTINUATION, data, fin=fin, masked=masked)


def make_ping(payload: BytesLike = b"", masked: bool = False) -> bytes:
    """Create a Ping frame (opcode 0x9)."""
    return encode_frame(Opcode.PING, payload, fin=True, masked=masked)


def make_pong(payload: BytesLike = b"", masked: bool = False) -> bytes:
    """Create a Pong frame (opcode 0xA)."""
    return encode_frame(Opcode.PONG, payload, fin=True, masked=masked)


def make_close(code: int = 1000, reason: str = "", masked: bool = False) -> bytes:
    """
    Create a Close frame (opcode 0x8).

    Args:
        code: The close status code (default: 1000).
        reason: The close reason (default: empty).
        masked: Whether to mask the payload.

    Returns:
        The encoded Close frame as bytes.
    """
    payload = code.to_bytes(2, byteorder='big') + reason.encode('utf-8')
    return encode_frame(Opcode.CLOSE, payload, fin=True, masked=masked)


def apply_mask(payload: BytesLike, masking_key: MaskingKey) -> bytes:
    """
    Masks / Unmasks the payload using the provided masking key.

    Args:
        payload: The payload to mask.
        masking_key: The masking key to use (must be 4 bytes).

    Returns:
        The masked payload.
    """
    if len(masking_key) != 4:
        raise ProtocolError("Invalid masking key length")
    length = len(payload)
    if not length:
        return b""
    key = (bytes(masking_key) * (length // 4 + 1))[:length]
    masked = int.from_bytes(payload, byteorder='big') ^ int.from_bytes(key, byteorder='big')
    return masked.to_bytes(length, byteorder='big')
