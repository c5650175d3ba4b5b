"""Module for all validation functions"""

from __future__ import annotations
from wsserver.utils.types import (
    Opcode, ProtocolError, Frame, MessageTooBigError, CloseCode, MAX_PAYLOAD_LENGTH
)
from wsserver.utils.logging import get_logger

logger = get_logger(__name__)

def validate_payload_length(length: int) -> None:
    """
    Check a payload length against the representable range.

    Raises:
        MessageTooBigError: if the length is negative or above MAX_PAYLOAD_LENGTH.
    """
    if length < 0 or length > MAX_PAYLOAD_LENGTH:
        logger.debug("Payload length out of range: %d", length)
        raise MessageTooBigError(f"Payload length {length} exceeds {MAX_PAYLOAD_LENGTH}")


def validate_frame(frame: Frame) -> None:
    """
    Validate a WebSocket frame.

    Checks:
    - opcode is one of the six defined opcodes
    - masking key, when present, is exactly 4 bytes
    - payload length <= MAX_PAYLOAD_LENGTH

    Control frame size and fragmentation rules are left to the peer.
    """
    if not isinstance(frame, Frame):
        logger.debug("Invalid frame type: %s", type(frame))
        raise ProtocolError("Invalid frame")

    if not isinstance(frame.opcode, Opcode):
        logger.debug("Invalid opcode type: %s", type(frame.opcode))
        raise ProtocolError("Invalid opcode")

    if frame.masking_key is not None and len(frame.masking_key) != 4:
        logger.debug("Invalid masking key length: %s", len(frame.masking_key))
        raise ProtocolError("Invalid masking key length")

    validate_payload_length(len(frame.payload))


def parse_close_payload(payload: bytes) -> tuple[int, str]:
    """
    Split a close frame payload into (code, reason).

    An empty payload carries no status, reported as 1005.
    """
    if len(payload) < 2:
        if payload:
            logger.debug("Close frame payload too short: %r", payload)
        return CloseCode.NO_STATUS_RECEIVED, ""
    code = int.from_bytes(payload[:2], byteorder='big')
    reason = payload[2:].decode('utf-8', errors='replace')
    return code, reason
